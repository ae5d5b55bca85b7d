"""BOM and routing versioning, engineering change orders."""
