"""Material requirements planning: netting, lot sizing, planned orders."""
