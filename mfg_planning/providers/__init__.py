"""Provider contracts and in-memory implementations."""
