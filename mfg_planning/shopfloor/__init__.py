"""Work order lifecycle and shop floor reporting."""
