"""Work center calendars and capacity planning."""
