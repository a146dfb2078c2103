"""Pure domain model for the lead marketplace (no I/O, no frameworks)."""
