"""Business services for the lead marketplace."""
