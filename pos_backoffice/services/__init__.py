"""Business services for the POS back office."""
