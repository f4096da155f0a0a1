"""HTTP API for the records service."""
