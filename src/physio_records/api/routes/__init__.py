"""API route modules for the records API."""
