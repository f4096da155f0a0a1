"""Application services behind the API routes."""
