"""Configuration, token verification and per-request client binding."""
