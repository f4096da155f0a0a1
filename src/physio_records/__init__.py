"""Physiotherapy patient and visit records API backed by Supabase."""

__version__ = "1.0.0"
