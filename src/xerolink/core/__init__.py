"""Core utilities shared across xerolink."""
