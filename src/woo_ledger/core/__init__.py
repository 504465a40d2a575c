"""Core utilities: logging, monitoring, errors."""
