"""Core configuration, errors and security."""
