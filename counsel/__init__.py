"""Counsel Actions: argument strategy backend for conversational assistant actions."""

__version__ = "1.0.0"
