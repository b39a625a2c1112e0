"""API module exports"""
from . import actions
from . import argument
from . import health
from . import knowledge

__all__ = ["actions", "argument", "health", "knowledge"]
