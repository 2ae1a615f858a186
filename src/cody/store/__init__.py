"""Durable key/value storage with expiry."""

from .base import DurableStore
from .sqlite import SQLiteStore

__all__ = ["DurableStore", "SQLiteStore"]
