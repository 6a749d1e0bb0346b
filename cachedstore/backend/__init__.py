"""Backend module for CachedStore."""

from .base import Backend, BackendFactory, EventEmitter
from .sqlite_backend import SQLiteBackend

__all__ = ["Backend", "BackendFactory", "EventEmitter", "SQLiteBackend"]
