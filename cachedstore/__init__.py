"""
CachedStore: Write-Through Key-Value Cache

An in-memory mirror of a durable SQLite key-value store. Mutations are
applied to memory at once, persisted in the background, and rolled back
if the write fails.
"""

from .store import NOT_CONNECTED, NOT_FOUND, CachedStore, Outcome

__version__ = "1.0.0"

__all__ = ["CachedStore", "NOT_CONNECTED", "NOT_FOUND", "Outcome"]
