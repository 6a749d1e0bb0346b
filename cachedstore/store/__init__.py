"""Store module for CachedStore."""

from .address import Address, normalize_address
from .cached_store import STORE_KEY, CachedStore
from .outcome import NOT_CONNECTED, NOT_FOUND, Outcome
from .transaction import Transaction

__all__ = [
    "Address",
    "CachedStore",
    "NOT_CONNECTED",
    "NOT_FOUND",
    "Outcome",
    "STORE_KEY",
    "Transaction",
    "normalize_address",
]
