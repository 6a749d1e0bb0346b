"""
Store Result Signals

Operations on a CachedStore report refusals through these values instead of
raising. Both members are falsy, so ``if store.set(...)`` keeps working, but
they compare unequal to ``False`` and to each other:

    result = store.get("key")
    if result is NOT_FOUND:
        ...
"""

from enum import Enum


class Outcome(Enum):
    """Enumeration of non-value results."""
    NOT_CONNECTED = "not connected"
    NOT_FOUND = "not found"

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return self.name


NOT_CONNECTED = Outcome.NOT_CONNECTED
NOT_FOUND = Outcome.NOT_FOUND
