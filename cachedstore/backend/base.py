"""
Backend Contract

A backend is the durable key-value engine underneath a CachedStore. The
store only needs four things from it: ``get``, ``set``, ``disconnect`` and an
event channel on which asynchronous errors are reported.

``set`` is deliberately a plain method returning an awaitable: encoding
happens at call time, so the payload reflects the mirror as it was when the
mutation was made, and an unencodable value fails before anything is
scheduled.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class EventEmitter:
    """Minimal named-event registry."""

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}

    def add_listener(self, event: str, listener: Listener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def remove_listener(self, event: str, listener: Listener) -> bool:
        """Remove one registration. Returns False if it was not registered."""
        listeners = self._listeners.get(event, [])
        if listener not in listeners:
            return False
        listeners.remove(listener)
        return True

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, *args: Any) -> bool:
        """
        Call every listener registered for ``event``.

        Returns:
            True if at least one listener was called
        """
        listeners = list(self._listeners.get(event, []))
        if not listeners:
            if event == "error":
                logger.warning(f"Unhandled backend error: {args[0] if args else ''}")
            return False

        for listener in listeners:
            listener(*args)
        return True


class Backend(EventEmitter, ABC):
    """
    Abstract durable key-value engine.

    Attributes:
        uri: The normalized address this backend was opened with
    """

    def __init__(self, uri: str):
        super().__init__()
        self.uri = uri

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the decoded value stored under ``key``, or None."""

    @abstractmethod
    def set(self, key: str, value: Any) -> Awaitable[bool]:
        """
        Encode ``value`` now and return an awaitable that writes it.

        Raises:
            SerializationError: If the value cannot be encoded

        The awaitable resolves to True, or raises BackendError.
        """

    @abstractmethod
    async def disconnect(self) -> None:
        """Release the underlying connection."""


BackendFactory = Callable[..., Backend]
