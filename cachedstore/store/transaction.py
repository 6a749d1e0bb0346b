"""
Write-Through Transaction

One Transaction covers one mutation of a store's mirror:

    1. the caller takes a pre-image (``before``) and applies the change
    2. ``commit`` hands the write to the backend and schedules it
    3. if the write fails, ``on_rollback`` is called with the transaction

The write is fire-and-forget. ``commit`` only reports failures that
happened before it returned; later failures surface through ``on_rollback``
and the ``failed`` flag.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

V = TypeVar("V")


class Transaction(Generic[V]):
    """
    Pre-image plus the pending persistence of one mutation.

    Attributes:
        before: Mirror contents before the mutation (None disables rollback)
        action: Label used in log messages
        failed: True once the write is known to have failed
        error: The exception that caused the failure, if any
        task: The scheduled write, once committed
    """

    def __init__(
            self,
            before: Optional[Dict[str, V]],
            action: str,
            on_rollback: Callable[["Transaction[V]"], None],
    ):
        self.before = before
        self.action = action
        self.failed = False
        self.error: Optional[BaseException] = None
        self.task: Optional[asyncio.Future] = None
        self._on_rollback = on_rollback

    def commit(
            self,
            write: Callable[[], Awaitable[Any]],
            loop: asyncio.AbstractEventLoop,
    ) -> bool:
        """
        Start the write.

        Args:
            write: Zero-argument callable returning the backend's pending write
            loop: Event loop the write is scheduled on

        Returns:
            False if the write already failed, True otherwise
        """
        try:
            pending = write()
        except Exception as exc:
            self.rollback(exc)
            return False

        self.task = asyncio.ensure_future(pending, loop=loop)
        self.task.add_done_callback(self._settle)
        return not self.failed

    def _settle(self, task: asyncio.Future) -> None:
        if task.cancelled():
            self.rollback(asyncio.CancelledError())
            return

        exc = task.exception()
        if exc is not None:
            self.rollback(exc)
        elif task.result() is False:
            self.rollback(None)

    def rollback(self, error: Optional[BaseException]) -> None:
        """Mark the transaction failed and hand it to the rollback handler."""
        self.failed = True
        self.error = error
        self._on_rollback(self)
