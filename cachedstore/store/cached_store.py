"""
Cached Store Module

This module implements the write-through cache over a durable backend.

All reads and writes go through an in-memory mirror of the whole keyspace.
Every mutation is applied to the mirror first, then the full mirror is
written to the backend under the key ``"store"`` without waiting for the
write to finish. If that write fails, the mirror is reset to the copy taken
just before the mutation.

Because the write is fire-and-forget, the boolean a mutation returns only
says whether persistence had *already* failed when the call returned. A read
made before the write settles sees the new value even if it is later rolled
back. Await ``flush()`` to observe the settled state.

Operations refuse instead of raising:
- ``NOT_CONNECTED`` when the store is not connected
- ``NOT_FOUND`` when a key is missing and no fallback applies
- ``False`` when persistence failed and the mirror was reverted
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Generic, Optional, Set, TypeVar, Union

from ..backend.base import Backend, BackendFactory, Listener
from ..backend.sqlite_backend import SQLiteBackend
from ..config.settings import Settings
from ..exceptions import BackendError
from .address import normalize_address
from .outcome import NOT_CONNECTED, NOT_FOUND, Outcome
from .transaction import Transaction

V = TypeVar("V")

STORE_KEY = "store"


class CachedStore(Generic[V]):
    """
    In-memory mirror of a durable key-value store with rollback on failed writes.

    Usage (inside a running event loop):
        store = CachedStore("db/store")
        await store.wait_until_connected()
        store.set("key", "value")
        store.get("key")  # "value"

    Attributes:
        uri: Normalized address, e.g. ``"sqlite://db/store.sqlite"``
        identity: Address without scheme and extension, used in log messages
        development_mode: When True the mirror is loaded once and never written back
    """

    def __init__(
            self,
            address: str,
            wipe_on_start: bool = False,
            logger: Optional[logging.Logger] = None,
            *,
            backend_factory: BackendFactory = SQLiteBackend,
            settings: Optional[Settings] = None,
    ):
        """
        Create the store and start connecting.

        Args:
            address: Store address; ``sqlite://`` and ``.sqlite`` are added if missing
            wipe_on_start: Clear the store once it has loaded
            logger: Logger to report through (module logger if not given)
            backend_factory: Callable ``(uri, settings) -> Backend``
            settings: Settings instance (read from the environment if not given)

        Raises:
            RuntimeError: If called without a running event loop
        """
        address_info = normalize_address(address)
        self.uri = address_info.uri
        self.identity = address_info.identity

        self._settings = settings if settings is not None else Settings()
        self._backend_factory = backend_factory
        self._logger = logger if logger is not None else logging.getLogger(__name__)

        self.development_mode = self._settings.development_mode
        if self.development_mode:
            self._logger.warning(
                f"Loading {self.identity} in development mode. "
                f"Data will be fetched once but not updated."
            )

        # Connection state
        self._backend: Optional[Backend] = None
        self._connected = False
        self._mirror: Dict[str, V] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connecting: Optional[asyncio.Task] = None
        self._closing: Optional[asyncio.Task] = None
        self._wipe_on_start = wipe_on_start

        # Persistence bookkeeping
        self._pending: Set[Transaction[V]] = set()
        self._failed_writes = 0

        self.connect()

    def __repr__(self) -> str:
        state = "connected" if self.connected else "disconnected"
        return f"<CachedStore {self.identity!r} {state}>"

    async def __aenter__(self) -> "CachedStore[V]":
        await self.wait_until_connected()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.flush()
        self.disconnect()
        await self.wait_closed()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        """True once the load finished and while a backend handle is held."""
        return self._connected and self._backend is not None

    def connect(self) -> asyncio.Task:
        """
        Open a backend handle and start loading the persisted mirror.

        Always creates a new handle; an existing one is closed first.
        Use ``reconnect()`` to connect only when disconnected.

        Returns:
            The load task
        """
        loop = asyncio.get_running_loop()
        self._loop = loop

        if self._backend is not None:
            self._start_close()
        self._connected = False

        backend = self._backend_factory(self.uri, self._settings)
        backend.add_listener("error", self._on_backend_error)
        self._backend = backend
        self._logger.debug(f"Connected to {self.identity}")

        self._connecting = loop.create_task(self._load(backend))
        return self._connecting

    async def _load(self, backend: Backend) -> None:
        # A close still in flight would otherwise clear the mirror after this load
        if self._closing is not None:
            await self._closing

        try:
            data = await backend.get(STORE_KEY)
            if data is not None and not isinstance(data, dict):
                raise BackendError(f"expected a mapping under {STORE_KEY!r}", self.uri)
        except Exception as exc:
            backend.remove_listener("error", self._on_backend_error)
            if self._backend is not backend:
                # Replaced while loading; the new handle's load reports its own outcome
                self._logger.debug(f"Dropped superseded load of {self.identity}: {exc}")
                return

            self._logger.exception(f"Failed to load {self.identity}")
            self._backend = None
            try:
                await backend.disconnect()
            except BackendError as close_exc:
                self._logger.debug(f"Ignoring close failure for {self.identity}: {close_exc}")
            return

        if self._backend is not backend:
            # Replaced or disconnected while loading
            return

        self._mirror = dict(data) if data is not None else {}
        self._connected = True
        self._logger.debug(f"Loaded {len(self._mirror)} keys from {self.identity}")

        if self._wipe_on_start:
            self._wipe_on_start = False
            self.clear()

    def reconnect(self) -> bool:
        """
        Connect if disconnected. Does not wait for the load to finish.

        Returns:
            True
        """
        if self.connected:
            return True

        self._logger.debug(f"Reconnecting to {self.identity}")
        self.connect()
        return True

    def disconnect(self) -> Union[bool, Outcome]:
        """
        Release the backend handle.

        The handle is detached immediately; the mirror is cleared once the
        backend confirms the close (see ``wait_closed()``).

        Returns:
            True, or NOT_CONNECTED if already disconnected
        """
        if not self.connected:
            return NOT_CONNECTED

        self._start_close()
        return True

    def _start_close(self) -> None:
        backend = self._backend
        writes = [txn.task for txn in self._pending if txn.task is not None]
        self._closing = self._loop.create_task(self._close(backend, writes))
        self._backend = None

    async def _close(self, backend: Backend, writes: list) -> None:
        # Writes issued before the disconnect still land
        if writes:
            await asyncio.gather(*writes, return_exceptions=True)

        try:
            await backend.disconnect()
        except Exception:
            self._logger.exception(f"Error while disconnecting from {self.identity}")
        finally:
            backend.remove_listener("error", self._on_backend_error)
            self._logger.debug(f"Disconnected from {self.identity}")
            self._mirror = {}
            self._connected = False

    async def wait_until_connected(self) -> bool:
        """Wait for the in-flight load, if any. Returns ``connected``."""
        if self._connecting is not None:
            await self._connecting
        return self.connected

    async def wait_closed(self) -> None:
        """Wait for the in-flight close, if any."""
        if self._closing is not None:
            await self._closing

    def add_listener(self, event: str, listener: Listener) -> Union[bool, Outcome]:
        """
        Register ``listener`` for ``event`` on the backend.

        Returns:
            True, or NOT_CONNECTED
        """
        if not self.connected:
            return NOT_CONNECTED
        self._backend.add_listener(event, listener)
        return True

    def _on_backend_error(self, error: BaseException) -> None:
        self._logger.error(f"Error in {self.identity}: {error}")

    def set_logger(self, new_logger: logging.Logger) -> logging.Logger:
        """Swap the logger. Returns the previous one so it can be restored."""
        previous = self._logger
        self._logger = new_logger
        return previous

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def update(self, before: Optional[Dict[str, V]] = None, action: str = "update") -> Union[bool, Outcome]:
        """
        Persist the current mirror. The mutation must already be applied.

        Args:
            before: Mirror contents prior to the mutation; restored if the write fails
            action: Label for log messages

        Returns:
            False if persistence already failed, True otherwise, NOT_CONNECTED
            if not connected
        """
        if not self.connected:
            return NOT_CONNECTED
        if self.development_mode:
            return True

        backend = self._backend
        mirror = self._mirror
        txn: Transaction[V] = Transaction(before, action, self._rollback)
        committed = txn.commit(lambda: backend.set(STORE_KEY, mirror), self._loop)

        if txn.task is not None and not txn.task.done():
            self._pending.add(txn)
            txn.task.add_done_callback(lambda _: self._pending.discard(txn))
        return committed

    def _rollback(self, txn: Transaction[V]) -> None:
        self._failed_writes += 1
        self._logger.error(f"Failed to execute {txn.action} on {self.identity}: {txn.error}")
        if txn.before is not None:
            self._logger.warning(f"Reverting to state before {txn.action}")
            self._mirror = txn.before

    def _mutate(self, action: str, apply: Callable[[Dict[str, V]], None]) -> Union[bool, Outcome]:
        """Snapshot the mirror, apply the change in place, then persist."""
        if not self.connected:
            return NOT_CONNECTED

        before = dict(self._mirror)
        apply(self._mirror)
        return self.update(before, action)

    async def flush(self) -> bool:
        """
        Wait until every pending write has settled.

        Returns:
            True if all of them succeeded
        """
        ok = True
        while self._pending:
            batch = list(self._pending)
            await asyncio.gather(*(txn.task for txn in batch), return_exceptions=True)
            ok = ok and not any(txn.failed for txn in batch)
            self._pending.difference_update(batch)
        return ok

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    def has(self, key: str) -> Union[bool, Outcome]:
        if not self.connected:
            return NOT_CONNECTED
        return key in self._mirror

    def get(self, key: str, fallback: Optional[V] = None) -> Union[V, Outcome]:
        """
        Read a value.

        If the key is missing and a fallback is given, the fallback is stored
        and returned. If storing it fails, the result is NOT_FOUND as if no
        fallback had been given.

        Returns:
            The value, NOT_FOUND, or NOT_CONNECTED
        """
        if not self.connected:
            return NOT_CONNECTED
        if key not in self._mirror:
            if fallback is None:
                return NOT_FOUND
            if self.set(key, fallback) is False:
                return NOT_FOUND

        return self._mirror[key]

    def set(self, key: str, value: V) -> Union[bool, Outcome]:
        def apply(mirror: Dict[str, V]) -> None:
            mirror[key] = value

        return self._mutate("set", apply)

    def delete(self, key: str) -> Union[bool, Outcome]:
        """
        Remove a key.

        Returns:
            success flag, NOT_FOUND if the key is missing, or NOT_CONNECTED
        """
        if not self.connected:
            return NOT_CONNECTED
        if key not in self._mirror:
            return NOT_FOUND

        def apply(mirror: Dict[str, V]) -> None:
            del mirror[key]

        return self._mutate("delete", apply)

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    def reconcile(self, template: Dict[str, V]) -> Union[bool, Outcome]:
        """Add every template key that is missing. Existing keys are left alone."""
        if not self.connected:
            return NOT_CONNECTED
        self._logger.debug(f"Reconciling {self.identity} with template")

        def apply(mirror: Dict[str, V]) -> None:
            for key, value in template.items():
                if key not in mirror:
                    mirror[key] = value

        return self._mutate("reconcile", apply)

    def clear(self) -> Union[bool, Outcome]:
        if not self.connected:
            return NOT_CONNECTED
        self._logger.debug(f"Clearing {self.identity}")

        return self._mutate("clear", lambda mirror: mirror.clear())

    def copy_key(
            self,
            other: "CachedStore[Any]",
            key: str,
            fallback: Optional[V] = None,
    ) -> Union[bool, Outcome]:
        """
        Copy one key from ``other``.

        The read goes through ``other.get``, so a fallback is stored in
        ``other`` as well when the key is missing there.

        Returns:
            success flag, NOT_FOUND, or NOT_CONNECTED if either store is disconnected
        """
        if not self.connected or not other.connected:
            return NOT_CONNECTED

        value = other.get(key, fallback)
        if value is NOT_FOUND:
            return NOT_FOUND
        return self.set(key, value)

    def copy_from(self, other: "CachedStore[Any]", wipe_first: bool = False) -> Union[bool, Outcome]:
        """
        Copy every key from ``other`` in a single write.

        Args:
            other: Source store
            wipe_first: Clear this store before copying

        Returns:
            success flag, or NOT_CONNECTED if either store is disconnected
        """
        if not self.connected or not other.connected:
            return NOT_CONNECTED

        source = other.snapshot()

        def apply(mirror: Dict[str, V]) -> None:
            if wipe_first:
                mirror.clear()
            mirror.update(source)

        return self._mutate("copy_from", apply)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def snapshot(self) -> Union[Dict[str, V], Outcome]:
        """Shallow copy of the mirror."""
        if not self.connected:
            return NOT_CONNECTED
        return dict(self._mirror)

    def size(self) -> Union[int, Outcome]:
        if not self.connected:
            return NOT_CONNECTED
        return len(self._mirror)

    def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the store.

        Returns:
            Dictionary containing:
            - identity: Human-readable store address
            - connected: Whether the store is connected
            - development_mode: Whether writes are skipped
            - total_keys: Keys in the mirror (0 while disconnected)
            - pending_writes: Writes not yet settled
            - failed_writes: Writes that failed and were rolled back
        """
        return {
            "identity": self.identity,
            "connected": self.connected,
            "development_mode": self.development_mode,
            "total_keys": len(self._mirror) if self.connected else 0,
            "pending_writes": len(self._pending),
            "failed_writes": self._failed_writes,
        }
