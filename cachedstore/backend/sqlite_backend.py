"""
SQLite Backend Module

Durable single-file key-value engine for CachedStore.

Row layout (one table, one row per key):

    CREATE TABLE keyv (key VARCHAR(255) PRIMARY KEY, value TEXT)

Keys are stored as ``"<namespace>:<key>"`` and values as the JSON document
``{"value": <value>, "expires": <ms timestamp or null>}``. Files written by
other tools using this layout open unchanged.

sqlite3 calls block, so they run on a dedicated single-worker executor.
Calls are submitted when they are issued and the one worker runs them in
that order, so a later write of the mirror always commits after an earlier
one.
"""

import asyncio
import json
import logging
import re
import sqlite3
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from ..config.settings import Settings
from ..exceptions import BackendError, SerializationError
from ..store.address import normalize_address
from .base import Backend

logger = logging.getLogger(__name__)

IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SQLiteBackend(Backend):
    """
    SQLite implementation of the Backend contract.

    Usage:
        backend = SQLiteBackend("sqlite://db/store.sqlite")
        await backend.set("store", {"key": "value"})
        await backend.get("store")  # {"key": "value"}
        await backend.disconnect()

    Attributes:
        uri: Normalized ``sqlite://`` address
        path: Database file path
        table: Table holding the rows
        namespace: Prefix applied to every key
    """

    def __init__(self, uri: str, settings: Optional[Settings] = None):
        """
        Raises:
            ValueError: If the configured table name is not a plain identifier
        """
        super().__init__(uri)
        config = settings if settings is not None else Settings()
        if not IDENTIFIER.match(config.TABLE):
            raise ValueError(f"invalid table name: {config.TABLE!r}")

        self.path = Path(normalize_address(uri).path)
        self.table = config.TABLE
        self.namespace = config.NAMESPACE
        self.busy_timeout = config.BUSY_TIMEOUT

        self._conn: Optional[sqlite3.Connection] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cachedstore-sqlite")
        self._shutdown = False

    # ------------------------------------------------------------------
    # Connection management (worker thread side)
    # ------------------------------------------------------------------

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(self.path),
                timeout=self.busy_timeout,
                check_same_thread=False,
            )
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(
                f"CREATE TABLE IF NOT EXISTS {self.table} "
                "(key VARCHAR(255) PRIMARY KEY, value TEXT)"
            )
            conn.commit()
            self._conn = conn
            logger.debug(f"Opened {self.path}")
        return self._conn

    def _prefixed(self, key: str) -> str:
        return f"{self.namespace}:{key}" if self.namespace else key

    def _read(self, key: str) -> Optional[str]:
        row = self._connection().execute(
            f"SELECT value FROM {self.table} WHERE key = ?",
            (self._prefixed(key),),
        ).fetchone()
        return row[0] if row else None

    def _write(self, key: str, payload: str) -> bool:
        conn = self._connection()
        conn.execute(
            f"INSERT OR REPLACE INTO {self.table} (key, value) VALUES (?, ?)",
            (self._prefixed(key), payload),
        )
        conn.commit()
        return True

    def _close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.debug(f"Closed {self.path}")

    # ------------------------------------------------------------------
    # Event loop side
    # ------------------------------------------------------------------

    def _submit(self, fn: Callable[..., Any], *args: Any) -> asyncio.Future:
        """Queue ``fn`` on the worker now, so calls run in the order they were issued."""
        if self._shutdown:
            raise BackendError("backend is disconnected", self.uri)
        return asyncio.get_running_loop().run_in_executor(self._executor, fn, *args)

    async def _wait(self, future: asyncio.Future) -> Any:
        """Await a submitted call, reporting sqlite failures on the error channel."""
        try:
            return await future
        except sqlite3.Error as exc:
            error = BackendError(str(exc), self.uri)
            self.emit("error", error)
            raise error from exc

    # ------------------------------------------------------------------
    # Backend contract
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[Any]:
        """
        Read and decode the value stored under ``key``.

        Returns:
            The stored value, or None if the key is absent or expired

        Raises:
            BackendError: On sqlite failure or an undecodable row
        """
        raw = await self._wait(self._submit(self._read, key))
        if raw is None:
            return None

        try:
            document = json.loads(raw)
        except ValueError as exc:
            raise BackendError(f"corrupt value under {key!r}", self.uri) from exc

        if not isinstance(document, dict) or "value" not in document:
            raise BackendError(f"corrupt value under {key!r}", self.uri)

        expires = document.get("expires")
        if expires is not None and expires <= time.time() * 1000:
            return None
        return document["value"]

    def set(self, key: str, value: Any) -> Awaitable[bool]:
        """
        Encode ``value`` immediately and return the pending write.

        Raises:
            SerializationError: If the value is not JSON encodable
            BackendError: If the backend is disconnected
        """
        try:
            payload = json.dumps({"value": value, "expires": None})
        except (TypeError, ValueError) as exc:
            raise SerializationError(f"cannot encode value for {key!r}: {exc}", self.uri) from exc

        return self._wait(self._submit(self._write, key, payload))

    async def disconnect(self) -> None:
        """Close the connection once queued calls have run. Later calls fail with BackendError."""
        if self._shutdown:
            return

        future = self._submit(self._close)
        self._shutdown = True
        try:
            await self._wait(future)
        finally:
            self._executor.shutdown(wait=False)
