"""
Pytest Configuration and Fixtures

This module provides shared fixtures and configuration for all tests.
"""

import asyncio
import json
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
import pytest_asyncio

from cachedstore.backend.base import Backend
from cachedstore.config.settings import Settings
from cachedstore.exceptions import BackendError, SerializationError
from cachedstore.store.cached_store import STORE_KEY, CachedStore
from cachedstore.store.address import normalize_address


# ============================================================================
# Backend Fixtures
# ============================================================================

class FlakyBackend(Backend):
    """
    In-memory backend whose reads and writes can be made to fail.

    Values are JSON encoded on ``set`` like the SQLite backend, so
    unencodable values fail synchronously. Every operation yields to the
    event loop once before completing.
    """

    def __init__(self, uri: str, registry: "BackendRegistry"):
        super().__init__(uri)
        self.registry = registry
        self.closed = False

    @property
    def rows(self) -> Dict[str, str]:
        return self.registry.rows.setdefault(self.uri, {})

    async def get(self, key: str) -> Optional[Any]:
        await asyncio.sleep(0)
        if self.closed:
            raise BackendError("backend is disconnected", self.uri)
        if self.registry.fail_reads:
            raise BackendError("read failed", self.uri)
        raw = self.rows.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any):
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise SerializationError(str(exc), self.uri) from exc
        return self._write(key, payload)

    async def _write(self, key: str, payload: str) -> bool:
        await asyncio.sleep(0)
        if self.registry.fail_writes:
            raise BackendError("write failed", self.uri)
        self.rows[key] = payload
        self.registry.writes.append((self.uri, key))
        return True

    async def disconnect(self) -> None:
        await asyncio.sleep(0)
        self.closed = True


class BackendRegistry:
    """
    Backend factory shared by the stores in one test.

    Stores opened on the same address share rows, so reopening a store
    sees what was persisted before.
    """

    def __init__(self):
        self.rows: Dict[str, Dict[str, str]] = {}
        self.instances: List[FlakyBackend] = []
        self.writes: List[tuple] = []
        self.fail_reads = False
        self.fail_writes = False

    def __call__(self, uri: str, settings: Optional[Settings] = None) -> FlakyBackend:
        backend = FlakyBackend(uri, self)
        self.instances.append(backend)
        return backend

    def seed(self, address: str, mirror: Dict[str, Any]) -> None:
        """Persist ``mirror`` for ``address`` before any store opens it."""
        uri = normalize_address(address).uri
        self.rows.setdefault(uri, {})[STORE_KEY] = json.dumps(mirror)

    def persisted(self, address: str) -> Optional[Dict[str, Any]]:
        """Decoded mirror last written for ``address``."""
        uri = normalize_address(address).uri
        raw = self.rows.get(uri, {}).get(STORE_KEY)
        return json.loads(raw) if raw is not None else None

    def latest(self) -> FlakyBackend:
        return self.instances[-1]


@pytest.fixture
def backends() -> BackendRegistry:
    """Create a fresh backend registry."""
    return BackendRegistry()


@pytest.fixture
def production() -> Settings:
    """Settings with writes enabled regardless of the environment."""
    return Settings(ENVIRONMENT="production")


@pytest.fixture
def development() -> Settings:
    """Settings in development mode."""
    return Settings(ENVIRONMENT="development")


# ============================================================================
# Store Fixtures
# ============================================================================

@pytest.fixture
def open_store(backends: BackendRegistry, production: Settings):
    """
    Factory fixture to open connected stores on the flaky backend.

    Usage:
        async def test_something(open_store):
            store = await open_store("test/store")
    """
    async def factory(address: str = "test/store", **kwargs) -> CachedStore:
        kwargs.setdefault("settings", production)
        store = CachedStore(address, backend_factory=backends, **kwargs)
        await store.wait_until_connected()
        return store
    return factory


@pytest_asyncio.fixture
async def store(open_store) -> AsyncGenerator[CachedStore, None]:
    """Create a connected store at ``test/store``."""
    opened = await open_store("test/store")

    yield opened

    await opened.flush()
    opened.disconnect()
    await opened.wait_closed()


@pytest_asyncio.fixture
async def other_store(open_store) -> AsyncGenerator[CachedStore, None]:
    """Create a second connected store at ``test/other``."""
    opened = await open_store("test/other")

    yield opened

    await opened.flush()
    opened.disconnect()
    await opened.wait_closed()


@pytest.fixture
def store_address(tmp_path) -> str:
    """Address of a store file inside a temporary directory."""
    return str(tmp_path / "db" / "store")


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests that touch real SQLite files"
    )
