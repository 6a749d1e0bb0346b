"""
Integration Tests for the SQLite backend

End-to-end tests that write real store files.

Run with: python -m pytest tests/test_sqlite_backend.py -v
"""

import asyncio
import json
import sqlite3
from pathlib import Path

import pytest

from cachedstore import NOT_FOUND, CachedStore
from cachedstore.backend.sqlite_backend import SQLiteBackend
from cachedstore.config.settings import Settings
from cachedstore.exceptions import BackendError, SerializationError
from cachedstore.store.address import normalize_address


@pytest.mark.asyncio
@pytest.mark.integration
class TestSQLiteBackend:
    """Backend contract against a real database file."""

    async def test_round_trip(self, store_address: str, production: Settings):
        backend = SQLiteBackend(normalize_address(store_address).uri, production)

        assert await backend.get("missing") is None
        assert await backend.set("key", {"a": [1, 2]}) is True
        assert await backend.get("key") == {"a": [1, 2]}

        await backend.disconnect()

    async def test_creates_parent_directories(self, tmp_path: Path, production: Settings):
        backend = SQLiteBackend(f"sqlite://{tmp_path}/deep/nested/store.sqlite", production)
        await backend.set("key", 1)
        await backend.disconnect()

        assert (tmp_path / "deep" / "nested" / "store.sqlite").is_file()

    async def test_row_layout(self, store_address: str, production: Settings):
        backend = SQLiteBackend(normalize_address(store_address).uri, production)
        await backend.set("store", {"greeting": "hello"})
        await backend.disconnect()

        with sqlite3.connect(store_address + ".sqlite") as conn:
            rows = conn.execute("SELECT key, value FROM keyv").fetchall()

        assert len(rows) == 1
        key, value = rows[0]
        assert key == "keyv:store"
        assert json.loads(value) == {"value": {"greeting": "hello"}, "expires": None}

    async def test_custom_table_and_namespace(self, store_address: str):
        config = Settings(TABLE="cache", NAMESPACE="app")
        backend = SQLiteBackend(normalize_address(store_address).uri, config)
        await backend.set("store", {})
        await backend.disconnect()

        with sqlite3.connect(store_address + ".sqlite") as conn:
            rows = conn.execute("SELECT key FROM cache").fetchall()

        assert rows == [("app:store",)]

    async def test_expired_value_is_absent(self, store_address: str, production: Settings):
        backend = SQLiteBackend(normalize_address(store_address).uri, production)
        await backend.set("store", {})

        with sqlite3.connect(store_address + ".sqlite") as conn:
            conn.execute(
                "UPDATE keyv SET value = ? WHERE key = 'keyv:store'",
                (json.dumps({"value": {"a": 1}, "expires": 1000}),),
            )

        assert await backend.get("store") is None
        await backend.disconnect()

    async def test_unencodable_value_fails_synchronously(self, store_address: str, production: Settings):
        backend = SQLiteBackend(normalize_address(store_address).uri, production)

        with pytest.raises(SerializationError):
            backend.set("store", {"bad": object()})

        await backend.disconnect()

    async def test_closed_backend_refuses(self, store_address: str, production: Settings):
        backend = SQLiteBackend(normalize_address(store_address).uri, production)
        await backend.disconnect()

        with pytest.raises(BackendError):
            await backend.set("store", {})
        with pytest.raises(BackendError):
            await backend.get("store")

    async def test_writes_commit_in_issue_order(self, store_address: str, production: Settings):
        backend = SQLiteBackend(normalize_address(store_address).uri, production)

        pending = [backend.set("store", {"k": i}) for i in range(200)]
        assert all(await asyncio.gather(*pending))

        assert await backend.get("store") == {"k": 199}
        await backend.disconnect()

    async def test_path_from_bare_address(self, tmp_path: Path, production: Settings):
        backend = SQLiteBackend(f"{tmp_path}/plain", production)

        assert backend.path == tmp_path / "plain.sqlite"
        await backend.disconnect()

    @pytest.mark.parametrize("table", ["", "1table", "keyv; DROP TABLE keyv", "my-table"])
    async def test_rejects_invalid_table_name(self, table: str):
        with pytest.raises(ValueError):
            SQLiteBackend("sqlite://db/store.sqlite", Settings(TABLE=table))

    async def test_sqlite_errors_emitted(self, tmp_path: Path, production: Settings):
        (tmp_path / "dir.sqlite").mkdir()
        backend = SQLiteBackend(f"sqlite://{tmp_path}/dir.sqlite", production)
        errors = []
        backend.add_listener("error", errors.append)

        with pytest.raises(BackendError):
            await backend.get("store")

        assert len(errors) == 1
        assert isinstance(errors[0], BackendError)
        await backend.disconnect()


@pytest.mark.asyncio
@pytest.mark.integration
class TestSQLiteStore:
    """CachedStore on the default SQLite backend."""

    async def test_values_survive_reopen(self, store_address: str, production: Settings):
        async with CachedStore(store_address, settings=production) as store:
            store.set("greeting", "hello")
            store.set("numbers", [1, 2, 3])

        async with CachedStore(store_address, settings=production) as store:
            assert store.get("greeting") == "hello"
            assert store.get("numbers") == [1, 2, 3]

    async def test_last_write_wins(self, store_address: str, production: Settings):
        async with CachedStore(store_address, settings=production) as store:
            for i in range(200):
                store.set("k", i)
            assert await store.flush() is True
            final = store.get("k")

        async with CachedStore(store_address, settings=production) as store:
            assert store.get("k") == final == 199

    async def test_delete_survives_reopen(self, store_address: str, production: Settings):
        async with CachedStore(store_address, settings=production) as store:
            store.set("a", 1)
            store.set("b", 2)
            await store.flush()
            store.delete("a")

        async with CachedStore(store_address, settings=production) as store:
            assert store.get("a") is NOT_FOUND
            assert store.get("b") == 2

    async def test_unencodable_value_rolls_back(self, store_address: str, production: Settings):
        async with CachedStore(store_address, settings=production) as store:
            assert store.set("bad", object()) is False
            assert store.has("bad") is False

    async def test_copy_between_files(self, tmp_path: Path, production: Settings):
        async with CachedStore(str(tmp_path / "source"), settings=production) as source:
            source.set("x", 1)
            async with CachedStore(str(tmp_path / "target"), settings=production) as target:
                assert target.copy_from(source, wipe_first=True) is True

        async with CachedStore(str(tmp_path / "target"), settings=production) as target:
            assert target.snapshot() == {"x": 1}

    async def test_development_mode_leaves_file(self, store_address: str, production: Settings, development: Settings):
        async with CachedStore(store_address, settings=production) as store:
            store.set("shared", "data")

        async with CachedStore(store_address, settings=development) as store:
            store.set("shared", "changed")
            assert store.get("shared") == "changed"

        async with CachedStore(store_address, settings=production) as store:
            assert store.get("shared") == "data"

    async def test_corrupt_file_stays_disconnected(self, store_address: str, production: Settings):
        backend = SQLiteBackend(normalize_address(store_address).uri, production)
        await backend.set("store", {})
        await backend.disconnect()
        with sqlite3.connect(store_address + ".sqlite") as conn:
            conn.execute("UPDATE keyv SET value = 'not json'")

        store = CachedStore(store_address, settings=production)

        assert await store.wait_until_connected() is False
