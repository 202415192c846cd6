"""Ordered byte-keyed key-value store backing every entity store.

All named stores live in one SQLite table keyed by ``(store, key)``. SQLite
compares BLOBs with memcmp, so iteration order within a store is the byte order
of the encoded keys, which is what prefix scans rely on.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable
from urllib.parse import urlparse

from kinstore.config import KinstoreConfig
from kinstore.errors import StorageError
from kinstore.keys import prefix_upper_bound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageTarget:
    """Resolved storage target from a plain path or a sqlite URI."""

    uri: str
    db_path: str


def parse_storage_target(
    db_path: str | None = None,
    storage_uri: str | None = None,
) -> StorageTarget:
    """Resolve a storage target from a db path or ``sqlite:///`` URI."""
    if storage_uri is None and db_path is None:
        db_path = "kinstore.db"

    if storage_uri is None and db_path is not None:
        return StorageTarget(uri=f"sqlite:///{db_path}", db_path=db_path)

    assert storage_uri is not None
    parsed = urlparse(storage_uri)
    if parsed.scheme != "sqlite":
        raise StorageError(
            "parse_storage_uri",
            f"Unsupported storage URI scheme '{parsed.scheme}' for '{storage_uri}'",
        )
    sqlite_path = parsed.path
    if parsed.netloc:
        sqlite_path = f"{parsed.netloc}{sqlite_path}"
    elif sqlite_path.startswith("//"):
        # sqlite:////abs/path -> /abs/path
        sqlite_path = sqlite_path[1:]
    if sqlite_path == "/:memory:":
        sqlite_path = ":memory:"
    if not sqlite_path:
        raise StorageError("parse_storage_uri", f"Invalid sqlite URI: {storage_uri}")
    if db_path is not None and os.path.abspath(db_path) != os.path.abspath(sqlite_path):
        raise StorageError(
            "parse_storage_uri",
            f"Conflicting db_path '{db_path}' and storage_uri '{storage_uri}'",
        )
    return StorageTarget(uri=storage_uri, db_path=sqlite_path)


@runtime_checkable
class KeyValueStoreProtocol(Protocol):
    """Contract of the ordered key-value store consumed by the relation engine."""

    def get(self, store: str, key: bytes) -> bytes | None: ...

    def put(self, store: str, key: bytes, value: bytes) -> None: ...

    def delete(self, store: str, key: bytes) -> bool: ...

    def contains(self, store: str, key: bytes) -> bool: ...

    def scan(
        self,
        store: str,
        prefix: bytes = b"",
        *,
        start: bytes | None = None,
        end: bytes | None = None,
        reverse: bool = False,
    ) -> Iterator[tuple[bytes, bytes]]: ...

    def scan_keys(self, store: str, prefix: bytes = b"") -> Iterator[bytes]: ...

    def last(self, store: str, prefix: bytes = b"") -> tuple[bytes, bytes] | None: ...

    def count(self, store: str, prefix: bytes = b"") -> int: ...

    def store_names(self) -> list[str]: ...

    def close(self) -> None: ...


def _range_clause(
    prefix: bytes, start: bytes | None, end: bytes | None, params: list[Any]
) -> str:
    """Compile prefix/start/end bounds into a WHERE fragment on ``key``."""
    lower = prefix
    if start is not None and start > lower:
        lower = start
    upper = prefix_upper_bound(prefix) if prefix else None
    if end is not None and (upper is None or end < upper):
        upper = end

    clauses = []
    if lower:
        clauses.append("key >= ?")
        params.append(lower)
    if upper is not None:
        clauses.append("key < ?")
        params.append(upper)
    return "".join(f" AND {c}" for c in clauses)


class SqliteKeyValueStore:
    """SQLite-backed ordered key-value store.

    Every write runs in autocommit mode, so each single-key operation is atomic
    and durable on its own. Nothing spans more than one key.
    """

    def __init__(self, db_path: str, config: KinstoreConfig | None = None) -> None:
        cfg = config or KinstoreConfig()
        self.db_path = db_path
        self._lock = threading.RLock()
        with self._op("open"):
            self._conn = sqlite3.connect(
                db_path,
                timeout=cfg.sqlite_timeout_s,
                isolation_level=None,
                check_same_thread=False,
            )
            self._conn.execute(f"PRAGMA journal_mode={cfg.sqlite_journal_mode}")
            self._create_tables()
        logger.info("Opened key-value store at %s", db_path)

    def _create_tables(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS kv (
                store TEXT NOT NULL,
                key BLOB NOT NULL,
                value BLOB NOT NULL,
                PRIMARY KEY (store, key)
            ) WITHOUT ROWID;
        """)

    @contextmanager
    def _op(self, operation: str) -> Iterator[None]:
        with self._lock:
            try:
                yield
            except sqlite3.Error as e:
                raise StorageError(operation, str(e)) from e

    def store(self, name: str) -> Store:
        return Store(self, name)

    def close(self) -> None:
        with self._op("close"):
            self._conn.close()
        logger.info("Closed key-value store at %s", self.db_path)

    # --- Point operations ---

    def get(self, store: str, key: bytes) -> bytes | None:
        with self._op("get"):
            row = self._conn.execute(
                "SELECT value FROM kv WHERE store = ? AND key = ?", (store, key)
            ).fetchone()
        return bytes(row[0]) if row else None

    def put(self, store: str, key: bytes, value: bytes) -> None:
        with self._op("put"):
            self._conn.execute(
                "INSERT INTO kv (store, key, value) VALUES (?, ?, ?) "
                "ON CONFLICT(store, key) DO UPDATE SET value = excluded.value",
                (store, key, value),
            )

    def delete(self, store: str, key: bytes) -> bool:
        with self._op("delete"):
            cursor = self._conn.execute(
                "DELETE FROM kv WHERE store = ? AND key = ?", (store, key)
            )
        return cursor.rowcount > 0

    def contains(self, store: str, key: bytes) -> bool:
        with self._op("contains"):
            row = self._conn.execute(
                "SELECT 1 FROM kv WHERE store = ? AND key = ?", (store, key)
            ).fetchone()
        return row is not None

    # --- Range operations ---

    def scan(
        self,
        store: str,
        prefix: bytes = b"",
        *,
        start: bytes | None = None,
        end: bytes | None = None,
        reverse: bool = False,
    ) -> Iterator[tuple[bytes, bytes]]:
        """Yield ``(key, value)`` pairs in key order, read when iteration starts."""
        params: list[Any] = [store]
        where = _range_clause(prefix, start, end, params)
        order = "DESC" if reverse else "ASC"
        with self._op("scan"):
            rows = self._conn.execute(
                f"SELECT key, value FROM kv WHERE store = ?{where} ORDER BY key {order}",
                params,
            ).fetchall()
        for key, value in rows:
            yield bytes(key), bytes(value)

    def scan_keys(self, store: str, prefix: bytes = b"") -> Iterator[bytes]:
        params: list[Any] = [store]
        where = _range_clause(prefix, None, None, params)
        with self._op("scan_keys"):
            rows = self._conn.execute(
                f"SELECT key FROM kv WHERE store = ?{where} ORDER BY key ASC", params
            ).fetchall()
        for (key,) in rows:
            yield bytes(key)

    def last(self, store: str, prefix: bytes = b"") -> tuple[bytes, bytes] | None:
        params: list[Any] = [store]
        where = _range_clause(prefix, None, None, params)
        with self._op("last"):
            row = self._conn.execute(
                f"SELECT key, value FROM kv WHERE store = ?{where} ORDER BY key DESC LIMIT 1",
                params,
            ).fetchone()
        return (bytes(row[0]), bytes(row[1])) if row else None

    def count(self, store: str, prefix: bytes = b"") -> int:
        params: list[Any] = [store]
        where = _range_clause(prefix, None, None, params)
        with self._op("count"):
            row = self._conn.execute(
                f"SELECT COUNT(*) FROM kv WHERE store = ?{where}", params
            ).fetchone()
        return int(row[0])

    def store_names(self) -> list[str]:
        with self._op("store_names"):
            rows = self._conn.execute("SELECT DISTINCT store FROM kv ORDER BY store").fetchall()
        return [r[0] for r in rows]

    def storage_info(self) -> dict[str, Any]:
        return {"backend": "sqlite", "db_path": self.db_path}


@dataclass(frozen=True)
class Store:
    """One named store of a key-value store."""

    kv: KeyValueStoreProtocol
    name: str

    def get(self, key: bytes) -> bytes | None:
        return self.kv.get(self.name, key)

    def put(self, key: bytes, value: bytes) -> None:
        self.kv.put(self.name, key, value)

    def delete(self, key: bytes) -> bool:
        return self.kv.delete(self.name, key)

    def contains(self, key: bytes) -> bool:
        return self.kv.contains(self.name, key)

    def scan(self, prefix: bytes = b"", **kwargs: Any) -> Iterator[tuple[bytes, bytes]]:
        return self.kv.scan(self.name, prefix, **kwargs)

    def scan_keys(self, prefix: bytes = b"") -> Iterator[bytes]:
        return self.kv.scan_keys(self.name, prefix)

    def last(self, prefix: bytes = b"") -> tuple[bytes, bytes] | None:
        return self.kv.last(self.name, prefix)

    def count(self, prefix: bytes = b"") -> int:
        return self.kv.count(self.name, prefix)


def open_store(
    db_path: str | None = None,
    *,
    storage_uri: str | None = None,
    config: KinstoreConfig | None = None,
) -> SqliteKeyValueStore:
    """Open the key-value store from a db path or sqlite URI."""
    target = parse_storage_target(db_path=db_path, storage_uri=storage_uri)
    return SqliteKeyValueStore(target.db_path, config=config)


__all__ = [
    "KeyValueStoreProtocol",
    "SqliteKeyValueStore",
    "Store",
    "StorageTarget",
    "parse_storage_target",
    "open_store",
]
