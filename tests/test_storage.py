"""Tests for the SQLite key-value store and storage target parsing."""

from __future__ import annotations

import threading

import pytest

from kinstore.errors import StorageError
from kinstore.storage import SqliteKeyValueStore, open_store, parse_storage_target


class TestPointOperations:
    def test_put_and_get(self, kv):
        kv.put("s", b"k1", b"v1")
        assert kv.get("s", b"k1") == b"v1"

    def test_get_missing(self, kv):
        assert kv.get("s", b"nope") is None

    def test_put_overwrites(self, kv):
        kv.put("s", b"k", b"old")
        kv.put("s", b"k", b"new")
        assert kv.get("s", b"k") == b"new"
        assert kv.count("s") == 1

    def test_delete(self, kv):
        kv.put("s", b"k", b"v")
        assert kv.delete("s", b"k") is True
        assert kv.delete("s", b"k") is False
        assert not kv.contains("s", b"k")

    def test_stores_are_independent(self, kv):
        kv.put("a", b"k", b"1")
        kv.put("b", b"k", b"2")
        assert kv.get("a", b"k") == b"1"
        assert kv.get("b", b"k") == b"2"
        assert kv.store_names() == ["a", "b"]


class TestRangeOperations:
    @pytest.fixture
    def filled(self, kv):
        for key in [b"\x01", b"\x01\x00", b"\x01\xff", b"\x02", b"\x02\x01", b"\xff"]:
            kv.put("s", key, key.hex().encode())
        return kv

    def test_scan_is_byte_ordered(self, filled):
        keys = [k for k, _ in filled.scan("s")]
        assert keys == [b"\x01", b"\x01\x00", b"\x01\xff", b"\x02", b"\x02\x01", b"\xff"]

    def test_scan_prefix(self, filled):
        assert [k for k, _ in filled.scan("s", b"\x01")] == [b"\x01", b"\x01\x00", b"\x01\xff"]
        assert [k for k, _ in filled.scan("s", b"\xff")] == [b"\xff"]

    def test_scan_reverse(self, filled):
        assert [k for k, _ in filled.scan("s", b"\x02", reverse=True)] == [b"\x02\x01", b"\x02"]

    def test_scan_start_end(self, filled):
        keys = [k for k, _ in filled.scan("s", start=b"\x01\x00", end=b"\x02\x01")]
        assert keys == [b"\x01\x00", b"\x01\xff", b"\x02"]

    def test_scan_keys(self, filled):
        assert list(filled.scan_keys("s", b"\x02")) == [b"\x02", b"\x02\x01"]

    def test_last(self, filled):
        assert filled.last("s")[0] == b"\xff"
        assert filled.last("s", b"\x01")[0] == b"\x01\xff"
        assert filled.last("s", b"\x03") is None

    def test_count(self, filled):
        assert filled.count("s") == 6
        assert filled.count("s", b"\x01") == 3

    def test_scan_is_restartable(self, filled):
        first = list(filled.scan("s"))
        filled.put("s", b"\x00", b"new")
        second = list(filled.scan("s"))
        assert len(second) == len(first) + 1


class TestLifecycle:
    def test_durable_across_reopen(self, tmp_db):
        store = SqliteKeyValueStore(tmp_db)
        store.put("s", b"k", b"v")
        store.close()

        reopened = SqliteKeyValueStore(tmp_db)
        try:
            assert reopened.get("s", b"k") == b"v"
        finally:
            reopened.close()

    def test_closed_store_raises_storage_error(self, tmp_db):
        store = SqliteKeyValueStore(tmp_db)
        store.close()
        with pytest.raises(StorageError) as exc_info:
            store.get("s", b"k")
        assert exc_info.value.operation == "get"

    def test_unopenable_path_raises_storage_error(self, tmp_path):
        with pytest.raises(StorageError):
            SqliteKeyValueStore(str(tmp_path / "missing" / "dir" / "x.db"))

    def test_shared_across_threads(self, kv):
        def writer(n):
            for i in range(50):
                kv.put("s", bytes([n, i]), b"v")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert kv.count("s") == 200

    def test_named_store_handle(self, kv):
        store = kv.store("things")
        store.put(b"a", b"1")
        assert store.get(b"a") == b"1"
        assert store.count() == 1
        assert kv.get("things", b"a") == b"1"


class TestStorageTarget:
    def test_defaults(self):
        target = parse_storage_target()
        assert target.db_path == "kinstore.db"

    def test_sqlite_uri(self):
        assert parse_storage_target(storage_uri="sqlite:///tmp/x.db").db_path == "/tmp/x.db"

    def test_memory_uri(self):
        assert parse_storage_target(storage_uri="sqlite:///:memory:").db_path == ":memory:"

    def test_unsupported_scheme(self):
        with pytest.raises(StorageError):
            parse_storage_target(storage_uri="s3://bucket/prefix")

    def test_conflicting_path_and_uri(self):
        with pytest.raises(StorageError):
            parse_storage_target(db_path="a.db", storage_uri="sqlite:///b.db")

    def test_open_store_memory(self):
        store = open_store(storage_uri="sqlite:///:memory:")
        try:
            store.put("s", b"k", b"v")
            assert store.get("s", b"k") == b"v"
        finally:
            store.close()
