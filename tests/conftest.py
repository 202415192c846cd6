"""Shared test fixtures for kinstore tests."""

from __future__ import annotations

import pytest

from kinstore import Database, RelationRegistry
from kinstore.storage import SqliteKeyValueStore
from tests.models import REGISTERED_TYPES


@pytest.fixture
def tmp_db(tmp_path):
    """Create a temporary SQLite database path."""
    return str(tmp_path / "test.db")


@pytest.fixture
def kv(tmp_db):
    """Create a bare key-value store with a temporary database."""
    store = SqliteKeyValueStore(tmp_db)
    yield store
    store.close()


@pytest.fixture
def registry():
    """A registry private to one test."""
    return RelationRegistry()


@pytest.fixture
def db(tmp_db, registry):
    """A Database with every test entity type except Orphan registered."""
    d = Database(tmp_db, registry=registry, entity_types=REGISTERED_TYPES)
    yield d
    d.close()
