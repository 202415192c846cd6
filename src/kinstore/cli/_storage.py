"""CLI helpers for opening the database selected by global options."""

from __future__ import annotations

from collections.abc import Iterable

from kinstore.database import Database
from kinstore.registry import RelationRegistry
from kinstore.types import Entity


def open_db(entity_types: Iterable[type[Entity]] | None = None) -> Database:
    """Open the database from CLI state with a registry private to this command."""
    from kinstore.cli import state

    return Database(
        state.db,
        storage_uri=state.storage_uri,
        registry=RelationRegistry(),
        entity_types=entity_types,
    )
