"""Relation declarations, deletion behaviours and the process-wide registry."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from kinstore.errors import RegistrationConflict, UnregisteredEntity

logger = logging.getLogger(__name__)


class DeletionBehaviour(str, Enum):
    """What happens to a counterpart when an entity is deleted."""

    CASCADE = "cascade"
    """The counterpart is deleted too."""
    ERROR = "error"
    """Deletion is refused while the counterpart exists."""
    BREAK_LINK = "break_link"
    """Only the link is dropped; the counterpart is left alone."""


Edge = tuple[str, DeletionBehaviour]


def _edge_target(target: Any) -> str:
    """Store name of an edge target given as a store name or an Entity class."""
    if isinstance(target, str):
        return target
    store_name = getattr(target, "__store_name__", None)
    if not isinstance(store_name, str):
        raise TypeError(f"Relation target must be a store name or Entity class, got {target!r}")
    return store_name


def normalize_edges(edges: Iterable[tuple[Any, DeletionBehaviour | str]]) -> tuple[Edge, ...]:
    """Normalize ``(target, behaviour)`` pairs to ``(store_name, DeletionBehaviour)``."""
    return tuple((_edge_target(target), DeletionBehaviour(b)) for target, b in edges)


@dataclass(frozen=True)
class RelationDeclaration:
    """Static relation metadata of one entity type."""

    store_name: str
    siblings: tuple[Edge, ...] = ()
    children: tuple[Edge, ...] = ()


class RelationRegistry:
    """Store name -> RelationDeclaration.

    Entries are added once, during startup, and never removed. Reads take no lock.
    """

    def __init__(self) -> None:
        self._entries: dict[str, RelationDeclaration] = {}
        self._lock = threading.Lock()

    def register(self, declaration: RelationDeclaration) -> None:
        with self._lock:
            existing = self._entries.get(declaration.store_name)
            if existing is not None:
                if existing != declaration:
                    raise RegistrationConflict(declaration.store_name)
                return
            self._entries[declaration.store_name] = declaration
        logger.info(
            "Registered store '%s' (%d sibling, %d child relation(s))",
            declaration.store_name,
            len(declaration.siblings),
            len(declaration.children),
        )

    def get(self, store_name: str) -> RelationDeclaration | None:
        return self._entries.get(store_name)

    def require(self, store_name: str) -> RelationDeclaration:
        declaration = self._entries.get(store_name)
        if declaration is None:
            raise UnregisteredEntity(store_name)
        return declaration

    def store_names(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, store_name: object) -> bool:
        return store_name in self._entries

    def __len__(self) -> int:
        return len(self._entries)


default_registry = RelationRegistry()
