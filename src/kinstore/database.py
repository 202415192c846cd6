"""Database facade: typed store binding, relation protocols and key allocation."""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from typing import IO, Any, TypeVar

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from kinstore.config import KinstoreConfig
from kinstore.errors import DeletionBlocked, KeyspaceExhausted, SerializationError
from kinstore.keys import CompositeKey, text, u32
from kinstore.registry import DeletionBehaviour, RelationRegistry, default_registry
from kinstore.relations import DeletionPlan, RelationEngine
from kinstore.storage import KeyValueStoreProtocol, open_store
from kinstore.types import Entity

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Entity)

SEQUENCE_STORE = "__sequence__"


def _child_codec(parent_type: type[Entity], child_type: type[Entity]) -> CompositeKey:
    codec = child_type.__key_codec__
    if not isinstance(codec, CompositeKey) or codec.parent != parent_type.__key_codec__:
        raise TypeError(
            f"{child_type.__name__} is not keyed as a child of {parent_type.__name__}: "
            f"expected child_of({parent_type.__key_codec__!r}), got {codec!r}"
        )
    return codec


class Database:
    """Entity stores with sibling, parent-child and free relations.

    Single-key operations are atomic. Anything touching more than one key
    (cascading deletes, sibling and child saves, relation links) is a sequence of
    single-key operations and can be left half-done by a crash.
    """

    def __init__(
        self,
        db_path: str | None = None,
        *,
        storage_uri: str | None = None,
        config: KinstoreConfig | None = None,
        registry: RelationRegistry | None = None,
        entity_types: Iterable[type[Entity]] | None = None,
        kv: KeyValueStoreProtocol | None = None,
    ) -> None:
        self.config = config or KinstoreConfig()
        self.kv = kv or open_store(db_path, storage_uri=storage_uri, config=self.config)
        self.registry = registry if registry is not None else default_registry
        self.relations = RelationEngine(self.kv, self.registry, self.config)
        self._alloc_lock = threading.Lock()
        for entity_type in entity_types or ():
            self.register(entity_type)

    def close(self) -> None:
        self.kv.close()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def register(self, entity_type: type[Entity]) -> None:
        """Declare ``entity_type``'s relations. Required before deleting from its store."""
        self.registry.register(entity_type.__relations__)

    # --- Store binding ---

    def save(self, entity: Entity) -> None:
        self.kv.put(entity.__store_name__, entity.encoded_key(), entity.to_bytes())

    def get(self, entity_type: type[E], key: Any) -> E | None:
        data = self.kv.get(entity_type.__store_name__, entity_type.__key_codec__.encode(key))
        return entity_type.from_bytes(data) if data is not None else None

    def _decode_all(
        self, entity_type: type[E], rows: Iterable[tuple[bytes, bytes]]
    ) -> Iterator[E]:
        for _, data in rows:
            yield entity_type.from_bytes(data)

    def get_all(self, entity_type: type[E]) -> Iterator[E]:
        """Every entity of the store in key order, read lazily."""
        return self._decode_all(entity_type, self.kv.scan(entity_type.__store_name__))

    def get_with_filter(self, entity_type: type[E], predicate: Callable[[E], bool]) -> Iterator[E]:
        """Entities matching ``predicate``. Exceptions raised by it propagate."""
        return (e for e in self.get_all(entity_type) if predicate(e))

    def exists(self, entity_type: type[Entity], key: Any) -> bool:
        return self.kv.contains(entity_type.__store_name__, entity_type.__key_codec__.encode(key))

    def count(self, entity_type: type[Entity]) -> int:
        return self.kv.count(entity_type.__store_name__)

    def get_each(self, entity_type: type[E], keys: Iterable[Any]) -> list[E]:
        """Point lookups for ``keys``; missing keys are skipped."""
        found = (self.get(entity_type, k) for k in keys)
        return [e for e in found if e is not None]

    def get_in_range(self, entity_type: type[E], start: Any, end: Any) -> list[E]:
        """Entities with ``start <= key < end`` in key order."""
        codec = entity_type.__key_codec__
        rows = self.kv.scan(
            entity_type.__store_name__, start=codec.encode(start), end=codec.encode(end)
        )
        return list(self._decode_all(entity_type, rows))

    def _pagination_prefix(self, entity_type: type[Entity], parent: Any) -> bytes:
        if parent is None:
            return b""
        codec = entity_type.__key_codec__
        if not isinstance(codec, CompositeKey):
            raise TypeError(f"{entity_type.__name__} has no parent key")
        return codec.prefix(parent)

    def get_from_start(
        self, entity_type: type[E], start: int, count: int, parent: Any = None
    ) -> list[E]:
        """``count`` entities after skipping ``start``, optionally children of ``parent``."""
        rows = self.kv.scan(
            entity_type.__store_name__, self._pagination_prefix(entity_type, parent)
        )
        return list(self._decode_all(entity_type, itertools.islice(rows, start, start + count)))

    def get_from_end(
        self, entity_type: type[E], start: int, count: int, parent: Any = None
    ) -> list[E]:
        """Like get_from_start, counting from the end of the store. Results are in key order."""
        rows = self.kv.scan(
            entity_type.__store_name__,
            self._pagination_prefix(entity_type, parent),
            reverse=True,
        )
        page = list(self._decode_all(entity_type, itertools.islice(rows, start, start + count)))
        page.reverse()
        return page

    def update(self, entity_type: type[E], key: Any, modifier: Callable[[E], None]) -> E | None:
        """Apply ``modifier`` to the stored entity and save it back."""
        entity = self.get(entity_type, key)
        if entity is None:
            return None
        modifier(entity)
        self.save(entity)
        return entity

    def filter_update(
        self,
        entity_type: type[E],
        predicate: Callable[[E], bool],
        modifier: Callable[[E], None],
    ) -> int:
        matches = list(self.get_with_filter(entity_type, predicate))
        for entity in matches:
            modifier(entity)
            self.save(entity)
        return len(matches)

    def remove(self, entity_type: type[Entity], key: Any) -> DeletionPlan:
        """Delete an entity, applying the deletion behaviour of each of its relations."""
        return self.relations.delete(
            entity_type.__store_name__, entity_type.__key_codec__.encode(key)
        )

    def filter_remove(self, entity_type: type[E], predicate: Callable[[E], bool]) -> list[E]:
        """Remove every match. Matches blocked by an ERROR relation are kept and not returned."""
        removed = []
        for entity in list(self.get_with_filter(entity_type, predicate)):
            try:
                self.remove(entity_type, entity.get_key())
            except DeletionBlocked as e:
                logger.debug("Kept %r: %s", entity, e)
                continue
            removed.append(entity)
        return removed

    def export_json(self, entity_type: type[Entity], fp: IO[str]) -> int:
        """Write the whole store as a JSON array; returns the number of entities."""
        model = entity_type._pydantic_model
        adapter = TypeAdapter(list[model])  # type: ignore[valid-type]
        rows = [model(**e.model_dump()) for e in self.get_all(entity_type)]
        fp.write(adapter.dump_json(rows, indent=2).decode("utf-8"))
        return len(rows)

    def import_json(self, entity_type: type[Entity], fp: IO[str]) -> int:
        """Save every entity of a JSON array written by export_json, overwriting existing keys."""
        adapter = TypeAdapter(list[entity_type._pydantic_model])  # type: ignore[name-defined]
        try:
            rows = adapter.validate_json(fp.read())
        except PydanticValidationError as e:
            raise SerializationError(
                f"Import does not match {entity_type.__name__}'s schema: {e}"
            ) from e
        for row in rows:
            self.save(entity_type._from_validated(row))
        return len(rows)

    # --- Sibling relations ---

    def save_sibling(self, entity: Entity, sibling: Entity) -> None:
        """Give ``sibling`` the key of ``entity`` and save it in its own store."""
        if type(sibling).__key_codec__ != type(entity).__key_codec__:
            raise TypeError(
                f"{type(sibling).__name__} and {type(entity).__name__} do not share a key type"
            )
        sibling.set_key(entity.get_key())
        self.save(sibling)

    def get_sibling(self, entity: Entity, sibling_type: type[E]) -> E | None:
        if sibling_type.__key_codec__ != type(entity).__key_codec__:
            raise TypeError(
                f"{sibling_type.__name__} and {type(entity).__name__} do not share a key type"
            )
        return self.get(sibling_type, entity.get_key())

    # --- Parent-child relations ---

    def save_child(self, parent: Entity, child: Entity) -> Any:
        """Key ``child`` as the next child of ``parent``, save it and return its key."""
        codec = _child_codec(type(parent), type(child))
        prefix = parent.encoded_key()
        with self._alloc_lock:
            last = self.kv.last(child.__store_name__, prefix)
            sequence = 0 if last is None else codec.sequence_of(last[0]) + 1
            if sequence > u32.max_value:
                raise KeyspaceExhausted(child.__store_name__)
            key = (parent.get_key(), sequence)
            child.set_key(key)
            self.save(child)
        return key

    def get_children(self, parent: Entity, child_type: type[E]) -> list[E]:
        """Children of ``parent`` in ascending sequence order."""
        _child_codec(type(parent), child_type)
        rows = self.kv.scan(child_type.__store_name__, parent.encoded_key())
        return list(self._decode_all(child_type, rows))

    def adopt_child(self, parent: Entity, child: Entity) -> Any:
        """Move ``child`` under ``parent``: delete it at its old key and save it as a new child."""
        _child_codec(type(parent), type(child))
        self.remove(type(child), child.get_key())
        return self.save_child(parent, child)

    # --- Free relations ---

    def create_relation(
        self,
        entity: Entity,
        other: Entity,
        self_to_other: DeletionBehaviour | str,
        other_to_self: DeletionBehaviour | str,
        name: str | None = None,
    ) -> None:
        """Link two entities both ways.

        ``self_to_other`` is what happens to ``other`` when ``entity`` is deleted,
        ``other_to_self`` what happens to ``entity`` when ``other`` is deleted.
        """
        self.relations.create_link(
            entity.__store_name__,
            entity.encoded_key(),
            other.__store_name__,
            other.encoded_key(),
            DeletionBehaviour(self_to_other),
            DeletionBehaviour(other_to_self),
            name=name,
        )

    def get_related(
        self, entity: Entity, other_type: type[E], name: str | None = None
    ) -> list[E]:
        """Entities of ``other_type`` linked to ``entity``, in key order."""
        related = []
        links = self.relations.links_to(
            entity.__store_name__, entity.encoded_key(), other_type.__store_name__
        )
        for link in links:
            if name is not None and link.record.name != name:
                continue
            data = self.kv.get(other_type.__store_name__, link.target_key)
            if data is not None:
                related.append(other_type.from_bytes(data))
        return related

    def get_single_related(
        self, entity: Entity, other_type: type[E], name: str | None = None
    ) -> E | None:
        related = self.get_related(entity, other_type, name=name)
        return related[0] if related else None

    def remove_relation(self, entity: Entity, other: Entity) -> None:
        self.relations.remove_link(
            entity.__store_name__,
            entity.encoded_key(),
            other.__store_name__,
            other.encoded_key(),
        )

    def remove_relation_with_key(
        self, entity: Entity, other_type: type[Entity], other_key: Any
    ) -> None:
        self.relations.remove_link(
            entity.__store_name__,
            entity.encoded_key(),
            other_type.__store_name__,
            other_type.__key_codec__.encode(other_key),
        )

    # --- Auto-increment ---

    def next_key(self, entity_type: type[Entity]) -> int:
        """Next unused u32 key: above both the last stored key and every key handed out."""
        if entity_type.__key_codec__ != u32:
            raise TypeError(f"{entity_type.__name__} is not keyed by u32")
        store = entity_type.__store_name__
        last = self.kv.last(store)
        candidate = 0 if last is None else u32.decode(last[0]) + 1
        high_water = self.kv.get(SEQUENCE_STORE, text.encode(store))
        if high_water is not None:
            candidate = max(candidate, u32.decode(high_water) + 1)
        if candidate > u32.max_value:
            raise KeyspaceExhausted(store)
        return candidate

    def save_next(self, entity: Entity) -> int:
        """Save ``entity`` under the next auto-increment key and return that key."""
        with self._alloc_lock:
            key = self.next_key(type(entity))
            entity.set_key(key)
            self.save(entity)
            self.kv.put(SEQUENCE_STORE, text.encode(entity.__store_name__), u32.encode(key))
        return key

    def storage_info(self) -> dict[str, Any]:
        info: dict[str, Any] = {"registered_stores": sorted(self.registry.store_names())}
        storage_info = getattr(self.kv, "storage_info", None)
        if storage_info is not None:
            info.update(storage_info())
        return info


def open_database(
    db_path: str | None = None,
    *,
    storage_uri: str | None = None,
    config: KinstoreConfig | None = None,
    registry: RelationRegistry | None = None,
    entity_types: Iterable[type[Entity]] | None = None,
) -> Database:
    """Open a Database from a db path or ``sqlite:///`` URI."""
    return Database(
        db_path,
        storage_uri=storage_uri,
        config=config,
        registry=registry,
        entity_types=entity_types,
    )
