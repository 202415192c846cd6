"""Free-relation link stores and the cascading delete algorithm.

Link records of a free relation between stores A and B live in two auxiliary
stores, ``__link__A->B`` and ``__link__B->A``. A record in ``X->Y`` is keyed by
the encoded X key followed by the encoded Y key; since every key encoding is
self-delimiting, a prefix scan on an X key finds exactly its links. Which link
stores exist is recorded in ``__link_catalog__`` keyed by (source, target).

Deletion runs in two passes. Planning walks sibling, child and free-relation
edges from the root with a visited set and raises before anything is written.
Applying then deletes dependents before the entities they depend on. The apply
pass is a sequence of single-key deletes and is not atomic.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from kinstore.config import KinstoreConfig
from kinstore.errors import CascadeDepthError, DeletionBlocked, SerializationError
from kinstore.keys import text
from kinstore.registry import DeletionBehaviour, RelationRegistry
from kinstore.storage import KeyValueStoreProtocol

logger = logging.getLogger(__name__)

LINK_CATALOG_STORE = "__link_catalog__"


def link_store_name(source: str, target: str) -> str:
    return f"__link__{source}->{target}"


class LinkRecord(BaseModel):
    """Value of one link record, seen from the record's source side."""

    on_source_delete: DeletionBehaviour
    on_target_delete: DeletionBehaviour
    name: str | None = None

    def mirrored(self) -> LinkRecord:
        return LinkRecord(
            on_source_delete=self.on_target_delete,
            on_target_delete=self.on_source_delete,
            name=self.name,
        )


def _decode_link(store: str, data: bytes) -> LinkRecord:
    try:
        return LinkRecord.model_validate_json(data)
    except PydanticValidationError as e:
        raise SerializationError(f"Corrupt link record in '{store}': {e}") from e


@dataclass(frozen=True)
class Link:
    """An outgoing link of one entity."""

    target_store: str
    target_key: bytes
    record: LinkRecord


@dataclass
class DeletionPlan:
    """Entities to delete, dependents first."""

    root: tuple[str, bytes]
    order: list[tuple[str, bytes]] = field(default_factory=list)
    scheduled: set[tuple[str, bytes]] = field(default_factory=set)

    def __len__(self) -> int:
        return len(self.order)


class RelationEngine:
    """Free-relation protocol and deletion algorithm over raw store names and key bytes."""

    def __init__(
        self,
        kv: KeyValueStoreProtocol,
        registry: RelationRegistry,
        config: KinstoreConfig | None = None,
    ) -> None:
        self.kv = kv
        self.registry = registry
        self.config = config or KinstoreConfig()

    # --- Free relations ---

    def link_targets(self, source_store: str) -> list[str]:
        """Stores that ``source_store`` has link stores towards, in catalog order."""
        prefix = text.encode(source_store)
        targets = []
        for catalog_key in self.kv.scan_keys(LINK_CATALOG_STORE, prefix):
            target, _ = text.read(catalog_key, len(prefix))
            targets.append(target)
        return targets

    def _write_link(
        self,
        source: str,
        source_key: bytes,
        target: str,
        target_key: bytes,
        record: LinkRecord,
    ) -> None:
        self.kv.put(LINK_CATALOG_STORE, text.encode(source) + text.encode(target), b"")
        self.kv.put(
            link_store_name(source, target),
            source_key + target_key,
            record.model_dump_json().encode("utf-8"),
        )

    def create_link(
        self,
        source: str,
        source_key: bytes,
        target: str,
        target_key: bytes,
        forward: DeletionBehaviour,
        backward: DeletionBehaviour,
        name: str | None = None,
    ) -> None:
        """Write the forward and the backward link record of one pair."""
        record = LinkRecord(on_source_delete=forward, on_target_delete=backward, name=name)
        self._write_link(source, source_key, target, target_key, record)
        self._write_link(target, target_key, source, source_key, record.mirrored())
        logger.debug(
            "Linked %s/%s -> %s/%s (%s, %s)",
            source,
            source_key.hex(),
            target,
            target_key.hex(),
            forward.value,
            backward.value,
        )

    def remove_link(self, source: str, source_key: bytes, target: str, target_key: bytes) -> None:
        """Delete both link records of one pair; the entities are left alone."""
        self.kv.delete(link_store_name(source, target), source_key + target_key)
        self.kv.delete(link_store_name(target, source), target_key + source_key)

    def get_link(
        self, source: str, source_key: bytes, target: str, target_key: bytes
    ) -> LinkRecord | None:
        store = link_store_name(source, target)
        data = self.kv.get(store, source_key + target_key)
        return _decode_link(store, data) if data is not None else None

    def links_to(self, source: str, source_key: bytes, target: str) -> Iterator[Link]:
        """Outgoing links of ``source``/``source_key`` into ``target``, in key order."""
        store = link_store_name(source, target)
        for link_key, data in self.kv.scan(store, source_key):
            yield Link(target, link_key[len(source_key):], _decode_link(store, data))

    def outgoing_links(self, source: str, source_key: bytes) -> Iterator[Link]:
        for target in self.link_targets(source):
            yield from self.links_to(source, source_key, target)

    def unlink_all(self, source: str, source_key: bytes) -> int:
        """Remove every link record involving ``source``/``source_key``."""
        removed = 0
        for link in list(self.outgoing_links(source, source_key)):
            self.remove_link(source, source_key, link.target_store, link.target_key)
            removed += 1
        return removed

    # --- Deletion ---

    def plan_delete(self, store: str, key: bytes) -> DeletionPlan:
        """Collect everything deleting ``store``/``key`` would delete.

        Raises UnregisteredEntity, DeletionBlocked or CascadeDepthError without
        writing anything.
        """
        plan = DeletionPlan(root=(store, key))
        self._visit(store, key, plan, 0)
        return plan

    def _visit(self, store: str, key: bytes, plan: DeletionPlan, depth: int) -> None:
        node = (store, key)
        if node in plan.scheduled:
            return
        limit = self.config.max_cascade_depth
        if depth > limit:
            raise CascadeDepthError(depth, limit)
        declaration = self.registry.require(store)
        plan.scheduled.add(node)

        for partner, behaviour in declaration.siblings:
            if behaviour is DeletionBehaviour.BREAK_LINK or not self.kv.contains(partner, key):
                continue
            if behaviour is DeletionBehaviour.CASCADE:
                self._visit(partner, key, plan, depth + 1)
            elif (partner, key) not in plan.scheduled:
                raise DeletionBlocked(store, partner, "sibling")

        for child_store, behaviour in declaration.children:
            if behaviour is DeletionBehaviour.BREAK_LINK:
                continue
            child_keys = list(self.kv.scan_keys(child_store, key))
            if behaviour is DeletionBehaviour.CASCADE:
                for child_key in child_keys:
                    self._visit(child_store, child_key, plan, depth + 1)
            elif any((child_store, k) not in plan.scheduled for k in child_keys):
                raise DeletionBlocked(store, child_store, "child")

        for link in list(self.outgoing_links(store, key)):
            behaviour = link.record.on_source_delete
            target = (link.target_store, link.target_key)
            if behaviour is DeletionBehaviour.CASCADE:
                if self.kv.contains(*target):
                    self._visit(link.target_store, link.target_key, plan, depth + 1)
            elif behaviour is DeletionBehaviour.ERROR and target not in plan.scheduled:
                raise DeletionBlocked(store, link.target_store, "related")

        plan.order.append(node)

    def apply(self, plan: DeletionPlan) -> None:
        for store, key in plan.order:
            self.unlink_all(store, key)
            self.kv.delete(store, key)
        logger.debug(
            "Deleted %s/%s and %d dependent(s)", plan.root[0], plan.root[1].hex(), len(plan) - 1
        )

    def delete(self, store: str, key: bytes) -> DeletionPlan:
        plan = self.plan_delete(store, key)
        self.apply(plan)
        return plan
