"""Structured error types for kinstore."""

from __future__ import annotations


class KinstoreError(Exception):
    """Base error for all kinstore errors."""


class StorageError(KinstoreError):
    """Raised when the underlying key-value store fails."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage error during {operation}: {detail}")


class SerializationError(KinstoreError):
    """Raised when an entity cannot be encoded or stored bytes cannot be decoded."""


class MalformedKey(KinstoreError):
    """Raised when a key cannot be encoded, or key bytes have an inconsistent layout."""


class UnregisteredEntity(KinstoreError):
    """Raised when deleting from a store whose relations were never registered."""

    def __init__(self, store: str) -> None:
        self.store = store
        super().__init__(
            f"Store '{store}' is not registered. "
            "Call db.register(EntityType) before deleting from it."
        )


class DeletionBlocked(KinstoreError):
    """Raised when an ERROR relation still has a live counterpart."""

    def __init__(self, store: str, counterpart_store: str, relation_kind: str) -> None:
        self.store = store
        self.counterpart_store = counterpart_store
        self.relation_kind = relation_kind
        super().__init__(
            f"Cannot delete from '{store}': constrained {relation_kind} entity "
            f"exists in '{counterpart_store}'"
        )


class CascadeDepthError(KinstoreError):
    """Raised when a cascading delete goes deeper than max_cascade_depth."""

    def __init__(self, depth: int, limit: int) -> None:
        self.depth = depth
        self.limit = limit
        super().__init__(f"Cascade depth {depth} exceeds max_cascade_depth of {limit}")


class KeyspaceExhausted(KinstoreError):
    """Raised when no auto-increment key is left for a store."""

    def __init__(self, store: str) -> None:
        self.store = store
        super().__init__(f"No unused u32 key left in store '{store}'")


class RegistrationConflict(KinstoreError):
    """Raised when a store is registered twice with different relation declarations."""

    def __init__(self, store: str) -> None:
        self.store = store
        super().__init__(f"Store '{store}' is already registered with different relations")
