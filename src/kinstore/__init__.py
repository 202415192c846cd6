"""kinstore: relational integrity for an ordered key-value store."""

__version__ = "0.1.0"

from kinstore.config import KinstoreConfig
from kinstore.database import Database, open_database
from kinstore.errors import (
    CascadeDepthError,
    DeletionBlocked,
    KeyspaceExhausted,
    KinstoreError,
    MalformedKey,
    RegistrationConflict,
    SerializationError,
    StorageError,
    UnregisteredEntity,
)
from kinstore.keys import child_of, i32, i64, raw, text, u32, u64
from kinstore.registry import DeletionBehaviour, RelationDeclaration, RelationRegistry
from kinstore.types import Entity, Field

__all__ = [
    "__version__",
    "Entity",
    "Field",
    "Database",
    "open_database",
    "DeletionBehaviour",
    "RelationDeclaration",
    "RelationRegistry",
    "KinstoreConfig",
    "child_of",
    "u32",
    "u64",
    "i32",
    "i64",
    "text",
    "raw",
    "KinstoreError",
    "StorageError",
    "SerializationError",
    "MalformedKey",
    "UnregisteredEntity",
    "DeletionBlocked",
    "CascadeDepthError",
    "KeyspaceExhausted",
    "RegistrationConflict",
]
