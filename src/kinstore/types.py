"""Entity and Field types for kinstore."""

from __future__ import annotations

import inspect
import re
import sys
from collections.abc import Callable, Iterable, Iterator
from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar, get_args

from pydantic import BaseModel, ConfigDict, create_model
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticSerializationError

from kinstore.errors import SerializationError
from kinstore.keys import KeyCodec, infer_key_codec
from kinstore.registry import DeletionBehaviour, RelationDeclaration, normalize_edges

if TYPE_CHECKING:
    from kinstore.database import Database

T = TypeVar("T")
E = TypeVar("E", bound="Entity")

_SENTINEL = object()
_RESERVED_PREFIX = "__"
_LINK_SEPARATOR = "->"


class Field(Generic[T]):
    """Field descriptor for Entity schemas."""

    def __init__(
        self,
        default: Any = _SENTINEL,
        *,
        default_factory: Any | None = None,
        primary_key: bool = False,
    ) -> None:
        self.default = default
        self.default_factory = default_factory
        self.primary_key = primary_key
        self.name: str = ""
        self.annotation: Any = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __get__(self, obj: Any, objtype: type | None = None) -> Any:
        if obj is None:
            return self
        return obj.__dict__.get(self.name, _SENTINEL)

    def __set__(self, obj: Any, value: Any) -> None:
        obj.__dict__[self.name] = value

    def has_default(self) -> bool:
        return self.default is not _SENTINEL or self.default_factory is not None

    def get_default(self) -> Any:
        if self.default_factory is not None:
            return self.default_factory()
        if self.default is not _SENTINEL:
            return self.default
        raise ValueError(f"Field '{self.name}' has no default")


def _resolve_annotation(ann: Any, module_name: str) -> Any:
    """Resolve string annotations and extract the inner type from Field[T]."""
    if isinstance(ann, str):
        module = sys.modules.get(module_name, None)
        ns = vars(module) if module else {}
        try:
            ann = eval(ann, ns)  # noqa: S307
        except Exception:
            return Any

    origin = getattr(ann, "__origin__", None)
    if origin is Field:
        args = get_args(ann)
        return args[0] if args else Any
    return ann


def _collect_fields(cls: type) -> dict[str, Field[Any]]:
    """Collect Field descriptors from class annotations."""
    fields: dict[str, Field[Any]] = {}

    annotations = inspect.get_annotations(cls)

    for name, ann in annotations.items():
        resolved = _resolve_annotation(ann, cls.__module__)

        origin = getattr(ann, "__origin__", None)
        is_field_ann = origin is Field
        if isinstance(ann, str) and "Field" in ann:
            is_field_ann = True

        if not is_field_ann:
            continue

        val = cls.__dict__.get(name, _SENTINEL)

        field_desc: Field[Any]
        if isinstance(val, Field):
            field_desc = val
        elif val is None:
            # `note: Field[str | None] = None` shorthand
            field_desc = Field(default=None)
        elif val is _SENTINEL:
            field_desc = Field()
        else:
            field_desc = Field(default=val)

        field_desc.name = name
        field_desc.annotation = resolved
        fields[name] = field_desc

        if not isinstance(cls.__dict__.get(name), Field):
            setattr(cls, name, field_desc)

    return fields


def _build_pydantic_model(model_name: str, fields: dict[str, Field[Any]]) -> type[BaseModel]:
    """Build a Pydantic model from Field definitions."""
    pydantic_fields: dict[str, Any] = {}
    for name, f in fields.items():
        ann = f.annotation if f.annotation is not None else Any
        if f.default_factory is not None:
            from pydantic import Field as PydanticField

            pydantic_fields[name] = (ann, PydanticField(default_factory=f.default_factory))
        elif f.default is not _SENTINEL:
            pydantic_fields[name] = (ann, f.default)
        else:
            pydantic_fields[name] = (ann, ...)

    return create_model(  # type: ignore[call-overload]
        model_name,
        __config__=ConfigDict(
            ser_json_bytes="base64",
            val_json_bytes="base64",
            ser_json_inf_nan="constants",
        ),
        **pydantic_fields,
    )


def _snake_case(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _check_store_name(store_name: str) -> None:
    if not store_name:
        raise TypeError("Entity store name must not be empty")
    if store_name.startswith(_RESERVED_PREFIX):
        raise TypeError(f"Store names starting with '{_RESERVED_PREFIX}' are reserved: {store_name!r}")
    if _LINK_SEPARATOR in store_name:
        raise TypeError(f"Store names must not contain '{_LINK_SEPARATOR}': {store_name!r}")


class Entity:
    """Base class for typed entities stored under a typed key.

    Subclasses declare their fields with ``Field[T]`` annotations, exactly one of
    them ``Field(primary_key=True)``. Class keywords:

    - ``store``: store name, unique per entity type (default: snake_case class name)
    - ``key``: key codec (default: inferred from the primary key annotation)
    - ``siblings``: ``[(partner, DeletionBehaviour)]`` one-to-one relations
    - ``children``: ``[(child, DeletionBehaviour)]`` one-to-many relations

    Partners and children are given as store names or Entity classes.
    """

    __store_name__: ClassVar[str]
    __key_codec__: ClassVar[KeyCodec]
    __relations__: ClassVar[RelationDeclaration]
    __entity_fields__: ClassVar[tuple[str, ...]]
    _pydantic_model: ClassVar[type[BaseModel]]
    _field_definitions: ClassVar[dict[str, Field[Any]]]
    _primary_key_field: ClassVar[str]

    def __init_subclass__(
        cls,
        store: str | None = None,
        key: KeyCodec | None = None,
        siblings: Iterable[tuple[Any, DeletionBehaviour | str]] = (),
        children: Iterable[tuple[Any, DeletionBehaviour | str]] = (),
        **kwargs: Any,
    ) -> None:
        super().__init_subclass__(**kwargs)

        cls.__store_name__ = store or _snake_case(cls.__name__)
        _check_store_name(cls.__store_name__)

        fields = _collect_fields(cls)
        cls._field_definitions = fields
        cls.__entity_fields__ = tuple(fields.keys())

        pk_fields = [n for n, f in fields.items() if f.primary_key]
        if len(pk_fields) == 0:
            raise TypeError(
                f"Entity '{cls.__name__}' must define exactly one Field(primary_key=True)"
            )
        if len(pk_fields) > 1:
            raise TypeError(f"Entity '{cls.__name__}' has multiple primary keys: {pk_fields}")
        cls._primary_key_field = pk_fields[0]

        codec = key or infer_key_codec(fields[pk_fields[0]].annotation)
        if codec is None:
            raise TypeError(
                f"Entity '{cls.__name__}' needs an explicit key codec, "
                f"e.g. class {cls.__name__}(Entity, key=kinstore.keys.u64)"
            )
        cls.__key_codec__ = codec

        cls.__relations__ = RelationDeclaration(
            store_name=cls.__store_name__,
            siblings=normalize_edges(siblings),
            children=normalize_edges(children),
        )

        cls._pydantic_model = _build_pydantic_model(f"_{cls.__name__}Model", fields)

    def __init__(self, **data: Any) -> None:
        validated = self._pydantic_model(**data)
        self._assign(validated)

    def _assign(self, validated: BaseModel) -> None:
        for name in self.__entity_fields__:
            setattr(self, name, getattr(validated, name))

    @classmethod
    def _from_validated(cls: type[E], validated: BaseModel) -> E:
        obj = cls.__new__(cls)
        obj._assign(validated)
        return obj

    # --- Capability interface used by the relation engine ---

    def get_key(self) -> Any:
        return getattr(self, self._primary_key_field)

    def set_key(self, key: Any) -> None:
        setattr(self, self._primary_key_field, key)

    def encoded_key(self) -> bytes:
        return self.__key_codec__.encode(self.get_key())

    def to_bytes(self) -> bytes:
        try:
            return self._pydantic_model(**self.model_dump()).model_dump_json().encode("utf-8")
        except (PydanticValidationError, PydanticSerializationError) as e:
            raise SerializationError(
                f"Cannot encode {self.__class__.__name__} for store '{self.__store_name__}': {e}"
            ) from e

    @classmethod
    def from_bytes(cls: type[E], data: bytes) -> E:
        try:
            validated = cls._pydantic_model.model_validate_json(data)
        except PydanticValidationError as e:
            raise SerializationError(
                f"Stored value in '{cls.__store_name__}' does not decode as {cls.__name__}: {e}"
            ) from e
        return cls._from_validated(validated)

    def model_dump(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.__entity_fields__}

    @classmethod
    def model_validate(cls: type[E], data: dict[str, Any]) -> E:
        return cls(**data)

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={getattr(self, k)!r}" for k in self.__entity_fields__)
        return f"{self.__class__.__name__}({fields})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, self.__class__):
            return NotImplemented
        return self.model_dump() == other.model_dump()

    # --- Store binding shortcuts ---

    @classmethod
    def register(cls, db: Database) -> None:
        db.register(cls)

    def save(self, db: Database) -> None:
        db.save(self)

    @classmethod
    def get(cls: type[E], key: Any, db: Database) -> E | None:
        return db.get(cls, key)

    @classmethod
    def get_all(cls: type[E], db: Database) -> Iterator[E]:
        return db.get_all(cls)

    @classmethod
    def get_with_filter(cls: type[E], predicate: Callable[[E], bool], db: Database) -> Iterator[E]:
        return db.get_with_filter(cls, predicate)

    @classmethod
    def exists(cls, key: Any, db: Database) -> bool:
        return db.exists(cls, key)

    @classmethod
    def remove(cls, key: Any, db: Database) -> None:
        db.remove(cls, key)

    def save_next(self, db: Database) -> int:
        return db.save_next(self)

    # --- Relation shortcuts ---

    def save_sibling(self, sibling: Entity, db: Database) -> None:
        db.save_sibling(self, sibling)

    def get_sibling(self, sibling_type: type[E], db: Database) -> E | None:
        return db.get_sibling(self, sibling_type)

    def save_child(self, child: Entity, db: Database) -> Any:
        return db.save_child(self, child)

    def get_children(self, child_type: type[E], db: Database) -> list[E]:
        return db.get_children(self, child_type)

    def create_relation(
        self,
        other: Entity,
        self_to_other: DeletionBehaviour,
        other_to_self: DeletionBehaviour,
        db: Database,
        name: str | None = None,
    ) -> None:
        db.create_relation(self, other, self_to_other, other_to_self, name=name)

    def get_related(self, other_type: type[E], db: Database, name: str | None = None) -> list[E]:
        return db.get_related(self, other_type, name=name)

    def get_single_related(
        self, other_type: type[E], db: Database, name: str | None = None
    ) -> E | None:
        return db.get_single_related(self, other_type, name=name)

    def remove_relation(self, other: Entity, db: Database) -> None:
        db.remove_relation(self, other)

    def remove_relation_with_key(self, other_type: type[Entity], other_key: Any, db: Database) -> None:
        db.remove_relation_with_key(self, other_type, other_key)
