"""Tests for Entity/Field declaration and value encoding."""

from __future__ import annotations

import math

import pytest
from pydantic import ValidationError

from kinstore import Entity, Field, SerializationError
from kinstore.keys import child_of, i64, raw, u32, u64
from tests.models import CASCADE, Author, AuthorProfile, Blob, Book, Reading


class TestDeclaration:
    def test_store_name_defaults_to_snake_case(self):
        assert Author.__store_name__ == "author"
        assert AuthorProfile.__store_name__ == "author_profile"

    def test_explicit_store_name(self):
        assert Blob.__store_name__ == "blobs"

    def test_key_codec_inferred(self):
        assert Author.__key_codec__ == u32
        assert Blob.__key_codec__ == raw
        assert Book.__key_codec__ == child_of(u32)

    def test_explicit_key_codec(self):
        assert Reading.__key_codec__ == i64

    def test_relations_from_class_keywords(self):
        assert Author.__relations__.siblings == (
            ("author_profile", CASCADE),
            ("author_stats", "break_link"),
        )
        assert Author.__relations__.children == (("book", CASCADE),)
        # partner given as a class
        assert AuthorProfile.__relations__.siblings == (("author", "break_link"),)

    def test_behaviour_given_as_string(self):
        class Tagged(Entity, siblings=[("tag_meta", "cascade")]):
            id: Field[str] = Field(primary_key=True)

        assert Tagged.__relations__.siblings == (("tag_meta", CASCADE),)

    def test_unknown_behaviour(self):
        with pytest.raises(ValueError):

            class Bad(Entity, siblings=[("x", "explode")]):
                id: Field[int] = Field(primary_key=True)

    def test_missing_primary_key(self):
        with pytest.raises(TypeError, match="exactly one"):

            class NoKey(Entity):
                name: Field[str]

    def test_multiple_primary_keys(self):
        with pytest.raises(TypeError, match="multiple primary keys"):

            class TwoKeys(Entity):
                a: Field[int] = Field(primary_key=True)
                b: Field[int] = Field(primary_key=True)

    def test_key_type_without_codec(self):
        with pytest.raises(TypeError, match="explicit key codec"):

            class FloatKeyed(Entity):
                id: Field[float] = Field(primary_key=True)

    def test_explicit_codec_overrides_inference(self):
        class Stamp(Entity, key=u64):
            id: Field[int] = Field(primary_key=True)

        assert Stamp.__key_codec__ == u64

    @pytest.mark.parametrize("store", ["__hidden", "a->b"])
    def test_reserved_store_names(self, store):
        with pytest.raises(TypeError):

            class Reserved(Entity, store=store):
                id: Field[int] = Field(primary_key=True)

    def test_field_descriptor_on_class(self):
        assert isinstance(Author.name, Field)
        assert Author.name.name == "name"
        assert Author._primary_key_field == "id"


class TestInstances:
    def test_defaults(self):
        profile = AuthorProfile(id=3)
        assert profile.bio == ""
        assert profile.get_key() == 3

    def test_default_factory_is_per_instance(self):
        class Bag(Entity):
            id: Field[int] = Field(primary_key=True)
            items: Field[list[str]] = Field(default_factory=list)

        a, b = Bag(id=1), Bag(id=2)
        a.items.append("x")
        assert b.items == []

    def test_validation_on_construction(self):
        with pytest.raises(ValidationError):
            Author(id=1)

    def test_set_key(self):
        book = Book(title="Dune")
        book.set_key((4, 1))
        assert book.id == (4, 1)
        assert book.encoded_key() == u32.encode(4) + u32.encode(1)

    def test_equality_and_repr(self):
        assert Author(id=1, name="Ann") == Author(id=1, name="Ann")
        assert Author(id=1, name="Ann") != Author(id=2, name="Ann")
        assert repr(Author(id=1, name="Ann")) == "Author(id=1, name='Ann')"

    def test_model_dump_and_validate(self):
        reading = Reading(id=-4, value=1.5)
        assert reading.model_dump() == {"id": -4, "value": 1.5, "note": None}
        assert Reading.model_validate(reading.model_dump()) == reading


class TestValueEncoding:
    def test_round_trip(self):
        author = Author(id=9, name="Ursula")
        assert Author.from_bytes(author.to_bytes()) == author

    def test_bytes_fields_round_trip(self):
        blob = Blob(id=b"\x00\x01", data=b"\xff\xfe\x00")
        restored = Blob.from_bytes(blob.to_bytes())
        assert restored.data == b"\xff\xfe\x00"
        assert restored.id == b"\x00\x01"

    def test_tuple_key_round_trip(self):
        book = Book(id=(1, 2), title="x")
        assert Book.from_bytes(book.to_bytes()).id == (1, 2)

    @pytest.mark.parametrize("value", [float("inf"), float("-inf")])
    def test_infinite_floats_round_trip(self, value):
        reading = Reading(id=1, value=value)
        assert Reading.from_bytes(reading.to_bytes()).value == value

    def test_nan_round_trip(self):
        restored = Reading.from_bytes(Reading(id=1, value=float("nan")).to_bytes())
        assert math.isnan(restored.value)

    def test_garbage_bytes(self):
        with pytest.raises(SerializationError):
            Author.from_bytes(b"\x00not json")

    def test_schema_drift(self):
        with pytest.raises(SerializationError, match="Author"):
            Author.from_bytes(b'{"id": 1}')

    def test_invalid_assignment_fails_on_encode(self):
        author = Author(id=1, name="Ann")
        author.name = object()
        with pytest.raises(SerializationError):
            author.to_bytes()
