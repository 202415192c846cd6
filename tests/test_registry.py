"""Tests for relation declarations and the registry."""

from __future__ import annotations

import logging

import pytest

from kinstore import (
    Database,
    DeletionBehaviour,
    RegistrationConflict,
    RelationDeclaration,
    RelationRegistry,
    UnregisteredEntity,
)
from kinstore.registry import normalize_edges
from tests.models import Author, AuthorProfile, Orphan


class TestNormalizeEdges:
    def test_store_names_and_classes(self):
        edges = normalize_edges([("a", "cascade"), (AuthorProfile, DeletionBehaviour.ERROR)])
        assert edges == (
            ("a", DeletionBehaviour.CASCADE),
            ("author_profile", DeletionBehaviour.ERROR),
        )

    def test_invalid_target(self):
        with pytest.raises(TypeError):
            normalize_edges([(42, "cascade")])

    def test_invalid_behaviour(self):
        with pytest.raises(ValueError):
            normalize_edges([("a", "sometimes")])


class TestRelationRegistry:
    def test_register_and_get(self, registry):
        registry.register(Author.__relations__)
        assert registry.get("author") is Author.__relations__
        assert "author" in registry
        assert len(registry) == 1
        assert registry.store_names() == ["author"]

    def test_get_missing(self, registry):
        assert registry.get("nope") is None
        assert "nope" not in registry

    def test_require_missing(self, registry):
        with pytest.raises(UnregisteredEntity) as exc_info:
            registry.require("orphan")
        assert exc_info.value.store == "orphan"

    def test_identical_registration_is_idempotent(self, registry):
        registry.register(Author.__relations__)
        registry.register(
            RelationDeclaration(
                store_name="author",
                siblings=Author.__relations__.siblings,
                children=Author.__relations__.children,
            )
        )
        assert len(registry) == 1

    def test_conflicting_registration(self, registry):
        registry.register(Author.__relations__)
        with pytest.raises(RegistrationConflict):
            registry.register(RelationDeclaration(store_name="author"))
        assert registry.get("author") is Author.__relations__

    def test_registration_is_logged(self, registry, caplog):
        with caplog.at_level(logging.INFO, logger="kinstore.registry"):
            registry.register(Author.__relations__)
        assert "Registered store 'author'" in caplog.text

    def test_registries_are_independent(self):
        first, second = RelationRegistry(), RelationRegistry()
        first.register(Orphan.__relations__)
        assert "orphan" not in second


class TestDatabaseRegistration:
    def test_entity_types_registered_on_open(self, tmp_db, registry):
        with Database(tmp_db, registry=registry, entity_types=[Author, AuthorProfile]) as db:
            assert db.registry is registry
            assert sorted(registry.store_names()) == ["author", "author_profile"]

    def test_register_via_entity(self, tmp_db, registry):
        with Database(tmp_db, registry=registry) as db:
            Orphan.register(db)
            assert "orphan" in registry

    def test_storage_info_lists_registered_stores(self, db):
        info = db.storage_info()
        assert "author" in info["registered_stores"]
        assert info["backend"] == "sqlite"
