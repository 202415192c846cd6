"""Shared fixtures for CLI tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner

from kinstore import Database, RelationRegistry
from kinstore.cli import app
from tests.models import (
    REGISTERED_TYPES,
    Account,
    AccountLock,
    Author,
    AuthorProfile,
    Book,
    Student,
)

if TYPE_CHECKING:
    from click.testing import Result


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def cli_db(tmp_path):
    """Create a temp DB path for the CLI to open."""
    return str(tmp_path / "cli_test.db")


@pytest.fixture
def seeded_db(cli_db):
    """Create a DB with authors, books, students and a locked account linked to a student."""
    db = Database(cli_db, registry=RelationRegistry(), entity_types=REGISTERED_TYPES)
    author = Author(id=1, name="Ursula")
    db.save(author)
    db.save_sibling(author, AuthorProfile(bio="Earthsea"))
    db.save_child(author, Book(title="A Wizard of Earthsea"))
    db.save_child(author, Book(title="The Tombs of Atuan"))

    db.save(Student(id=1, name="Ada"))
    db.save(Student(id=2, name="Grace"))
    db.save_next(Student(name="Lin"))

    account = Account(id="acc", owner="Ada")
    db.save(account)
    db.save_sibling(account, AccountLock(id="", reason="audit"))
    db.create_relation(db.get(Student, 1), account, "break_link", "break_link")
    db.close()
    return cli_db


def invoke(runner: CliRunner, args: list[str], db_path: str | None = None) -> "Result":
    """Invoke CLI with proper state setup."""
    if db_path:
        # Inject --db before subcommand
        args = ["--db", db_path] + args
    result = runner.invoke(app, args, catch_exceptions=False)
    return result
