"""kin info — show the database location and per-store entry counts."""

from __future__ import annotations

import os
from typing import Any

import typer

from kinstore.cli import _exitcodes as ec
from kinstore.cli._output import print_counts, print_error, print_json
from kinstore.cli._storage import open_db
from kinstore.storage import parse_storage_target


def info_cmd(
    internal: bool = typer.Option(
        False, "--internal", help="Include link, catalog and sequence stores"
    ),
) -> None:
    """Show the database location and per-store entry counts."""
    from kinstore.cli import state

    target = parse_storage_target(db_path=state.db, storage_uri=state.storage_uri)
    if target.db_path != ":memory:" and not os.path.exists(target.db_path):
        print_error(f"Database not found: {target.db_path}")
        raise typer.Exit(ec.DATABASE_ERROR)

    try:
        db = open_db()
    except Exception as e:
        print_error(f"Cannot open database: {e}")
        raise typer.Exit(ec.DATABASE_ERROR)

    try:
        names = [n for n in db.kv.store_names() if internal or not n.startswith("__")]
        counts = {name: db.kv.count(name) for name in names}
        data: dict[str, Any] = {
            "db_path": target.db_path,
            "file_size_bytes": os.path.getsize(target.db_path)
            if os.path.exists(target.db_path)
            else 0,
            "stores": counts,
        }
        if state.json_output:
            print_json(data)
            return
        print(f"Database: {target.db_path}")
        print(f"File size: {int(data['file_size_bytes']):,} bytes")
        if not counts:
            print("No stores")
            return
        print()
        print_counts(counts)
    finally:
        db.close()
