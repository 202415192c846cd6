"""kin import — restore one entity store from a JSON array."""

from __future__ import annotations

import os
from typing import Optional

import typer

from kinstore.cli import _exitcodes as ec
from kinstore.cli._loader import resolve_entity_type
from kinstore.cli._output import print_error
from kinstore.cli._storage import open_db
from kinstore.errors import KinstoreError


def import_cmd(
    type_name: str = typer.Option(..., "--type", help="Entity class or store name"),
    input_path: str = typer.Option(..., "--input", help="JSON file written by kin export"),
    models: Optional[str] = typer.Option(None, "--models", help="Python module path"),
    models_path: Optional[str] = typer.Option(None, "--models-path", help="Python file path"),
) -> None:
    """Restore one entity store from a JSON array. Existing keys are overwritten."""
    try:
        entity_type, _ = resolve_entity_type(type_name, models, models_path)
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    if not os.path.exists(input_path):
        print_error(f"Input file not found: {input_path}")
        raise typer.Exit(ec.USAGE_ERROR)

    try:
        db = open_db()
    except Exception as e:
        print_error(f"Cannot open database: {e}")
        raise typer.Exit(ec.DATABASE_ERROR)

    try:
        with open(input_path) as f:
            count = db.import_json(entity_type, f)
    except KinstoreError as e:
        print_error(str(e))
        raise typer.Exit(ec.DATA_ERROR)
    finally:
        db.close()

    print(f"Imported {count} {entity_type.__name__} entities from {input_path}")
