"""kin export — dump one entity store as a JSON array."""

from __future__ import annotations

from typing import Optional

import typer

from kinstore.cli import _exitcodes as ec
from kinstore.cli._loader import resolve_entity_type
from kinstore.cli._output import print_error
from kinstore.cli._storage import open_db
from kinstore.errors import KinstoreError


def export_cmd(
    type_name: str = typer.Option(..., "--type", help="Entity class or store name"),
    output: str = typer.Option(..., "--output", help="Output JSON file path"),
    models: Optional[str] = typer.Option(None, "--models", help="Python module path"),
    models_path: Optional[str] = typer.Option(None, "--models-path", help="Python file path"),
) -> None:
    """Dump one entity store as a JSON array."""
    try:
        entity_type, _ = resolve_entity_type(type_name, models, models_path)
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    try:
        db = open_db()
    except Exception as e:
        print_error(f"Cannot open database: {e}")
        raise typer.Exit(ec.DATABASE_ERROR)

    try:
        with open(output, "w") as f:
            count = db.export_json(entity_type, f)
    except OSError as e:
        print_error(f"Cannot write {output}: {e}")
        raise typer.Exit(ec.USAGE_ERROR)
    except KinstoreError as e:
        print_error(str(e))
        raise typer.Exit(ec.DATA_ERROR)
    finally:
        db.close()

    print(f"Exported {count} {entity_type.__name__} entities to {output}")
