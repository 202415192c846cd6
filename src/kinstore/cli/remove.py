"""kin remove — delete one entity, applying its relations' deletion behaviours."""

from __future__ import annotations

import json
from typing import Any, Optional

import typer

from kinstore.cli import _exitcodes as ec
from kinstore.cli._loader import resolve_entity_type
from kinstore.cli._output import print_error, print_json
from kinstore.cli._storage import open_db
from kinstore.errors import DeletionBlocked, KinstoreError, StorageError


def _as_key(value: Any) -> Any:
    # JSON has no tuples; composite keys arrive as nested lists.
    if isinstance(value, list):
        return tuple(_as_key(v) for v in value)
    return value


def remove_cmd(
    key_json: str = typer.Argument(..., help="Key as JSON, e.g. 3, \"alice\" or [3, 0]"),
    type_name: str = typer.Option(..., "--type", help="Entity class or store name"),
    models: Optional[str] = typer.Option(None, "--models", help="Python module path"),
    models_path: Optional[str] = typer.Option(None, "--models-path", help="Python file path"),
) -> None:
    """Delete one entity. Every entity type of the models module is registered first."""
    from kinstore.cli import state

    try:
        entity_type, entity_types = resolve_entity_type(type_name, models, models_path)
        key = _as_key(json.loads(key_json))
    except Exception as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    try:
        db = open_db(entity_types.values())
    except Exception as e:
        print_error(f"Cannot open database: {e}")
        raise typer.Exit(ec.DATABASE_ERROR)

    try:
        if not db.exists(entity_type, key):
            print_error(f"No {entity_type.__name__} with key {key_json}")
            raise typer.Exit(ec.DATA_ERROR)
        plan = db.remove(entity_type, key)
    except DeletionBlocked as e:
        print_error(f"Deletion blocked: {e}")
        raise typer.Exit(ec.DATA_ERROR)
    except StorageError as e:
        print_error(str(e))
        raise typer.Exit(ec.DATABASE_ERROR)
    except KinstoreError as e:
        print_error(str(e))
        raise typer.Exit(ec.DATA_ERROR)
    finally:
        db.close()

    deleted: dict[str, int] = {}
    for store, _ in plan.order:
        deleted[store] = deleted.get(store, 0) + 1
    if state.json_output:
        print_json({"deleted": deleted})
    else:
        print(f"Deleted {len(plan)} entities")
        for store, count in deleted.items():
            print(f"  {store}: {count}")
