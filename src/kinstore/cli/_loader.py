"""Model loader: import a Python module and discover its Entity types."""

from __future__ import annotations

import importlib
import sys
from pathlib import Path

from kinstore.types import Entity


def load_models(
    models: str | None = None,
    models_path: str | None = None,
) -> dict[str, type[Entity]]:
    """Load Entity classes from a Python module.

    Args:
        models: Dotted Python import path (e.g. 'myapp.models')
        models_path: Filesystem path to a Python file

    Returns:
        Entity types keyed by class name
    """
    if models_path:
        path = Path(models_path).resolve()
        if not path.exists():
            raise FileNotFoundError(f"Models path not found: {models_path}")
        parent = str(path.parent)
        if parent not in sys.path:
            sys.path.insert(0, parent)
        module = importlib.import_module(path.stem)
    elif models:
        module = importlib.import_module(models)
    else:
        raise ValueError("One of --models or --models-path is required")

    entity_types: dict[str, type[Entity]] = {}
    for attr_name in dir(module):
        obj = getattr(module, attr_name)
        if isinstance(obj, type) and issubclass(obj, Entity) and obj is not Entity:
            entity_types[obj.__name__] = obj
    return entity_types


def resolve_entity_type(
    type_name: str,
    models: str | None = None,
    models_path: str | None = None,
) -> tuple[type[Entity], dict[str, type[Entity]]]:
    """Load models and pick ``type_name`` by class or store name."""
    entity_types = load_models(models, models_path)
    for entity_type in entity_types.values():
        if type_name in (entity_type.__name__, entity_type.__store_name__):
            return entity_type, entity_types
    raise KeyError(
        f"Unknown entity type '{type_name}'. Available: {', '.join(sorted(entity_types))}"
    )
