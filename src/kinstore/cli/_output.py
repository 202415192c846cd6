"""Output formatting helpers for the CLI."""

from __future__ import annotations

import json
import sys
from collections.abc import Mapping
from typing import Any


def print_counts(counts: Mapping[str, int], *, label: str = "store") -> None:
    """Print ``name -> count`` rows as two aligned columns, counts right-aligned."""
    name_width = max([len(label), *(len(name) for name in counts)])
    count_width = max([len("entries"), *(len(f"{c:,}") for c in counts.values())])
    print(f"{label.ljust(name_width)}  {'entries'.rjust(count_width)}")
    print(f"{'-' * name_width}  {'-' * count_width}")
    for name, count in counts.items():
        print(f"{name.ljust(name_width)}  {f'{count:,}'.rjust(count_width)}")


def print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def print_error(msg: str) -> None:
    """Print an error message to stderr."""
    print(f"Error: {msg}", file=sys.stderr)
