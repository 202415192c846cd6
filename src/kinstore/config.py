"""Configuration for kinstore databases."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class KinstoreConfig:
    """Configuration for a kinstore Database."""

    max_cascade_depth: int = 64
    sqlite_journal_mode: str = "WAL"
    sqlite_timeout_s: float = 5.0
