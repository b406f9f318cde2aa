"""File and stream helpers for config, request bodies and responses."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import yaml

STDIN_MARKER = "-"


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def read_yaml(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def read_json_source(source: str) -> Any:
    """Parse JSON from a file path, or from stdin when ``source`` is ``-``."""
    if source == STDIN_MARKER:
        return json.load(sys.stdin)
    with Path(source).open("r", encoding="utf-8") as f:
        return json.load(f)


def dump_json(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2, default=str)


def write_json(path: Path, payload: Any) -> None:
    ensure_dir(path.parent)
    path.write_text(dump_json(payload) + "\n", encoding="utf-8")
