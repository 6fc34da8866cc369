"""Filesystem helpers."""

from __future__ import annotations

import json
from pathlib import Path
from typing import IO


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def read_yaml(path: Path):
    import yaml

    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def write_json(path: Path, payload) -> None:
    ensure_dir(path.parent)
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2, sort_keys=True)
        f.write("\n")


def open_delimited(path: Path) -> IO[str]:
    # newline="" lets the csv module see embedded line breaks inside quotes.
    return path.open("r", encoding="utf-8", newline="")
