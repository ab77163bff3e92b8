"""
captionline.io - Atomic text/JSON writes and temp-file cleanup.

Artifacts are written through a temp file and renamed so that a file
present under its final name is always complete; the skip-if-exists
resume logic depends on this.
"""

from __future__ import annotations

import json
import tempfile
from collections.abc import Iterable
from pathlib import Path
from typing import Any


def read_text(path: Path) -> str:
    """Read text file with UTF-8 encoding.

    Args:
        path: Path to text file

    Returns:
        File contents as string
    """
    with open(path, encoding="utf-8") as f:
        return f.read()


def write_text(path: Path, content: str) -> None:
    """Write text file atomically.

    Args:
        path: Destination path
        content: Text content to write
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        delete=False,
        suffix=".tmp",
    ) as tmp:
        tmp_path = Path(tmp.name)
        try:
            tmp.write(content)
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise
    tmp_path.replace(path)


def write_json(path: Path, data: Any, indent: int = 2) -> None:
    """Write JSON file atomically with pretty formatting."""
    write_text(path, json.dumps(data, indent=indent, ensure_ascii=False, default=str))


def remove_files(paths: Iterable[Path]) -> list[Path]:
    """Delete files that exist; return the ones removed."""
    removed = []
    for path in paths:
        if path.exists():
            path.unlink()
            removed.append(path)
    return removed
