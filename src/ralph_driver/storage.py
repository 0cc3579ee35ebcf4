"""File persistence helpers shared by the state stores.

All writers go through a sibling ``.tmp`` file followed by ``os.replace`` so a
crash never leaves a half-written document behind. There is no locking: one
control loop owns a state directory at a time.
"""

from __future__ import annotations

import json
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


def from_iso(value: str) -> datetime:
    """Parse ISO datetime and ensure timezone-aware UTC fallback."""

    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


def atomic_write_text(path: Path, text: str) -> None:
    """Replace ``path`` with ``text`` via write-temp-then-rename."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.name}.tmp")
    tmp_path.write_text(text, "utf-8")
    os.replace(tmp_path, path)


def write_json(path: Path, payload: dict[str, Any]) -> None:
    """Persist JSON payload atomically using deterministic formatting."""

    atomic_write_text(
        path,
        json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True) + "\n",
    )


def load_json(path: Path) -> dict[str, Any]:
    """Load JSON document and validate top-level object type."""

    payload = json.loads(path.read_text("utf-8"))
    if not isinstance(payload, dict):
        raise TypeError(f"Expected JSON object in {path}")
    return payload


def count_lines(text: str) -> int:
    return len(text.splitlines())
