"""Progress log models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class CompactionMode(str, Enum):
    """Progress log compaction policy."""

    LINE = "line"
    RELEVANCE = "relevance"


@dataclass(slots=True, frozen=True)
class ProgressEntry:
    """One dated entry: heading line through the next heading or separator."""

    heading: str
    text: str
    start_line: int
    end_line: int


@dataclass(slots=True)
class ParsedProgress:
    preamble: str
    entries: list[ProgressEntry] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class ScoredEntry:
    entry: ProgressEntry
    score: int


@dataclass(slots=True)
class CompactionStats:
    """Before/after accounting for one compaction run."""

    mode: CompactionMode
    compacted: bool
    lines_before: int
    lines_after: int
    entries_before: int = 0
    entries_after: int = 0
    backup_path: str | None = None
    skipped_reason: str | None = None
