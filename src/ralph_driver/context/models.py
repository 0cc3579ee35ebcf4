"""Context assembly models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ContextMode(str, Enum):
    """Context building mode."""

    STANDARD = "standard"
    DYNAMIC = "dynamic"


class ExpansionKind(str, Enum):
    """On-demand context request kinds."""

    SPEC = "spec"
    FILE = "file"
    PROGRESS = "progress"


# Higher value = more important.
PRIORITY_CURRENT_TASK = 95
PRIORITY_PATTERNS = 90
PRIORITY_RECENT_PROGRESS = 80
PRIORITY_DOC_INDEX = 70
PRIORITY_MATCHED_DOCS = 60
PRIORITY_OLDER_PROGRESS = 40


@dataclass(slots=True, frozen=True)
class ContextSection:
    """One candidate block of context."""

    name: str
    priority: int
    content: str
    required: bool = False


@dataclass(slots=True)
class AssembledContext:
    """Rendered context plus budget accounting."""

    text: str
    budget_tokens: int | None
    used_tokens: int
    sections: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def remaining_tokens(self) -> int | None:
        if self.budget_tokens is None:
            return None
        return self.budget_tokens - self.used_tokens


@dataclass(slots=True, frozen=True)
class ContextUsage:
    """Budget usage report for an already rendered context."""

    used_tokens: int
    budget_tokens: int
    percent: int
    level: str

    @property
    def remaining_tokens(self) -> int:
        return self.budget_tokens - self.used_tokens
