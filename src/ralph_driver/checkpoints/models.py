"""Checkpoint records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any


class CheckpointStatus(str, Enum):
    """Task status captured by a checkpoint."""

    IN_PROGRESS = "in_progress"
    TESTS_FAILING = "tests_failing"
    PARTIAL = "partial"
    COMPLETED = "completed"


@dataclass(slots=True, frozen=True)
class GitState:
    branch: str = "unknown"
    commit: str = "unknown"
    dirty_file_count: int = 0
    staged_files: tuple[str, ...] = ()
    modified_files: tuple[str, ...] = ()


@dataclass(slots=True, frozen=True)
class TaskDefinition:
    task_id: str
    title: str = ""
    description: str = ""
    priority: int = 0
    passes: bool = False


@dataclass(slots=True, frozen=True)
class Checkpoint:
    """Immutable snapshot of task progress and git state."""

    checkpoint_name: str
    created_at: datetime
    task_id: str
    task_title: str
    task_description: str
    status: CheckpointStatus
    notes: str
    git_branch: str
    git_commit: str
    dirty_file_count: int
    staged_files: tuple[str, ...] = ()
    modified_files: tuple[str, ...] = ()
    path: Path | None = field(default=None, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "checkpoint_name": self.checkpoint_name,
            "created_at": self.created_at.isoformat(),
            "task_id": self.task_id,
            "task_title": self.task_title,
            "task_description": self.task_description,
            "status": self.status.value,
            "notes": self.notes,
            "git_branch": self.git_branch,
            "git_commit": self.git_commit,
            "dirty_file_count": self.dirty_file_count,
            "staged_files": list(self.staged_files),
            "modified_files": list(self.modified_files),
        }
