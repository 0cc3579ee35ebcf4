"""Write-once checkpoint files addressed by task id."""

from __future__ import annotations

import dataclasses
import json
import logging
import re
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

from ralph_driver.checkpoints.models import Checkpoint, CheckpointStatus
from ralph_driver.checkpoints.tasks import PrdTaskSource
from ralph_driver.checkpoints.vcs import GitStateReader
from ralph_driver.storage import from_iso, load_json, utc_now, write_json

logger = logging.getLogger(__name__)

STAMP_FORMAT = "%Y%m%d_%H%M%S_%f"
_STAMP_RE = re.compile(r"^(\d{8}_\d{6}_\d{6})_")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def sanitize_name(name: str) -> str:
    """Filesystem-safe token: spaces become ``_``, other unsafe characters vanish."""

    return _UNSAFE_CHARS.sub("", name.replace(" ", "_"))


class CheckpointStore:
    """Creates, finds and prunes checkpoints under one directory.

    File names are ``<task>_<YYYYmmdd_HHMMSS_ffffff>_<name>.json`` so that, for
    one task, lexical order of names is chronological order.
    """

    def __init__(
        self,
        root_dir: Path,
        *,
        git: GitStateReader | None = None,
        tasks: PrdTaskSource | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.root_dir = root_dir
        self.git = git or GitStateReader()
        self.tasks = tasks
        self.clock = clock

    def create(
        self,
        name: str,
        task_id: str,
        status: CheckpointStatus | str,
        notes: str = "",
    ) -> Checkpoint:
        created_at = self.clock().astimezone(UTC)
        git_state = self.git.read()
        task = self.tasks.get(task_id) if self.tasks is not None else None
        checkpoint = Checkpoint(
            checkpoint_name=name,
            created_at=created_at,
            task_id=task_id,
            task_title=task.title if task is not None else "",
            task_description=task.description if task is not None else "",
            status=CheckpointStatus(status),
            notes=notes,
            git_branch=git_state.branch,
            git_commit=git_state.commit,
            dirty_file_count=git_state.dirty_file_count,
            staged_files=git_state.staged_files,
            modified_files=git_state.modified_files,
        )
        path = self.root_dir / (
            f"{sanitize_name(task_id)}_{created_at.strftime(STAMP_FORMAT)}_"
            f"{sanitize_name(name)}.json"
        )
        if path.exists():
            raise FileExistsError(f"Checkpoint already exists: {path}")
        write_json(path, checkpoint.to_dict())
        logger.info("Checkpoint %s written for %s (%s)", name, task_id, checkpoint.status.value)
        return _with_path(checkpoint, path)

    def create_auto(
        self,
        task_id: str,
        status: CheckpointStatus | str,
        notes: str = "",
    ) -> Checkpoint:
        return self.create("auto", task_id, status, notes)

    def list_for_task(self, task_id: str) -> list[Checkpoint]:
        """Readable checkpoints for ``task_id``, newest first."""

        checkpoints: list[Checkpoint] = []
        for path in reversed(self._task_files(task_id)):
            checkpoint = self.read(path)
            if checkpoint is not None:
                checkpoints.append(checkpoint)
        return checkpoints

    def latest(self, task_id: str) -> Checkpoint | None:
        for path in reversed(self._task_files(task_id)):
            checkpoint = self.read(path)
            if checkpoint is not None:
                return checkpoint
        return None

    def has_checkpoint(self, task_id: str) -> bool:
        return self.latest(task_id) is not None

    def read(self, path: Path) -> Checkpoint | None:
        try:
            raw = load_json(path)
            return Checkpoint(
                checkpoint_name=str(raw["checkpoint_name"]),
                created_at=from_iso(str(raw["created_at"])),
                task_id=str(raw["task_id"]),
                task_title=str(raw.get("task_title", "")),
                task_description=str(raw.get("task_description", "")),
                status=CheckpointStatus(raw["status"]),
                notes=str(raw.get("notes", "")),
                git_branch=str(raw.get("git_branch", "unknown")),
                git_commit=str(raw.get("git_commit", "unknown")),
                dirty_file_count=int(raw.get("dirty_file_count", 0)),
                staged_files=tuple(str(item) for item in raw.get("staged_files", [])),
                modified_files=tuple(str(item) for item in raw.get("modified_files", [])),
                path=path,
            )
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as error:
            logger.warning("Ignoring unreadable checkpoint %s: %s", path, error)
            return None

    @staticmethod
    def status_of(checkpoint: Checkpoint) -> CheckpointStatus:
        return checkpoint.status

    @staticmethod
    def resume_summary(checkpoint: Checkpoint) -> str:
        """Digest injected into a continuing agent session."""

        return (
            "## RESUMING FROM CHECKPOINT\n"
            "\n"
            f"**Task:** {checkpoint.task_id}\n"
            f"**Checkpoint:** {checkpoint.checkpoint_name} "
            f"(created: {checkpoint.created_at.isoformat()})\n"
            f"**Status:** {checkpoint.status.value}\n"
            f"**Notes:** {checkpoint.notes}\n"
            f"**Git State:** branch {checkpoint.git_branch}, commit {checkpoint.git_commit}, "
            f"{len(checkpoint.staged_files)} staged files, "
            f"{len(checkpoint.modified_files)} modified files\n"
            "\n"
            "Continue from where you left off. Review the current state and proceed.\n"
        )

    def summary_line(self, task_id: str) -> str:
        checkpoint = self.latest(task_id)
        if checkpoint is None:
            return "No checkpoint"
        stamp = checkpoint.created_at.strftime("%Y%m%d_%H%M%S")
        return f"[{checkpoint.status.value}] {checkpoint.checkpoint_name} @ {stamp}"

    def prune_older_than(self, days: int = 7) -> int:
        """Delete checkpoints of every task created more than ``days`` ago."""

        cutoff = self.clock().astimezone(UTC) - timedelta(days=days)
        removed = 0
        for path, created_at in self._all_files():
            if created_at < cutoff:
                path.unlink(missing_ok=True)
                removed += 1
        if removed:
            logger.info("Cleaned %d old checkpoints (older than %d days)", removed, days)
        return removed

    def prune_task(self, task_id: str) -> int:
        files = self._task_files(task_id)
        for path in files:
            path.unlink(missing_ok=True)
        if files:
            logger.info("Cleaned %d checkpoints for task %s", len(files), task_id)
        return len(files)

    def _task_files(self, task_id: str) -> list[Path]:
        """Checkpoint files for one task in chronological order."""

        if not self.root_dir.is_dir():
            return []
        prefix = f"{sanitize_name(task_id)}_"
        files = [
            path
            for path in self.root_dir.glob("*.json")
            if path.name.startswith(prefix) and _STAMP_RE.match(path.name[len(prefix) :])
        ]
        return sorted(files, key=lambda path: path.name)

    def _all_files(self) -> list[tuple[Path, datetime]]:
        if not self.root_dir.is_dir():
            return []
        found: list[tuple[Path, datetime]] = []
        for path in self.root_dir.glob("*.json"):
            created_at = _created_at_from_name(path.name)
            if created_at is not None:
                found.append((path, created_at))
        return found


def _created_at_from_name(filename: str) -> datetime | None:
    match = re.search(r"_(\d{8}_\d{6}_\d{6})_", filename)
    if match is None:
        return None
    return datetime.strptime(match.group(1), STAMP_FORMAT).replace(tzinfo=UTC)


def _with_path(checkpoint: Checkpoint, path: Path) -> Checkpoint:
    return dataclasses.replace(checkpoint, path=path)
