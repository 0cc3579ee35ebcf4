"""Git working-tree state probes used by checkpoints."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from ralph_driver.checkpoints.models import GitState

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 10


class GitStateReader:
    """Reads branch, HEAD and changed files; every probe degrades to a default."""

    def __init__(self, repo_dir: Path | None = None, *, executable: str = "git") -> None:
        self.repo_dir = repo_dir
        self.executable = executable

    def read(self) -> GitState:
        branch = self._run("branch", "--show-current")
        commit = self._run("rev-parse", "HEAD")
        porcelain = self._run("status", "--porcelain")
        staged = self._run("diff", "--cached", "--name-only")
        modified = self._run("diff", "--name-only")
        return GitState(
            branch=_value_or_unknown(branch),
            commit=_value_or_unknown(commit),
            dirty_file_count=len(_non_empty_lines(porcelain)),
            staged_files=tuple(_non_empty_lines(staged)),
            modified_files=tuple(_non_empty_lines(modified)),
        )

    def _run(self, *args: str) -> str | None:
        try:
            completed = subprocess.run(  # noqa: S603
                [self.executable, *args],
                check=False,
                capture_output=True,
                text=True,
                cwd=self.repo_dir,
                timeout=GIT_TIMEOUT_SECONDS,
            )
        except (OSError, subprocess.TimeoutExpired) as error:
            logger.debug("git %s failed: %s", " ".join(args), error)
            return None
        if completed.returncode != 0:
            logger.debug("git %s exited with %d", " ".join(args), completed.returncode)
            return None
        return completed.stdout


def _value_or_unknown(output: str | None) -> str:
    value = (output or "").strip()
    return value or "unknown"


def _non_empty_lines(output: str | None) -> list[str]:
    if not output:
        return []
    return [line.strip() for line in output.splitlines() if line.strip()]
