"""Progress log structure: preamble followed by dated entries."""

from __future__ import annotations

import re
import shutil
from datetime import datetime
from pathlib import Path

from ralph_driver.progress.models import ParsedProgress, ProgressEntry

DATED_HEADING_RE = re.compile(r"^## \d{4}-\d{2}-\d{2}")
SEPARATOR = "---"
BACKUP_STAMP_FORMAT = "%Y%m%d_%H%M%S"


def split_lines(text: str) -> list[str]:
    return text.splitlines()


def preamble_lines(lines: list[str]) -> list[str]:
    """Lines before the first dated heading."""

    for index, line in enumerate(lines):
        if DATED_HEADING_RE.match(line):
            return lines[:index]
    return list(lines)


def parse_progress(text: str) -> ParsedProgress:
    """Split a progress log into its preamble and dated entries.

    An entry runs from its heading to the line before the next heading, or
    through a ``---`` separator line (included). Lines between a separator and
    the next heading belong to no entry.
    """

    lines = split_lines(text)
    preamble = preamble_lines(lines)
    entries: list[ProgressEntry] = []
    current: list[str] = []
    start = 0

    def close(end_line: int) -> None:
        entries.append(
            ProgressEntry(
                heading=current[0],
                text="\n".join(current),
                start_line=start,
                end_line=end_line,
            ),
        )

    for number, line in enumerate(lines[len(preamble) :], start=len(preamble) + 1):
        if DATED_HEADING_RE.match(line):
            if current:
                close(number - 1)
            current = [line]
            start = number
        elif line == SEPARATOR:
            if current:
                current.append(line)
                close(number)
                current = []
        elif current:
            current.append(line)
    if current:
        close(len(lines))

    return ParsedProgress(
        preamble="\n".join(preamble),
        entries=entries,
    )


def backup_progress_file(path: Path, *, now: datetime) -> Path:
    """Copy ``path`` to ``<name>.backup.<stamp>`` without clobbering older backups."""

    stamp = now.strftime(BACKUP_STAMP_FORMAT)
    backup = path.with_name(f"{path.name}.backup.{stamp}")
    suffix = 1
    while backup.exists():
        backup = path.with_name(f"{path.name}.backup.{stamp}_{suffix}")
        suffix += 1
    shutil.copy2(path, backup)
    return backup
