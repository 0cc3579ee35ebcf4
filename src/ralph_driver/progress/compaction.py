"""Progress log compaction: relevance-scored and line-window policies."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from ralph_driver.config import CompactionSettings
from ralph_driver.progress.log import (
    DATED_HEADING_RE,
    SEPARATOR,
    backup_progress_file,
    parse_progress,
)
from ralph_driver.progress.models import CompactionMode, CompactionStats, ScoredEntry
from ralph_driver.progress.scoring import score_entries
from ralph_driver.storage import atomic_write_text, count_lines, utc_now

logger = logging.getLogger(__name__)

LEARNINGS_MARKER = re.compile(r"^\*\*Learnings for future iterations:\*\*")
LEARNINGS_LOOKAHEAD = 10
MAX_LEARNINGS = 10
_BULLET = re.compile(r"^\s*-")
_DISPLAY_FORMAT = "%Y-%m-%d %H:%M:%S"


class RelevanceCompactor:
    """Keeps high-scoring entries verbatim and lists the rest by reference."""

    def __init__(
        self,
        settings: CompactionSettings,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings
        self.clock = clock
        self.story_id_re = re.compile(settings.story_id_pattern)

    def compact(self, text: str, keywords: list[str]) -> tuple[str, CompactionStats]:
        lines_before = count_lines(text)
        parsed = parse_progress(text)
        if lines_before <= self.settings.threshold_lines:
            return text, CompactionStats(
                mode=CompactionMode.RELEVANCE,
                compacted=False,
                lines_before=lines_before,
                lines_after=lines_before,
                entries_before=len(parsed.entries),
                entries_after=len(parsed.entries),
                skipped_reason="under_threshold",
            )

        scored = score_entries(parsed.entries, keywords, self.settings.weights)
        kept = [item for item in scored if item.score >= self.settings.min_score]
        dropped = [item for item in scored if item.score < self.settings.min_score]

        output = parsed.preamble.splitlines()
        output += [
            "",
            "## Compacted History (Semantic)",
            f"Compacted on {self.clock().strftime(_DISPLAY_FORMAT)} using relevance scoring",
            "",
        ]
        for item in kept:
            output += [item.entry.text, ""]
        if dropped:
            output.append("**Compacted entries (low relevance):**")
            output += [
                f"- Completed: {self._reference(item)} (score: {item.score})" for item in dropped
            ]
            output.append("")
        output.append(SEPARATOR)

        compacted = "\n".join(output) + "\n"
        return compacted, CompactionStats(
            mode=CompactionMode.RELEVANCE,
            compacted=True,
            lines_before=lines_before,
            lines_after=count_lines(compacted),
            entries_before=len(parsed.entries),
            entries_after=len(kept),
        )

    def _reference(self, item: ScoredEntry) -> str:
        match = self.story_id_re.search(item.entry.text)
        if match is not None:
            return match.group(0)
        return item.entry.heading.removeprefix("## ").strip()


class LineCompactor:
    """Keeps the head and tail of the log and summarises the middle."""

    def __init__(
        self,
        settings: CompactionSettings,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings
        self.clock = clock
        self.story_id_re = re.compile(settings.story_id_pattern)

    def compact(self, text: str) -> tuple[str, CompactionStats]:
        lines = text.splitlines()
        entries_before = len(parse_progress(text).entries)
        head_count = self.settings.preserve_start
        tail_start = len(lines) - self.settings.preserve_end
        if len(lines) <= self.settings.threshold_lines or tail_start <= head_count:
            return text, CompactionStats(
                mode=CompactionMode.LINE,
                compacted=False,
                lines_before=len(lines),
                lines_after=len(lines),
                entries_before=entries_before,
                entries_after=entries_before,
                skipped_reason=(
                    "under_threshold"
                    if len(lines) <= self.settings.threshold_lines
                    else "nothing_to_compact"
                ),
            )

        middle = lines[head_count:tail_start]
        output = lines[:head_count]
        output += [
            "",
            "## Compacted History Summary",
            f"Automatically compacted on {self.clock().strftime(_DISPLAY_FORMAT)}",
            "",
        ]
        output += [f"- Completed: {story_id}" for story_id in self._completed_ids(middle)]
        output += ["", "**Key Learnings from compacted section:**"]
        output += _learnings(middle)
        output += ["", SEPARATOR]
        output += lines[tail_start:]

        compacted = "\n".join(output) + "\n"
        return compacted, CompactionStats(
            mode=CompactionMode.LINE,
            compacted=True,
            lines_before=len(lines),
            lines_after=count_lines(compacted),
            entries_before=entries_before,
            entries_after=len(parse_progress(compacted).entries),
        )

    def _completed_ids(self, lines: list[str]) -> list[str]:
        ids: list[str] = []
        for line in lines:
            if not DATED_HEADING_RE.match(line):
                continue
            match = self.story_id_re.search(line)
            if match is not None:
                ids.append(match.group(0))
        return ids


def _learnings(lines: list[str]) -> list[str]:
    bullets: list[str] = []
    for index, line in enumerate(lines):
        if not LEARNINGS_MARKER.match(line):
            continue
        for candidate in lines[index + 1 : index + 1 + LEARNINGS_LOOKAHEAD]:
            if _BULLET.match(candidate):
                bullets.append(candidate)
                if len(bullets) >= MAX_LEARNINGS:
                    return bullets
    return bullets


class CompactionEventLog:
    """Append-only text log of compaction runs."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def record(self, stats: CompactionStats, *, source: Path, at: datetime) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        line = (
            f"[{at.strftime(_DISPLAY_FORMAT)}] {stats.mode.value} compaction of {source}: "
            f"{stats.entries_before} -> {stats.entries_after} entries, "
            f"{stats.lines_before} -> {stats.lines_after} lines"
        )
        if stats.backup_path:
            line += f" (backup: {stats.backup_path})"
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")


class ProgressCompactor:
    """Selects the compaction policy and rewrites the progress file safely."""

    def __init__(
        self,
        settings: CompactionSettings,
        *,
        event_log_path: Path,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings
        self.mode = settings.mode
        self.clock = clock
        self.events = CompactionEventLog(event_log_path)
        self.line = LineCompactor(settings, clock=clock)
        self.relevance = RelevanceCompactor(settings, clock=clock)

    def compact_text(
        self,
        text: str,
        keywords: list[str] | None = None,
        *,
        mode: CompactionMode | None = None,
    ) -> tuple[str, CompactionStats]:
        selected = mode or self.mode
        if selected == CompactionMode.RELEVANCE:
            if parse_progress(text).entries:
                return self.relevance.compact(text, keywords or [])
            logger.info("No dated entries for relevance scoring; falling back to line mode")
        return self.line.compact(text)

    def compact_file(
        self,
        path: Path,
        keywords: list[str] | None = None,
        *,
        mode: CompactionMode | None = None,
    ) -> CompactionStats:
        """Compact ``path`` in place when it exceeds the line threshold."""

        selected = mode or self.mode
        if not path.is_file():
            logger.debug("Progress file %s not found; compaction skipped", path)
            return CompactionStats(
                mode=selected,
                compacted=False,
                lines_before=0,
                lines_after=0,
                skipped_reason="missing",
            )

        original = path.read_text("utf-8")
        compacted, stats = self.compact_text(original, keywords, mode=selected)
        if not stats.compacted:
            logger.debug(
                "Compaction skipped for %s (%s, %d lines)",
                path,
                stats.skipped_reason,
                stats.lines_before,
            )
            return stats

        now = self.clock()
        backup = backup_progress_file(path, now=now)
        atomic_write_text(path, compacted)
        stats.backup_path = str(backup)
        self.events.record(stats, source=path, at=now)
        logger.info(
            "Compacted %s (%s): %d -> %d lines, %d -> %d entries",
            path,
            stats.mode.value,
            stats.lines_before,
            stats.lines_after,
            stats.entries_before,
            stats.entries_after,
        )
        return stats
