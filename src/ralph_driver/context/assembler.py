"""Priority-tiered context assembly under an approximate token budget."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from ralph_driver.config import ContextSettings
from ralph_driver.context.docs import head_lines, keyword_matches, tail_lines
from ralph_driver.context.keywords import extract_keywords
from ralph_driver.context.models import (
    PRIORITY_CURRENT_TASK,
    PRIORITY_DOC_INDEX,
    PRIORITY_MATCHED_DOCS,
    PRIORITY_OLDER_PROGRESS,
    PRIORITY_PATTERNS,
    PRIORITY_RECENT_PROGRESS,
    AssembledContext,
    ContextMode,
    ContextSection,
    ContextUsage,
)
from ralph_driver.progress.log import preamble_lines

logger = logging.getLogger(__name__)


def estimate_tokens(text: str, chars_per_token: int = 4) -> int:
    """Coarse token estimate: characters / K, at least 1 for non-empty text."""

    if not text:
        return 0
    return max(1, len(text) // chars_per_token)


@dataclass(slots=True, frozen=True)
class SectionCaps:
    """Line windows taken from the progress log and documentation index."""

    patterns: int
    recent_progress: int
    doc_index: int
    older_progress: int | None
    older_progress_start: int = 80
    older_progress_min_log_lines: int = 150


DYNAMIC_CAPS = SectionCaps(patterns=80, recent_progress=100, doc_index=40, older_progress=100)
STANDARD_CAPS = SectionCaps(patterns=50, recent_progress=50, doc_index=30, older_progress=None)


def select_sections(
    sections: list[ContextSection],
    *,
    budget_tokens: int | None,
    chars_per_token: int,
) -> tuple[list[ContextSection], list[ContextSection], int]:
    """Admit sections by priority; returns (included, skipped, used_tokens).

    Required sections are always admitted, even past the budget. Best-effort
    sections are admitted whole when they still fit, otherwise skipped, and
    evaluation continues with lower priorities. ``budget_tokens=None`` admits
    everything.
    """

    ordered = sorted(sections, key=lambda section: (not section.required, -section.priority))
    included: list[ContextSection] = []
    skipped: list[ContextSection] = []
    used = 0
    for section in ordered:
        cost = estimate_tokens(section.content, chars_per_token)
        if section.required or budget_tokens is None or used + cost <= budget_tokens:
            included.append(section)
            used += cost
        else:
            skipped.append(section)
    return included, skipped, used


class ContextAssembler:
    """Builds the per-task working context in standard or dynamic mode."""

    def __init__(self, settings: ContextSettings) -> None:
        self.settings = settings
        self.mode = settings.mode

    def build_sections(
        self,
        *,
        task_title: str,
        task_description: str,
        doc_index: str,
        progress_log: str,
    ) -> list[ContextSection]:
        caps = DYNAMIC_CAPS if self.mode == ContextMode.DYNAMIC else STANDARD_CAPS
        sections = [
            ContextSection(
                name="Current Task",
                priority=PRIORITY_CURRENT_TASK,
                content=f"**Title:** {task_title}\n**Description:** {task_description}\n",
                required=True,
            ),
        ]

        progress_lines = progress_log.splitlines()
        patterns = "\n".join(preamble_lines(progress_lines)[: caps.patterns])
        if patterns.strip():
            sections.append(
                ContextSection(
                    name="Codebase Patterns",
                    priority=PRIORITY_PATTERNS,
                    content=patterns,
                    required=True,
                ),
            )

        recent = tail_lines(progress_log, caps.recent_progress)
        if recent.strip():
            sections.append(
                ContextSection(
                    name="Recent Progress",
                    priority=PRIORITY_RECENT_PROGRESS,
                    content=recent,
                ),
            )

        header = head_lines(doc_index, caps.doc_index)
        if header.strip():
            sections.append(
                ContextSection(
                    name="Discovery Index (The Pin)",
                    priority=PRIORITY_DOC_INDEX,
                    content=header,
                ),
            )

        if doc_index.strip():
            matched = keyword_matches(
                doc_index,
                extract_keywords(f"{task_title} {task_description}"),
            )
            if matched:
                sections.append(
                    ContextSection(
                        name="Relevant Modules (keyword matches)",
                        priority=PRIORITY_MATCHED_DOCS,
                        content=matched,
                    ),
                )

        if caps.older_progress is not None and (
            len(progress_lines) > caps.older_progress_min_log_lines
        ):
            start = caps.older_progress_start - 1
            older = "\n".join(progress_lines[start : start + caps.older_progress])
            if older.strip():
                sections.append(
                    ContextSection(
                        name="Earlier Progress",
                        priority=PRIORITY_OLDER_PROGRESS,
                        content=older,
                    ),
                )
        return sections

    def assemble(
        self,
        task_title: str,
        task_description: str,
        budget_tokens: int | None = None,
        doc_index: str = "",
        progress_log: str = "",
    ) -> AssembledContext:
        """Render the context for one task.

        In dynamic mode the budget defaults to the configured one and a usage
        footer is appended. Standard mode ignores the budget.
        """

        dynamic = self.mode == ContextMode.DYNAMIC
        budget = None
        if dynamic:
            budget = self.settings.budget_tokens if budget_tokens is None else budget_tokens
        sections = self.build_sections(
            task_title=task_title,
            task_description=task_description,
            doc_index=doc_index,
            progress_log=progress_log,
        )
        included, skipped, used = select_sections(
            sections,
            budget_tokens=budget,
            chars_per_token=self.settings.chars_per_token,
        )
        for section in skipped:
            logger.debug(
                "Context section %r skipped: ~%d tokens over remaining budget",
                section.name,
                estimate_tokens(section.content, self.settings.chars_per_token),
            )

        parts = [f"## {section.name}\n\n{section.content}\n\n" for section in included]
        if budget is not None:
            parts.append(
                f"---\n*Context: ~{used} tokens used, ~{budget - used} remaining "
                f"of {budget} budget*\n",
            )
        return AssembledContext(
            text="".join(parts),
            budget_tokens=budget,
            used_tokens=used,
            sections=[section.name for section in included],
            skipped=[section.name for section in skipped],
        )

    def assemble_from_files(
        self,
        *,
        task_title: str,
        task_description: str,
        doc_index_path: Path,
        progress_path: Path,
        budget_tokens: int | None = None,
    ) -> AssembledContext:
        return self.assemble(
            task_title,
            task_description,
            budget_tokens=budget_tokens,
            doc_index=_read_optional(doc_index_path),
            progress_log=_read_optional(progress_path),
        )

    def usage_report(self, text: str, budget_tokens: int | None = None) -> ContextUsage:
        budget = self.settings.budget_tokens if budget_tokens is None else budget_tokens
        used = estimate_tokens(text, self.settings.chars_per_token)
        if budget > 0:
            percent = used * 100 // budget
        else:
            percent = 100 if used else 0
        if percent > 90:
            level = "high"
        elif percent > 75:
            level = "elevated"
        else:
            level = "ok"
        return ContextUsage(used_tokens=used, budget_tokens=budget, percent=percent, level=level)

    def file_token_summary(self, *, doc_index_path: Path, progress_path: Path) -> str:
        index_tokens = len(_read_optional(doc_index_path)) // self.settings.chars_per_token
        progress_tokens = len(_read_optional(progress_path)) // self.settings.chars_per_token
        return f"Pin: ~{index_tokens} tokens | Progress: ~{progress_tokens} tokens"


def build_prompt(base_prompt: str, context: str) -> str:
    """Wrap the agent prompt with the assembled context."""

    return (
        f"# CONTEXT FOR CURRENT TASK\n\n{context}\n\n---\n\n# YOUR TASK\n\n{base_prompt}\n"
    )


def _read_optional(path: Path) -> str:
    if not path.is_file():
        return ""
    return path.read_text("utf-8")
