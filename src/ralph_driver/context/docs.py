"""Lookups against the documentation index (``specs/INDEX.md``)."""

from __future__ import annotations

import re

MODULE_HEADING_PREFIX = "### "
MATCH_CONTEXT_LINES = 20
MATCH_LINE_CAP = 60
MAX_KEYWORD_MATCHES = 3
MAX_SEARCH_KEYWORDS = 10


def head_lines(text: str, count: int) -> str:
    return "\n".join(text.splitlines()[:count])


def tail_lines(text: str, count: int) -> str:
    lines = text.splitlines()
    return "\n".join(lines[-count:]) if count > 0 else ""


def heading_matches(index_text: str, keyword: str) -> str:
    """Module headings mentioning ``keyword`` plus the lines that follow them.

    Overlapping windows are merged; disjoint windows are separated by ``--``.
    """

    lines = index_text.splitlines()
    pattern = re.compile(rf"{re.escape(MODULE_HEADING_PREFIX)}.*{re.escape(keyword)}", re.I)
    windows: list[list[int]] = []
    for index, line in enumerate(lines):
        if not pattern.search(line):
            continue
        start, end = index, min(len(lines), index + MATCH_CONTEXT_LINES + 1)
        if windows and start <= windows[-1][1]:
            windows[-1][1] = max(windows[-1][1], end)
        else:
            windows.append([start, end])

    output: list[str] = []
    for position, (start, end) in enumerate(windows):
        if position:
            output.append("--")
        output.extend(lines[start:end])
    return "\n".join(output[:MATCH_LINE_CAP])


def keyword_matches(index_text: str, keywords: list[str]) -> str:
    """Matched documentation for at most three of the task keywords."""

    blocks: list[str] = []
    for keyword in keywords[:MAX_SEARCH_KEYWORDS]:
        matches = heading_matches(index_text, keyword)
        if not matches:
            continue
        blocks.append(f"**Matches for: {keyword}**\n{matches}\n")
        if len(blocks) >= MAX_KEYWORD_MATCHES:
            break
    return "\n".join(blocks)


def section_by_heading(index_text: str, name: str) -> str:
    """One module section by exact heading, up to the next heading or ``---``."""

    target = f"{MODULE_HEADING_PREFIX}{name.strip()}"
    collected: list[str] = []
    found = False
    for line in index_text.splitlines():
        if not found:
            if line.rstrip() == target:
                found = True
                collected.append(line)
            continue
        if line.rstrip() == "---" or line.startswith(MODULE_HEADING_PREFIX):
            break
        collected.append(line)
    return "\n".join(collected)
