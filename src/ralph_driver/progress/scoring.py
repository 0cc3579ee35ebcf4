"""Relevance scoring of progress log entries."""

from __future__ import annotations

import re

from ralph_driver.config import ScoringWeights
from ralph_driver.progress.models import ProgressEntry, ScoredEntry

_FLAGS = re.IGNORECASE | re.MULTILINE

PATTERN_MARKERS = re.compile(
    r"\[PATTERN\]|^-.*pattern|always use|never use|convention",
    _FLAGS,
)
GOTCHA_MARKERS = re.compile(
    r"\[GOTCHA\]|gotcha|fix:|avoid|bug|error|warning|careful|important",
    _FLAGS,
)
INTEGRATION_MARKERS = re.compile(
    r"\[INTEGRATION\]|depends on|requires|integration|connected to|coupled with",
    _FLAGS,
)
API_MARKERS = re.compile(r"api|endpoint|schema|migration|database|model", _FLAGS)
CONFIG_MARKERS = re.compile(r"config|setting|environment|env var|variable", _FLAGS)


def score_markers(text: str, weights: ScoringWeights) -> int:
    """Sum of category weights; each category counts once."""

    categories = (
        (PATTERN_MARKERS, weights.pattern),
        (GOTCHA_MARKERS, weights.gotcha),
        (INTEGRATION_MARKERS, weights.integration),
        (API_MARKERS, weights.api),
        (CONFIG_MARKERS, weights.config),
    )
    return sum(weight for pattern, weight in categories if pattern.search(text))


def score_keywords(text: str, keywords: list[str], weights: ScoringWeights) -> int:
    haystack = text.lower()
    matches = sum(1 for keyword in keywords if keyword and keyword.lower() in haystack)
    return min(matches, weights.keyword_cap) * weights.keyword


def score_entry(text: str, keywords: list[str], weights: ScoringWeights) -> int:
    return score_markers(text, weights) + score_keywords(text, keywords, weights)


def score_entries(
    entries: list[ProgressEntry],
    keywords: list[str],
    weights: ScoringWeights,
) -> list[ScoredEntry]:
    """Content score plus a flat bonus for the most recent entries."""

    recent_from = len(entries) - weights.recent_window
    return [
        ScoredEntry(
            entry=entry,
            score=score_entry(entry.text, keywords, weights)
            + (weights.recent if position >= recent_from else 0),
        )
        for position, entry in enumerate(entries)
    ]
