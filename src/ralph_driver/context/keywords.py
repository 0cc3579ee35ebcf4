"""Keyword extraction shared by context assembly and compaction scoring."""

from __future__ import annotations

import re

STOP_WORDS = frozenset(
    {
        "the", "and", "or", "of", "to", "a", "an", "in", "on", "at", "for", "with",
        "as", "by", "is", "are", "was", "were", "be", "been", "being", "have", "has",
        "had", "do", "does", "did", "will", "would", "should", "could", "may", "might",
        "can", "must", "i", "want", "so", "that",
    },
)
# Task keywords also drop user-story boilerplate ("As a user I want ...").
TASK_STOP_WORDS = STOP_WORDS | {"user", "story"}
MIN_KEYWORD_LENGTH = 3
MAX_TASK_KEYWORDS = 10

_TOKEN_SPLIT = re.compile(r"[^0-9a-z]+")


def extract_keywords(text: str, *, stop_words: frozenset[str] = STOP_WORDS) -> list[str]:
    """Lowercased, de-duplicated, lexically sorted content words of ``text``."""

    tokens = _TOKEN_SPLIT.split(text.lower())
    return sorted(
        {
            token
            for token in tokens
            if len(token) >= MIN_KEYWORD_LENGTH and token not in stop_words
        },
    )


def task_keywords(title: str, description: str) -> list[str]:
    """Keywords used to score progress entries against the current task."""

    return extract_keywords(f"{title} {description}", stop_words=TASK_STOP_WORDS)[
        :MAX_TASK_KEYWORDS
    ]
