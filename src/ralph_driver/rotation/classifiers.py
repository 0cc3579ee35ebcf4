"""Agent-specific classification of free-text agent process output.

Some agents only signal throttling or report usage in their human-readable
output, so each known agent gets its own pattern set; unknown agents fall back
to a generic classifier.
"""

from __future__ import annotations

import re
from typing import ClassVar

_FLAGS = re.IGNORECASE | re.MULTILINE


class OutputClassifier:
    """Generic classifier; subclasses override the pattern tables."""

    agent: ClassVar[str] = "generic"
    rate_limit_patterns: ClassVar[tuple[re.Pattern[str], ...]] = (
        re.compile(r"rate limit", _FLAGS),
        re.compile(r"429", _FLAGS),
        re.compile(r"quota exceeded", _FLAGS),
        re.compile(r"too many requests", _FLAGS),
    )
    usage_patterns: ClassVar[dict[str, re.Pattern[str]]] = {}

    def detects_rate_limit(self, output: str) -> bool:
        return self.matched_rate_limit_pattern(output) is not None

    def matched_rate_limit_pattern(self, output: str) -> str | None:
        for pattern in self.rate_limit_patterns:
            if pattern.search(output):
                return pattern.pattern
        return None

    def parse_usage(self, output: str) -> dict[str, int]:
        """Return counter increments found in ``output`` (last match wins)."""

        counters: dict[str, int] = {}
        for counter, pattern in self.usage_patterns.items():
            value = _extract_last_int(pattern, output)
            if value is not None:
                counters[counter] = value
        return counters


class ClaudeCodeClassifier(OutputClassifier):
    agent = "claude-code"
    rate_limit_patterns = (
        re.compile(r"hit your limit", _FLAGS),
        re.compile(r"rate limit", _FLAGS),
        re.compile(r"quota exceeded", _FLAGS),
        re.compile(r"resets [0-9]", _FLAGS),
    )
    usage_patterns = {"tokens_used": re.compile(r"tokens[: ]*(\d[\d,]*)", _FLAGS)}


class CopilotClassifier(OutputClassifier):
    agent = "github-copilot"
    rate_limit_patterns = (
        re.compile(r"rate_limited", _FLAGS),
        re.compile(r"rate limit", _FLAGS),
        re.compile(r"premium.*limit", _FLAGS),
    )
    usage_patterns = {
        "premium_requests_used": re.compile(r"premium requests?[: ]*(\d[\d,]*)", _FLAGS),
    }


class CodexClassifier(OutputClassifier):
    agent = "codex"
    rate_limit_patterns = (
        re.compile(r"RateLimitError", _FLAGS),
        re.compile(r"429", _FLAGS),
        re.compile(r"Too Many Requests", _FLAGS),
    )
    usage_patterns = {"tokens_used": re.compile(r"tokens used\s*[\r\n ]+\s*([\d,]+)", _FLAGS)}


class GeminiClassifier(OutputClassifier):
    agent = "gemini"
    rate_limit_patterns = (
        re.compile(r"RESOURCE_EXHAUSTED", _FLAGS),
        re.compile(r"429", _FLAGS),
        re.compile(r"quota exceeded", _FLAGS),
    )
    usage_patterns = {"requests_used": re.compile(r"requests?[: ]*(\d[\d,]*)", _FLAGS)}


_CLASSIFIERS: dict[str, OutputClassifier] = {
    classifier.agent: classifier
    for classifier in (
        ClaudeCodeClassifier(),
        CopilotClassifier(),
        CodexClassifier(),
        GeminiClassifier(),
    )
}
_GENERIC = OutputClassifier()


def classifier_for(agent: str) -> OutputClassifier:
    """Pick the classifier registered for ``agent`` or the generic one."""

    return _CLASSIFIERS.get(agent.strip().lower(), _GENERIC)


def _extract_last_int(pattern: re.Pattern[str], text: str) -> int | None:
    matches = pattern.findall(text)
    if not matches:
        return None
    raw = matches[-1].replace(",", "").strip()
    if not raw.isdigit():
        return None
    return int(raw)
