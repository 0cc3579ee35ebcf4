from __future__ import annotations

from pathlib import Path

import allure
import pytest

from ralph_driver.config import ConfigurationError
from ralph_driver.context.docs import heading_matches, keyword_matches, section_by_heading
from ralph_driver.context.expansion import ContextExpander
from ralph_driver.context.keywords import extract_keywords, task_keywords
from ralph_driver.context.models import ExpansionKind

pytestmark = [
    allure.epic("Context Budget"),
    allure.feature("Keywords & Expansion"),
]

INDEX = """# Index

### Auth Service
Handles login.
Uses JWT.

### Billing Service
Charges cards.
---
Footer notes
"""


def test_extract_keywords_drops_stop_words_and_short_tokens() -> None:
    keywords = extract_keywords("As a user, I want to export the Report as CSV; export again!")

    assert keywords == ["again", "csv", "export", "report", "user"]


def test_task_keywords_drop_story_boilerplate_and_cap_at_ten() -> None:
    description = "As a user story " + " ".join(f"word{index:02d}" for index in range(15))

    keywords = task_keywords("User login", description)

    assert "user" not in keywords
    assert "story" not in keywords
    assert len(keywords) == 10
    assert keywords == sorted(keywords)


def test_heading_matches_are_case_insensitive_and_include_following_lines() -> None:
    matches = heading_matches(INDEX, "billing")

    assert matches.splitlines()[:2] == ["### Billing Service", "Charges cards."]


def test_heading_matches_separate_disjoint_windows() -> None:
    index = "\n".join(["### Alpha service"] + ["line"] * 30 + ["### Beta service", "tail"])

    matches = heading_matches(index, "service").splitlines()

    assert matches[0] == "### Alpha service"
    assert "--" in matches
    assert matches[-2:] == ["### Beta service", "tail"]


def test_heading_matches_are_capped() -> None:
    index = "\n".join(
        line for number in range(5) for line in [f"### Module {number}"] + ["body"] * 20
    )

    assert len(heading_matches(index, "module").splitlines()) == 60


def test_keyword_matches_keep_at_most_three_keywords() -> None:
    index = "\n".join(f"### {name}\nbody" for name in ("alpha", "beta", "gamma", "delta"))

    matched = keyword_matches(index, ["alpha", "beta", "gamma", "delta"])

    assert matched.count("**Matches for:") == 3
    assert "**Matches for: delta**" not in matched


def test_section_by_heading_stops_at_separator() -> None:
    assert section_by_heading(INDEX, "Billing Service") == "### Billing Service\nCharges cards."
    assert section_by_heading(INDEX, "Auth Service") == (
        "### Auth Service\nHandles login.\nUses JWT.\n"
    )
    assert section_by_heading(INDEX, "Auth") == ""


@pytest.fixture()
def expander(tmp_path: Path) -> ContextExpander:
    (tmp_path / "INDEX.md").write_text(INDEX, "utf-8")
    (tmp_path / "progress.txt").write_text(
        "\n".join(f"line {number}" for number in range(1, 251)) + "\n",
        "utf-8",
    )
    return ContextExpander(
        doc_index_path=tmp_path / "INDEX.md",
        progress_path=tmp_path / "progress.txt",
    )


def test_expand_spec_returns_section(expander: ContextExpander) -> None:
    assert expander.expand("spec", "Billing Service") == "### Billing Service\nCharges cards."


def test_expand_file_truncates_long_files(expander: ContextExpander, tmp_path: Path) -> None:
    source = tmp_path / "big.py"
    source.write_text("\n".join(f"x = {number}" for number in range(230)), "utf-8")

    shown = expander.expand(ExpansionKind.FILE, str(source)).splitlines()

    assert len(shown) == 201
    assert shown[-1] == "... (30 more lines)"


def test_expand_file_reports_missing_file(expander: ContextExpander, tmp_path: Path) -> None:
    missing = tmp_path / "nope.py"

    assert expander.expand("file", str(missing)) == f"File not found: {missing}"


def test_expand_progress_returns_window_from_offset(expander: ContextExpander) -> None:
    window = expander.expand("progress", "101").splitlines()

    assert window[0] == "line 101"
    assert window[-1] == "line 200"
    assert len(window) == 100


def test_expand_rejects_unknown_kind(expander: ContextExpander) -> None:
    with pytest.raises(ValueError):
        expander.expand("url", "https://example.com")


def test_expand_progress_rejects_non_numeric_offset(expander: ContextExpander) -> None:
    with pytest.raises(ConfigurationError, match="Progress offset must be a line number"):
        expander.expand("progress", "abc")


def test_expand_progress_without_offset_starts_at_top(expander: ContextExpander) -> None:
    assert expander.expand("progress", "").splitlines()[0] == "line 1"
