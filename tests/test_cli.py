from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from ralph_driver import __version__
from ralph_driver.main import ralph_driver

pytestmark = [
    allure.epic("CLI"),
    allure.feature("Rotation, Context, Progress, Checkpoint Commands"),
]


@pytest.fixture()
def workspace(tmp_path: Path, monkeypatch) -> Path:
    """Project directory with default file locations, used as cwd."""
    monkeypatch.chdir(tmp_path)
    (tmp_path / "specs").mkdir()
    (tmp_path / "specs" / "INDEX.md").write_text(
        "# Index\n\n### Reports\nCSV and PDF exports.\n\n### Auth\nLogin.\n",
        "utf-8",
    )
    (tmp_path / "prd.json").write_text(
        json.dumps(
            {
                "userStories": [
                    {
                        "id": "US-010",
                        "title": "Export reports",
                        "description": "CSV exports for finance",
                        "priority": 1,
                        "passes": False,
                    },
                ],
            },
        ),
        "utf-8",
    )
    return tmp_path


def _invoke(*args: str, input: str | None = None):  # noqa: A002
    return CliRunner().invoke(ralph_driver, list(args), input=input)


def test_version() -> None:
    result = _invoke("--version")

    assert result.exit_code == 0
    assert __version__ in result.output


def test_rotation_cli_flow(workspace: Path, monkeypatch) -> None:
    monkeypatch.setenv("RALPH_ROTATION_ENABLED", "true")
    monkeypatch.setenv("RALPH_AGENT_ROTATION", "claude-code,codex")
    monkeypatch.setenv("RALPH_AGENT_MODELS", "claude-code=m1")

    status = _invoke("rotation", "status")
    assert status.output.strip() == "Rotation: not initialized"

    select = _invoke("rotation", "select", "--story", "US-010")
    assert select.exit_code == 0, select.output
    assert select.output.strip() == "agent=claude-code model=m1"

    record_args = ("--story", "US-010", "--agent", "claude-code", "--model", "m1")
    _invoke("rotation", "record", *record_args, "--event", "failure")
    not_yet = _invoke("rotation", "should-rotate", *record_args)
    assert not_yet.exit_code == 1
    assert not_yet.output.strip() == "rotate=no"

    second = _invoke("rotation", "record", *record_args, "--event", "failure")
    assert "Failure threshold reached" in second.output
    rotate_now = _invoke("rotation", "should-rotate", *record_args)
    assert rotate_now.exit_code == 0
    assert rotate_now.output.strip() == "rotate=yes"

    rotated = _invoke("rotation", "rotate", "--agent", "claude-code")
    assert rotated.output.strip() == "Rotation outcome: advanced"
    assert _invoke("rotation", "select", "--story", "US-010").output.strip() == (
        "agent=codex model=gpt-5.2-codex"
    )

    reset = _invoke("rotation", "reset", "--story", "US-010")
    assert reset.output.strip() == "Story state reset: US-010"
    state = json.loads((workspace / ".ralph" / "rotation-state.json").read_text("utf-8"))
    assert state["stories"] == {}
    assert state["rotations_count"] == 1


def test_rotation_detect_reads_stdin_and_records(workspace: Path) -> None:
    calm = _invoke("rotation", "detect", "--agent", "codex", input="all good\n")
    assert calm.exit_code == 1
    assert calm.output.strip() == "rate_limit=no"

    hit = _invoke(
        "rotation",
        "detect",
        "--agent",
        "claude-code",
        "--record",
        input="You've hit your limit\nTotal tokens: 900\n",
    )
    assert hit.exit_code == 0
    assert hit.output.splitlines()[0] == "rate_limit=yes pattern=hit your limit"
    assert "usage claude-code.tokens_used += 900" in hit.output

    state = json.loads((workspace / ".ralph" / "rotation-state.json").read_text("utf-8"))
    assert state["rate_limits_count"] == 1
    assert state["usage"]["claude-code"]["tokens_used"] == 900


def test_configuration_errors_become_click_errors(workspace: Path, monkeypatch) -> None:
    monkeypatch.setenv("RALPH_AGENT_ROTATION", "claude-code,cursor")

    result = _invoke("rotation", "select", "--story", "US-010")

    assert result.exit_code == 1
    assert "Unsupported agent 'cursor'" in result.output


def test_context_build_from_prd_task(workspace: Path) -> None:
    result = _invoke("context", "build", "--mode", "dynamic", "--budget", "2000", "--usage")

    assert result.exit_code == 0, result.output
    assert result.output.startswith("## Current Task\n\n**Title:** Export reports\n")
    assert "**Matches for: reports**" in result.output
    assert "remaining of 2000 budget*" in result.output
    assert "Context usage: ~" in result.output


def test_context_build_wraps_prompt(workspace: Path) -> None:
    prompt = workspace / "PROMPT.md"
    prompt.write_text("Implement the story.", "utf-8")

    result = _invoke("context", "build", "--title", "Anything", "--prompt-file", str(prompt))

    assert result.exit_code == 0, result.output
    assert result.output.startswith("# CONTEXT FOR CURRENT TASK\n")
    assert result.output.rstrip().endswith("Implement the story.")


def test_context_build_without_task_fails(workspace: Path) -> None:
    result = _invoke("context", "build", "--task-id", "US-404")

    assert result.exit_code == 1
    assert "No task found" in result.output


def test_context_expand(workspace: Path) -> None:
    result = _invoke("context", "expand", "spec", "Reports")

    assert result.output == "### Reports\nCSV and PDF exports.\n"


def test_context_expand_rejects_bad_progress_offset(workspace: Path) -> None:
    result = _invoke("context", "expand", "progress", "abc")

    assert result.exit_code == 1
    assert "Progress offset must be a line number" in result.output
    assert "Traceback" not in result.output


def test_progress_keywords_and_compact(workspace: Path, monkeypatch) -> None:
    monkeypatch.setenv("RALPH_COMPACTION_THRESHOLD", "26")
    monkeypatch.setenv("RALPH_PRESERVE_START", "2")
    monkeypatch.setenv("RALPH_PRESERVE_END", "5")
    lines = ["# Progress"]
    for number in range(1, 10):
        lines += [f"## 2026-01-0{number} - US-00{number}", "- worked on item", "---"]
    (workspace / "progress.txt").write_text("\n".join(lines) + "\n", "utf-8")

    keywords = _invoke("progress", "keywords")
    assert keywords.output.split() == ["csv", "export", "exports", "finance", "reports"]

    compact = _invoke("progress", "compact", "--mode", "relevance")
    assert compact.exit_code == 0, compact.output
    assert compact.output.startswith("Compacted progress.txt (relevance): 28 -> 26 lines")
    assert "9 -> 3 entries" in compact.output
    assert (workspace / ".ralph" / "compaction.log").is_file()

    again = _invoke("progress", "compact")
    assert again.output.strip() == "Compaction skipped for progress.txt: under_threshold"


def test_checkpoint_cli_flow(workspace: Path) -> None:
    created = _invoke(
        "checkpoint",
        "create",
        "--task-id",
        "US-010",
        "--name",
        "after_tests",
        "--status",
        "tests_failing",
        "--notes",
        "2 tests failing",
    )
    assert created.exit_code == 0, created.output
    assert created.output.startswith("Checkpoint created: .ralph/checkpoints/US-010_")

    latest = _invoke("checkpoint", "latest", "--task-id", "US-010")
    assert latest.exit_code == 0
    assert latest.output.startswith("[tests_failing] after_tests @ ")

    resume = _invoke("checkpoint", "resume", "--task-id", "US-010")
    assert resume.exit_code == 0
    assert "**Task:** US-010" in resume.output
    assert "**Git State:** branch unknown, commit unknown" in resume.output

    pruned = _invoke("checkpoint", "prune", "--task-id", "US-010")
    assert pruned.output.strip() == "Removed 1 checkpoints for task US-010"

    missing = _invoke("checkpoint", "latest", "--task-id", "US-010")
    assert missing.exit_code == 1
    assert missing.output.strip() == "No checkpoint"
    no_resume = _invoke("checkpoint", "resume", "--task-id", "US-010")
    assert no_resume.exit_code == 1
    assert "No checkpoint for task US-010" in no_resume.output


def test_checkpoint_prune_by_age(workspace: Path) -> None:
    _invoke("checkpoint", "create", "--task-id", "US-010")

    result = _invoke("checkpoint", "prune", "--days", "7")

    assert result.output.strip() == "Removed 0 checkpoints older than 7 days"
