from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest

from ralph_driver.checkpoints.models import CheckpointStatus, GitState
from ralph_driver.checkpoints.store import CheckpointStore, sanitize_name
from ralph_driver.checkpoints.tasks import PrdTaskSource
from ralph_driver.checkpoints.vcs import GitStateReader

pytestmark = [
    allure.epic("Checkpoints"),
    allure.feature("Create, Resume, Prune"),
]

PRD = {
    "userStories": [
        {
            "id": "US-010",
            "title": "Export reports",
            "description": "As a user I want CSV exports",
            "priority": 2,
            "passes": False,
        },
        {"id": "US-011", "title": "Login", "description": "", "priority": 1, "passes": True},
        {"id": "US-012", "title": "Audit log", "description": "", "priority": 3, "passes": False},
    ],
}


@pytest.fixture()
def store(tmp_path: Path, clock, fake_git) -> CheckpointStore:
    prd = tmp_path / "prd.json"
    prd.write_text(json.dumps(PRD), "utf-8")
    return CheckpointStore(
        tmp_path / ".ralph" / "checkpoints",
        git=fake_git,
        tasks=PrdTaskSource(prd),
        clock=clock,
    )


def test_created_checkpoint_is_latest(store: CheckpointStore) -> None:
    created = store.create("after_tests", "US-010", "tests_failing", "2 tests failing")

    latest = store.latest("US-010")

    assert latest == created
    assert latest.path == created.path
    assert store.status_of(latest) == CheckpointStatus.TESTS_FAILING
    assert latest.task_title == "Export reports"
    assert latest.task_description == "As a user I want CSV exports"
    assert latest.git_branch == "ralph/us-010"
    assert latest.staged_files == ("src/app.py",)


def test_checkpoint_file_layout(store: CheckpointStore) -> None:
    created = store.create("after tests!", "US-010", CheckpointStatus.PARTIAL)

    assert created.path.name == "US-010_20260301_120000_000000_after_tests.json"
    document = json.loads(created.path.read_text("utf-8"))
    assert document["checkpoint_name"] == "after tests!"
    assert document["created_at"] == "2026-03-01T12:00:00+00:00"
    assert document["status"] == "partial"
    assert document["dirty_file_count"] == 2
    assert document["modified_files"] == ["tests/test_app.py"]


def test_latest_is_newest_by_timestamp(store: CheckpointStore, clock) -> None:
    store.create("zzz_first", "US-010", "in_progress")
    clock.advance(minutes=5)
    second = store.create("aaa_second", "US-010", "completed")
    store.create("other", "US-012", "in_progress")

    assert store.latest("US-010") == second
    assert [item.checkpoint_name for item in store.list_for_task("US-010")] == [
        "aaa_second",
        "zzz_first",
    ]


def test_task_prefix_does_not_match_longer_task_ids(store: CheckpointStore) -> None:
    store.create("auto", "US-0101", "in_progress")

    assert store.latest("US-010") is None


def test_latest_without_checkpoints_is_none(store: CheckpointStore) -> None:
    assert store.latest("US-999") is None
    assert store.has_checkpoint("US-999") is False
    assert store.summary_line("US-999") == "No checkpoint"


def test_corrupt_checkpoint_is_skipped(store: CheckpointStore, clock, caplog) -> None:
    valid = store.create("good", "US-010", "in_progress")
    clock.advance(minutes=1)
    broken = store.create("bad", "US-010", "in_progress")
    broken.path.write_text("{truncated", "utf-8")

    with caplog.at_level("WARNING"):
        assert store.latest("US-010") == valid
    assert "Ignoring unreadable checkpoint" in caplog.text


def test_checkpoints_are_write_once(store: CheckpointStore) -> None:
    store.create("same", "US-010", "in_progress")

    with pytest.raises(FileExistsError):
        store.create("same", "US-010", "completed")


def test_unknown_status_is_rejected(store: CheckpointStore) -> None:
    with pytest.raises(ValueError):
        store.create("x", "US-010", "blocked")


def test_resume_summary(store: CheckpointStore) -> None:
    checkpoint = store.create("after_tests", "US-010", "tests_failing", "2 tests failing")

    summary = store.resume_summary(checkpoint)

    assert summary == (
        "## RESUMING FROM CHECKPOINT\n"
        "\n"
        "**Task:** US-010\n"
        "**Checkpoint:** after_tests (created: 2026-03-01T12:00:00+00:00)\n"
        "**Status:** tests_failing\n"
        "**Notes:** 2 tests failing\n"
        "**Git State:** branch ralph/us-010, commit abc123, 1 staged files, 1 modified files\n"
        "\n"
        "Continue from where you left off. Review the current state and proceed.\n"
    )


def test_summary_line_and_auto_checkpoint(store: CheckpointStore) -> None:
    store.create_auto("US-010", "completed", "done")

    assert store.summary_line("US-010") == "[completed] auto @ 20260301_120000"


def test_prune_older_than_uses_creation_time(store: CheckpointStore, clock) -> None:
    old = store.create("old", "US-010", "in_progress")
    clock.advance(days=8)
    fresh = store.create("fresh", "US-012", "in_progress")

    assert store.prune_older_than(7) == 1
    assert not old.path.exists()
    assert fresh.path.exists()


def test_prune_task_removes_only_that_task(store: CheckpointStore, clock) -> None:
    store.create("one", "US-010", "in_progress")
    clock.advance(seconds=1)
    store.create("two", "US-010", "in_progress")
    other = store.create("keep", "US-012", "in_progress")

    assert store.prune_task("US-010") == 2
    assert store.latest("US-010") is None
    assert other.path.exists()


def test_missing_task_definition_leaves_title_empty(tmp_path: Path, clock, fake_git) -> None:
    store = CheckpointStore(tmp_path, git=fake_git, tasks=None, clock=clock)

    checkpoint = store.create("auto", "US-404", "in_progress")

    assert checkpoint.task_title == ""
    assert checkpoint.task_description == ""


def test_prd_current_task_is_lowest_priority_pending_story(tmp_path: Path) -> None:
    prd = tmp_path / "prd.json"
    prd.write_text(json.dumps(PRD), "utf-8")
    tasks = PrdTaskSource(prd)

    assert tasks.current_task().task_id == "US-010"
    assert tasks.get("US-011").passes is True
    assert tasks.get("US-404") is None


def test_unreadable_prd_yields_no_tasks(tmp_path: Path) -> None:
    prd = tmp_path / "prd.json"
    prd.write_text("not json", "utf-8")

    assert PrdTaskSource(prd).tasks() == []
    assert PrdTaskSource(tmp_path / "missing.json").current_task() is None


def test_git_state_degrades_when_git_is_unavailable(tmp_path: Path) -> None:
    reader = GitStateReader(tmp_path, executable=str(tmp_path / "no-such-git"))

    assert reader.read() == GitState()


def test_sanitize_name() -> None:
    assert sanitize_name("before refactor: step/2") == "before_refactor_step2"
