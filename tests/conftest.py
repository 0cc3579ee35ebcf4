"""Shared test fixtures."""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta

import pytest

from ralph_driver.checkpoints.models import GitState


class FakeClock:
    """Manually advanced clock usable as both epoch-seconds and datetime source."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def epoch(self) -> float:
        return self.now.timestamp()

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


class FakeGit:
    def __init__(self, state: GitState | None = None) -> None:
        self.state = state or GitState(
            branch="ralph/us-010",
            commit="abc123",
            dirty_file_count=2,
            staged_files=("src/app.py",),
            modified_files=("tests/test_app.py",),
        )

    def read(self) -> GitState:
        return self.state


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Drop RALPH_* variables inherited from the developer shell."""
    for name in list(os.environ):
        if name.startswith("RALPH_"):
            monkeypatch.delenv(name)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=UTC))


@pytest.fixture()
def fake_git() -> FakeGit:
    return FakeGit()
