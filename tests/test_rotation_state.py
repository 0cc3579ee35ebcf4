from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest

from ralph_driver.rotation.models import (
    AttemptRecord,
    OutcomeEvent,
    RateLimitWindow,
    RotationState,
    StoryHistory,
)
from ralph_driver.rotation.state import RotationStateStore

pytestmark = [
    allure.epic("Agent Rotation"),
    allure.feature("State Persistence"),
]


def test_missing_state_file_is_created_with_defaults(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "rotation-state.json"
    store = RotationStateStore(path)

    state = store.load()

    assert state == RotationState()
    assert json.loads(path.read_text("utf-8")) == RotationState().to_dict()


def test_state_round_trips_through_disk(tmp_path: Path) -> None:
    store = RotationStateStore(tmp_path / "rotation-state.json")
    state = RotationState(
        current_agent_index=1,
        current_model_indices={"codex": 1},
        rate_limits={"gemini": RateLimitWindow(hit_at=100, cooldown_until=400)},
        stories={
            "US-001": StoryHistory(
                attempts=[
                    AttemptRecord(
                        agent="codex",
                        model="gpt-5.2-codex",
                        timestamp=100,
                        result=OutcomeEvent.FAILURE,
                    ),
                ],
            ),
        },
        usage={"codex": {"tokens_used": 42}},
        rotations_count=3,
        rate_limits_count=1,
    )

    store.save(state)

    assert store.load() == state
    assert not (tmp_path / "rotation-state.json.tmp").exists()


@pytest.mark.parametrize(
    "payload",
    [
        "{not json",
        "[1, 2, 3]",
        json.dumps({"current_agent_index": -1}),
        json.dumps({"stories": {"US-001": {"attempts": "nope"}}}),
        json.dumps({"rate_limits": {"codex": 5}}),
        json.dumps(
            {
                "stories": {
                    "US-001": {
                        "attempts": [
                            {"agent": "codex", "model": "m", "timestamp": 1, "result": "boom"},
                        ],
                    },
                },
            },
        ),
    ],
)
def test_corrupt_state_is_replaced_with_defaults(tmp_path: Path, caplog, payload: str) -> None:
    path = tmp_path / "rotation-state.json"
    path.write_text(payload, "utf-8")

    with caplog.at_level("WARNING"):
        state = RotationStateStore(path).load()

    assert state == RotationState()
    assert json.loads(path.read_text("utf-8")) == RotationState().to_dict()
    assert "corrupt" in caplog.text


def test_document_shape_matches_shell_driver_layout() -> None:
    document = RotationState(
        stories={
            "US-002": StoryHistory(
                attempts=[
                    AttemptRecord(
                        agent="claude-code",
                        model="m1",
                        timestamp=5,
                        result=OutcomeEvent.RATE_LIMIT,
                    ),
                ],
            ),
        },
    ).to_dict()

    assert set(document) == {
        "version",
        "current_agent_index",
        "current_model_indices",
        "rate_limits",
        "stories",
        "usage",
        "rotations_count",
        "rate_limits_count",
    }
    assert document["stories"]["US-002"]["total_attempts"] == 1
    assert document["stories"]["US-002"]["attempts"][0]["result"] == "rate_limit"
