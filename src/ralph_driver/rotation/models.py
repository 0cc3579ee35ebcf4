"""Domain models for agent/model rotation state."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

ROTATION_STATE_VERSION = 1


class RotationStrategy(str, Enum):
    """How the next eligible agent is picked from the rotation list."""

    SEQUENTIAL = "sequential"
    PRIORITY = "priority"


class OutcomeEvent(str, Enum):
    """Attempt results recorded per story."""

    ATTEMPT = "attempt"
    SUCCESS = "success"
    FAILURE = "failure"
    RATE_LIMIT = "rate_limit"


class RotationOutcome(str, Enum):
    """Result of a rotate_model / rotate_agent call."""

    MODEL_ADVANCED = "model_advanced"
    ADVANCED = "advanced"
    NO_AGENTS_AVAILABLE = "no_agents_available"
    WRAPPED = "wrapped"


@dataclass(slots=True, frozen=True)
class Selection:
    """Agent/model pair chosen for the next unit of work."""

    agent: str
    model: str


@dataclass(slots=True)
class AttemptRecord:
    agent: str
    model: str
    timestamp: int
    result: OutcomeEvent

    def to_dict(self) -> dict[str, object]:
        return {
            "agent": self.agent,
            "model": self.model,
            "timestamp": self.timestamp,
            "result": self.result.value,
        }


@dataclass(slots=True)
class StoryHistory:
    """Append-only attempt log for one story."""

    attempts: list[AttemptRecord] = field(default_factory=list)

    @property
    def total_attempts(self) -> int:
        return len(self.attempts)

    def failure_count(self, *, agent: str, model: str) -> int:
        return sum(
            1
            for attempt in self.attempts
            if attempt.agent == agent
            and attempt.model == model
            and attempt.result == OutcomeEvent.FAILURE
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "attempts": [attempt.to_dict() for attempt in self.attempts],
            "total_attempts": self.total_attempts,
        }


@dataclass(slots=True)
class RateLimitWindow:
    hit_at: int
    cooldown_until: int


@dataclass(slots=True)
class RotationState:
    """Process-wide rotation record persisted as one JSON document."""

    version: int = ROTATION_STATE_VERSION
    current_agent_index: int = 0
    current_model_indices: dict[str, int] = field(default_factory=dict)
    rate_limits: dict[str, RateLimitWindow] = field(default_factory=dict)
    stories: dict[str, StoryHistory] = field(default_factory=dict)
    usage: dict[str, dict[str, int]] = field(default_factory=dict)
    rotations_count: int = 0
    rate_limits_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize into the on-disk document shape."""

        return {
            "version": self.version,
            "current_agent_index": self.current_agent_index,
            "current_model_indices": dict(self.current_model_indices),
            "rate_limits": {
                agent: {"hit_at": window.hit_at, "cooldown_until": window.cooldown_until}
                for agent, window in self.rate_limits.items()
            },
            "stories": {story_id: story.to_dict() for story_id, story in self.stories.items()},
            "usage": {agent: dict(counters) for agent, counters in self.usage.items()},
            "rotations_count": self.rotations_count,
            "rate_limits_count": self.rate_limits_count,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> RotationState:  # noqa: C901
        """Deserialize and validate a state document.

        Raises ``ValueError``/``TypeError`` when the document does not have the
        expected shape; callers treat that as corruption.
        """

        agent_index = raw.get("current_agent_index", 0)
        if not isinstance(agent_index, int) or agent_index < 0:
            raise ValueError("current_agent_index must be a non-negative integer")

        raw_model_indices = raw.get("current_model_indices", {})
        if not isinstance(raw_model_indices, dict):
            raise TypeError("current_model_indices must be an object")
        model_indices: dict[str, int] = {}
        for agent, index in raw_model_indices.items():
            if not isinstance(index, int) or index < 0:
                raise ValueError(f"current_model_indices[{agent!r}] must be >= 0")
            model_indices[str(agent)] = index

        raw_rate_limits = raw.get("rate_limits", {})
        if not isinstance(raw_rate_limits, dict):
            raise TypeError("rate_limits must be an object")
        rate_limits: dict[str, RateLimitWindow] = {}
        for agent, window in raw_rate_limits.items():
            if not isinstance(window, dict):
                raise TypeError(f"rate_limits[{agent!r}] must be an object")
            rate_limits[str(agent)] = RateLimitWindow(
                hit_at=int(window.get("hit_at", 0)),
                cooldown_until=int(window.get("cooldown_until", 0)),
            )

        raw_stories = raw.get("stories", {})
        if not isinstance(raw_stories, dict):
            raise TypeError("stories must be an object")
        stories: dict[str, StoryHistory] = {}
        for story_id, story in raw_stories.items():
            if not isinstance(story, dict) or not isinstance(story.get("attempts", []), list):
                raise TypeError(f"stories[{story_id!r}].attempts must be an array")
            attempts = [
                AttemptRecord(
                    agent=str(item["agent"]),
                    model=str(item["model"]),
                    timestamp=int(item["timestamp"]),
                    result=OutcomeEvent(item["result"]),
                )
                for item in story.get("attempts", [])
            ]
            stories[str(story_id)] = StoryHistory(attempts=attempts)

        raw_usage = raw.get("usage", {})
        if not isinstance(raw_usage, dict):
            raise TypeError("usage must be an object")
        usage: dict[str, dict[str, int]] = {}
        for agent, counters in raw_usage.items():
            if not isinstance(counters, dict):
                raise TypeError(f"usage[{agent!r}] must be an object")
            usage[str(agent)] = {str(key): int(value) for key, value in counters.items()}

        return cls(
            version=int(raw.get("version", ROTATION_STATE_VERSION)),
            current_agent_index=agent_index,
            current_model_indices=model_indices,
            rate_limits=rate_limits,
            stories=stories,
            usage=usage,
            rotations_count=int(raw.get("rotations_count", 0)),
            rate_limits_count=int(raw.get("rate_limits_count", 0)),
        )
