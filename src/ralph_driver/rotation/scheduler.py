"""Failure- and rate-limit-driven agent/model selection."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path

from ralph_driver.config import DEFAULT_AGENT, DEFAULT_AGENT_MODELS, RotationSettings
from ralph_driver.rotation.classifiers import classifier_for
from ralph_driver.rotation.models import (
    AttemptRecord,
    OutcomeEvent,
    RateLimitWindow,
    RotationOutcome,
    RotationState,
    RotationStrategy,
    Selection,
    StoryHistory,
)
from ralph_driver.rotation.state import RotationStateStore

logger = logging.getLogger(__name__)

DEFAULT_SELECTION = Selection(agent=DEFAULT_AGENT, model=DEFAULT_AGENT_MODELS[DEFAULT_AGENT])


class RotationScheduler:
    """Owns RotationState and decides which agent/model runs next.

    Every mutating call persists the whole document atomically. The scheduler
    assumes it is the only writer of its state file.
    """

    def __init__(
        self,
        *,
        settings: RotationSettings,
        state_path: Path,
        clock: Callable[[], float] = time.time,
    ) -> None:
        settings.validate()
        self.settings = settings
        self.store = RotationStateStore(state_path)
        self.clock = clock
        self._state: RotationState | None = None

    @property
    def state(self) -> RotationState:
        if self._state is None:
            self._state = self.store.load()
        return self._state

    def _persist(self) -> None:
        self.store.save(self.state)

    def _now(self) -> int:
        return int(self.clock())

    # ---- selection ---------------------------------------------------

    def select(self, story_id: str, command: str | None = "build") -> Selection:
        """Choose the agent/model pair for the next attempt at ``story_id``."""

        if not self.settings.enabled:
            agent = self.settings.primary_agent
            models = self.settings.models_for(agent)
            return Selection(agent=agent, model=models[0] if models else "")

        agents = self.settings.rotation_list(command)
        if not agents:
            logger.warning("Empty agent rotation list; using %s", DEFAULT_SELECTION.agent)
            return DEFAULT_SELECTION

        state = self.state
        current_index = state.current_agent_index
        if current_index >= len(agents):
            current_index = 0

        if self.settings.strategy == RotationStrategy.PRIORITY:
            selected_index = self._first_available(agents)
        else:
            selected_index = self._next_available(agents, start=current_index)
        if selected_index is None:
            selected_index = current_index
            logger.warning(
                "All agents in cooldown for story %s, using %s anyway",
                story_id,
                agents[selected_index],
            )

        agent = agents[selected_index]
        state.current_agent_index = selected_index
        model = self._current_model(agent)
        self._persist()
        logger.debug("Selected %s/%s for story %s", agent, model, story_id)
        return Selection(agent=agent, model=model)

    def _first_available(self, agents: tuple[str, ...]) -> int | None:
        for index, agent in enumerate(agents):
            if self.is_agent_cooled_down(agent):
                return index
            logger.debug("Agent %s in cooldown, skipping", agent)
        return None

    def _next_available(self, agents: tuple[str, ...], *, start: int) -> int | None:
        for offset in range(len(agents)):
            index = (start + offset) % len(agents)
            if self.is_agent_cooled_down(agents[index]):
                return index
            logger.debug("Agent %s in cooldown, skipping", agents[index])
        return None

    def _current_model(self, agent: str) -> str:
        models = self.settings.models_for(agent)
        if not models:
            return ""
        index = self.state.current_model_indices.get(agent, 0)
        if index >= len(models):
            index = 0
            self.state.current_model_indices[agent] = 0
        return models[index]

    # ---- rotation ----------------------------------------------------

    def should_rotate(self, story_id: str, agent: str, model: str) -> bool:
        """True once cumulative failures for the exact triple reach the threshold."""

        story = self.state.stories.get(story_id)
        if story is None:
            return False
        return story.failure_count(agent=agent, model=model) >= self.settings.failure_threshold

    def rotate_model(self, agent: str, command: str | None = None) -> RotationOutcome:
        """Advance to the agent's next model, escalating to rotate_agent when exhausted."""

        models = self.settings.models_for(agent)
        if len(models) <= 1:
            return self.rotate_agent(command)

        state = self.state
        current_index = state.current_model_indices.get(agent, 0)
        next_index = (current_index + 1) % len(models)
        if next_index == 0:
            logger.info("All models exhausted for %s, rotating agent", agent)
            return self.rotate_agent(command)

        state.current_model_indices[agent] = next_index
        state.rotations_count += 1
        self._persist()
        logger.info(
            "Rotated model for %s: index %d -> %d (%s)",
            agent,
            current_index,
            next_index,
            models[next_index],
        )
        return RotationOutcome.MODEL_ADVANCED

    def rotate_agent(self, command: str | None = None) -> RotationOutcome:
        """Advance the persisted agent index and reset the new agent's model."""

        agents = self.settings.rotation_list(command)
        if len(agents) <= 1:
            logger.warning("No agents available to rotate to")
            return RotationOutcome.NO_AGENTS_AVAILABLE

        state = self.state
        current_index = state.current_agent_index
        next_index = (current_index + 1) % len(agents)
        new_agent = agents[next_index]
        state.current_agent_index = next_index
        state.current_model_indices[new_agent] = 0
        state.rotations_count += 1
        self._persist()
        logger.info("Rotated agent: index %d -> %d (%s)", current_index, next_index, new_agent)

        if next_index == 0:
            logger.warning("All agents exhausted, wrapping to beginning")
            return RotationOutcome.WRAPPED
        return RotationOutcome.ADVANCED

    # ---- rate limits -------------------------------------------------

    def record_rate_limit(self, agent: str) -> RateLimitWindow:
        now = self._now()
        window = RateLimitWindow(
            hit_at=now,
            cooldown_until=now + self.settings.rate_limit_cooldown_seconds,
        )
        state = self.state
        state.rate_limits[agent] = window
        state.rate_limits_count += 1
        self._persist()
        logger.info("Rate limit recorded for %s, cooldown until %d", agent, window.cooldown_until)
        return window

    def is_agent_cooled_down(self, agent: str) -> bool:
        """True when the agent is eligible again (never rate-limited counts as eligible)."""

        window = self.state.rate_limits.get(agent)
        if window is None:
            return True
        return self._now() >= window.cooldown_until

    def detect_rate_limit(self, agent: str, raw_output: str) -> bool:
        return classifier_for(agent).detects_rate_limit(raw_output)

    def extract_usage(self, agent: str, raw_output: str) -> dict[str, int]:
        """Accumulate best-effort usage counters parsed from agent output."""

        increments = classifier_for(agent).parse_usage(raw_output)
        if not increments:
            return {}
        counters = self.state.usage.setdefault(agent, {})
        for name, value in increments.items():
            counters[name] = counters.get(name, 0) + value
        self._persist()
        return increments

    # ---- story history -----------------------------------------------

    def record_outcome(
        self,
        story_id: str,
        agent: str,
        model: str,
        event: OutcomeEvent | str,
    ) -> AttemptRecord:
        """Append one attempt record; the only write path into ``stories``."""

        record = AttemptRecord(
            agent=agent,
            model=model,
            timestamp=self._now(),
            result=OutcomeEvent(event),
        )
        self.state.stories.setdefault(story_id, StoryHistory()).attempts.append(record)
        self._persist()
        return record

    def reset_story(self, story_id: str) -> bool:
        removed = self.state.stories.pop(story_id, None) is not None
        if removed:
            self._persist()
        return removed

    # ---- reporting ---------------------------------------------------

    def status_lines(self) -> list[str]:
        """Human-readable rotation summary."""

        if not self.store.exists():
            return ["Rotation: not initialized"]

        state = self.state
        lines = [
            f"Rotation: {state.rotations_count} rotations, "
            f"{state.rate_limits_count} rate limits",
        ]
        agents = self.settings.rotation_list()
        if agents and state.current_agent_index < len(agents):
            agent = agents[state.current_agent_index]
            models = self.settings.models_for(agent)
            model_index = state.current_model_indices.get(agent, 0)
            model = models[model_index] if model_index < len(models) else "default"
            lines.append(f"Current: {agent} (model: {model})")
        now = self._now()
        for agent in agents:
            window = state.rate_limits.get(agent)
            if window is not None and window.cooldown_until > now:
                lines.append(f"  {agent}: cooldown {window.cooldown_until - now}s remaining")
        return lines
