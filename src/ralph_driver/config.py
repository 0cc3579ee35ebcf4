"""Runtime configuration for rotation, context, compaction and checkpoints."""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TypeVar

from ralph_driver.context.models import ContextMode
from ralph_driver.progress.models import CompactionMode
from ralph_driver.rotation.models import RotationStrategy

SUPPORTED_AGENTS = ("claude-code", "codex", "github-copilot", "gemini")
DEFAULT_AGENT = "claude-code"
DEFAULT_AGENT_MODELS: dict[str, str] = {
    "claude-code": "claude-sonnet-4-5-20250929",
    "codex": "gpt-5.2-codex",
    "github-copilot": "auto",
    "gemini": "gemini-3-pro",
}
DEFAULT_STORY_ID_PATTERN = r"\b[A-Z]{2,}-\d+\b"

_EnumT = TypeVar("_EnumT", bound=Enum)


class ConfigurationError(ValueError):
    """Invalid configuration that must halt the run."""


@dataclass(slots=True)
class RotationSettings:
    """Agent/model rotation settings."""

    enabled: bool = False
    strategy: RotationStrategy = RotationStrategy.SEQUENTIAL
    failure_threshold: int = 2
    rate_limit_cooldown_seconds: int = 300
    primary_agent: str = DEFAULT_AGENT
    fallback_agent: str = ""
    agent_rotation: tuple[str, ...] = ()
    command_agent_rotation: dict[str, tuple[str, ...]] = field(default_factory=dict)
    agent_models: dict[str, tuple[str, ...]] = field(default_factory=dict)

    def rotation_list(self, command: str | None = None) -> tuple[str, ...]:
        """Command override, else global list, else primary/fallback."""

        if command is not None:
            override = self.command_agent_rotation.get(command.strip().lower())
            if override:
                return override
        if self.agent_rotation:
            return self.agent_rotation
        return tuple(agent for agent in (self.primary_agent, self.fallback_agent) if agent)

    def models_for(self, agent: str) -> tuple[str, ...]:
        """Configured models for an agent, else its built-in default."""

        configured = self.agent_models.get(agent)
        if configured:
            return configured
        default = DEFAULT_AGENT_MODELS.get(agent)
        return (default,) if default else ()

    def validate(self) -> None:
        """Raise ConfigurationError for unknown agents or bad numbers."""

        if self.failure_threshold <= 0:
            raise ConfigurationError("RALPH_FAILURE_THRESHOLD must be > 0.")
        if self.rate_limit_cooldown_seconds < 0:
            raise ConfigurationError("RALPH_RATE_LIMIT_COOLDOWN must be >= 0.")
        if not self.primary_agent:
            raise ConfigurationError("RALPH_PRIMARY_AGENT must not be empty.")
        _validate_agent(self.primary_agent, source="RALPH_PRIMARY_AGENT")
        if self.fallback_agent:
            _validate_agent(self.fallback_agent, source="RALPH_FALLBACK_AGENT")
        for agent in self.agent_rotation:
            _validate_agent(agent, source="RALPH_AGENT_ROTATION")
        for command, agents in self.command_agent_rotation.items():
            if not agents:
                raise ConfigurationError(
                    f"Empty agent rotation for command {command!r} in "
                    "RALPH_COMMAND_AGENT_ROTATION.",
                )
            for agent in agents:
                _validate_agent(agent, source="RALPH_COMMAND_AGENT_ROTATION")
        for agent in self.agent_models:
            _validate_agent(agent, source="RALPH_AGENT_MODELS")


@dataclass(slots=True)
class ContextSettings:
    """Context assembly settings."""

    mode: ContextMode = ContextMode.STANDARD
    budget_tokens: int = 100_000
    chars_per_token: int = 4


@dataclass(slots=True)
class ScoringWeights:
    """Relevance weights used by semantic compaction."""

    pattern: int = 10
    gotcha: int = 8
    integration: int = 7
    api: int = 4
    config: int = 3
    recent: int = 5
    keyword: int = 2
    keyword_cap: int = 3
    recent_window: int = 3


@dataclass(slots=True)
class CompactionSettings:
    """Progress log compaction settings."""

    mode: CompactionMode = CompactionMode.LINE
    threshold_lines: int = 400
    preserve_start: int = 50
    preserve_end: int = 200
    min_score: int = 5
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    story_id_pattern: str = DEFAULT_STORY_ID_PATTERN


@dataclass(slots=True)
class CheckpointSettings:
    retention_days: int = 7


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    state_dir: Path = Path(".ralph")
    progress_file: Path = Path("progress.txt")
    doc_index: Path = Path("specs/INDEX.md")
    prd_file: Path = Path("prd.json")
    rotation: RotationSettings = field(default_factory=RotationSettings)
    context: ContextSettings = field(default_factory=ContextSettings)
    compaction: CompactionSettings = field(default_factory=CompactionSettings)
    checkpoints: CheckpointSettings = field(default_factory=CheckpointSettings)

    @property
    def rotation_state_path(self) -> Path:
        return self.state_dir / "rotation-state.json"

    @property
    def checkpoints_dir(self) -> Path:
        return self.state_dir / "checkpoints"

    @property
    def compaction_log_path(self) -> Path:
        return self.state_dir / "compaction.log"

    @classmethod
    def from_env(cls, state_dir: Path | None = None) -> Settings:
        """Load settings from environment with defaults matching the shell driver."""

        return cls(
            state_dir=state_dir or Path(os.getenv("RALPH_STATE_DIR", ".ralph")),
            progress_file=Path(os.getenv("RALPH_PROGRESS_FILE", "progress.txt")),
            doc_index=Path(os.getenv("RALPH_DOC_INDEX", "specs/INDEX.md")),
            prd_file=Path(os.getenv("RALPH_PRD_FILE", "prd.json")),
            rotation=RotationSettings(
                enabled=_env_bool("RALPH_ROTATION_ENABLED", default=False),
                strategy=_env_enum(
                    "RALPH_ROTATION_STRATEGY",
                    RotationStrategy,
                    RotationStrategy.SEQUENTIAL,
                ),
                failure_threshold=_env_int("RALPH_FAILURE_THRESHOLD", 2),
                rate_limit_cooldown_seconds=_env_int("RALPH_RATE_LIMIT_COOLDOWN", 300),
                primary_agent=_normalize_agent(os.getenv("RALPH_PRIMARY_AGENT", DEFAULT_AGENT)),
                fallback_agent=_normalize_agent(os.getenv("RALPH_FALLBACK_AGENT", "")),
                agent_rotation=_parse_agent_list(os.getenv("RALPH_AGENT_ROTATION", ""), sep=","),
                command_agent_rotation=_parse_named_lists(
                    "RALPH_COMMAND_AGENT_ROTATION",
                    normalize=_normalize_agent,
                ),
                agent_models=_parse_named_lists(
                    "RALPH_AGENT_MODELS",
                    normalize=str.strip,
                    normalize_key=_normalize_agent,
                ),
            ),
            context=ContextSettings(
                mode=_env_enum("RALPH_CONTEXT_MODE", ContextMode, ContextMode.STANDARD),
                budget_tokens=_env_int("RALPH_CONTEXT_BUDGET", 100_000),
                chars_per_token=_env_int("RALPH_CHARS_PER_TOKEN", 4),
            ),
            compaction=CompactionSettings(
                mode=_env_enum("RALPH_COMPACTION_MODE", CompactionMode, CompactionMode.LINE),
                threshold_lines=_env_int("RALPH_COMPACTION_THRESHOLD", 400),
                preserve_start=_env_int("RALPH_PRESERVE_START", 50),
                preserve_end=_env_int("RALPH_PRESERVE_END", 200),
                min_score=_env_int("RALPH_MIN_SCORE_THRESHOLD", 5),
            ),
            checkpoints=CheckpointSettings(
                retention_days=_env_int("RALPH_CHECKPOINT_RETENTION", 7),
            ),
        )

    def validate(self) -> None:
        """Raise ConfigurationError when any group is inconsistent."""

        self.rotation.validate()
        if self.context.budget_tokens <= 0:
            raise ConfigurationError("RALPH_CONTEXT_BUDGET must be > 0.")
        if self.context.chars_per_token <= 0:
            raise ConfigurationError("RALPH_CHARS_PER_TOKEN must be > 0.")
        if self.compaction.threshold_lines <= 0:
            raise ConfigurationError("RALPH_COMPACTION_THRESHOLD must be > 0.")
        if self.compaction.preserve_start < 0 or self.compaction.preserve_end < 0:
            raise ConfigurationError("RALPH_PRESERVE_START/RALPH_PRESERVE_END must be >= 0.")
        if self.checkpoints.retention_days < 0:
            raise ConfigurationError("RALPH_CHECKPOINT_RETENTION must be >= 0.")


def _normalize_agent(value: str) -> str:
    return value.strip().lower()


def _validate_agent(agent: str, *, source: str) -> None:
    if agent in SUPPORTED_AGENTS:
        return
    raise ConfigurationError(
        f"Unsupported agent {agent!r} in {source}. Use one of {', '.join(SUPPORTED_AGENTS)}.",
    )


def _parse_agent_list(raw: str, *, sep: str) -> tuple[str, ...]:
    agents: list[str] = []
    for part in raw.split(sep):
        agent = _normalize_agent(part)
        if agent and agent not in agents:
            agents.append(agent)
    return tuple(agents)


def _parse_named_lists(
    name: str,
    *,
    normalize: Callable[[str], str],
    normalize_key: Callable[[str], str] = _normalize_agent,
) -> dict[str, tuple[str, ...]]:
    """Parse ``key=a|b,key2=c`` into ``{key: (a, b), key2: (c,)}``."""

    raw = os.getenv(name, "").strip()
    if not raw:
        return {}

    parsed: dict[str, tuple[str, ...]] = {}
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        if "=" not in token:
            raise ConfigurationError(
                f"Invalid {name} entry: {token!r}. Expected format '<name>=<item>|<item>'.",
            )
        key_raw, values_raw = token.split("=", 1)
        key = normalize_key(key_raw)
        if not key:
            raise ConfigurationError(f"Invalid {name} entry: {token!r} has an empty name.")
        values = tuple(item for item in map(normalize, values_raw.split("|")) if item)
        if not values:
            raise ConfigurationError(f"Invalid {name} entry: {token!r} lists no values.")
        parsed[key] = values
    return parsed


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ConfigurationError(f"Invalid integer value for {name}: {value!r}") from error


def _env_enum(name: str, enum_cls: type[_EnumT], default: _EnumT) -> _EnumT:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return enum_cls(value.strip().lower())
    except ValueError as error:
        allowed = ", ".join(str(member.value) for member in enum_cls)
        raise ConfigurationError(
            f"Invalid value for {name}: {value!r}. Use one of {allowed}.",
        ) from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ConfigurationError(f"Invalid boolean value for {name}: {value!r}")
