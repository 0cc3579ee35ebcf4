"""Controllers for ralph-driver CLI commands."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from ralph_driver.checkpoints.models import CheckpointStatus, TaskDefinition
from ralph_driver.checkpoints.store import CheckpointStore
from ralph_driver.checkpoints.tasks import PrdTaskSource
from ralph_driver.checkpoints.vcs import GitStateReader
from ralph_driver.config import ConfigurationError, Settings
from ralph_driver.context.assembler import ContextAssembler, build_prompt
from ralph_driver.context.expansion import ContextExpander
from ralph_driver.context.keywords import task_keywords
from ralph_driver.context.models import ContextMode, ExpansionKind
from ralph_driver.progress.compaction import ProgressCompactor
from ralph_driver.progress.models import CompactionMode
from ralph_driver.rotation.classifiers import classifier_for
from ralph_driver.rotation.models import OutcomeEvent
from ralph_driver.rotation.scheduler import RotationScheduler


@dataclass(slots=True)
class CheckResult:
    """Lines to print plus the answer of a yes/no command."""

    lines: list[str]
    success: bool


@dataclass(slots=True)
class RotationSelectCommand:
    """CLI input for agent/model selection."""

    state_dir: Path | None
    story_id: str
    command: str | None


@dataclass(slots=True)
class RotationRecordCommand:
    """CLI input for recording one attempt outcome."""

    state_dir: Path | None
    story_id: str
    agent: str
    model: str
    event: str


@dataclass(slots=True)
class RotationRateLimitCommand:
    state_dir: Path | None
    agent: str


@dataclass(slots=True)
class RotationShouldRotateCommand:
    state_dir: Path | None
    story_id: str
    agent: str
    model: str


@dataclass(slots=True)
class RotationRotateCommand:
    """CLI input for manual rotation; with an agent the model rotates first."""

    state_dir: Path | None
    agent: str | None
    command: str | None


@dataclass(slots=True)
class RotationResetCommand:
    state_dir: Path | None
    story_id: str


@dataclass(slots=True)
class RotationDetectCommand:
    """CLI input for classifying captured agent output."""

    state_dir: Path | None
    agent: str
    output: str
    record: bool


@dataclass(slots=True)
class ContextBuildCommand:
    """CLI input for context assembly."""

    state_dir: Path | None
    task_id: str | None
    title: str | None
    description: str | None
    mode: str | None
    budget_tokens: int | None
    prompt_path: Path | None
    show_usage: bool


@dataclass(slots=True)
class ContextExpandCommand:
    state_dir: Path | None
    kind: str
    param: str


@dataclass(slots=True)
class ProgressCompactCommand:
    """CLI input for progress log compaction."""

    state_dir: Path | None
    progress_path: Path | None
    mode: str | None
    task_id: str | None
    keywords: tuple[str, ...]


@dataclass(slots=True)
class ProgressKeywordsCommand:
    state_dir: Path | None
    task_id: str | None


@dataclass(slots=True)
class CheckpointCreateCommand:
    """CLI input for checkpoint creation."""

    state_dir: Path | None
    task_id: str
    name: str | None
    status: str
    notes: str


@dataclass(slots=True)
class CheckpointLookupCommand:
    """CLI input for latest/resume lookups."""

    state_dir: Path | None
    task_id: str
    show_all: bool = False


@dataclass(slots=True)
class CheckpointPruneCommand:
    state_dir: Path | None
    days: int | None
    task_id: str | None


class RalphCliController:
    """Coordinates CLI command execution; every method returns printable lines."""

    # ---- rotation ----------------------------------------------------

    def rotation_select(self, command: RotationSelectCommand) -> list[str]:
        scheduler = _scheduler(_settings(command.state_dir))
        selection = scheduler.select(command.story_id, command.command)
        return [f"agent={selection.agent} model={selection.model}"]

    def rotation_record(self, command: RotationRecordCommand) -> list[str]:
        try:
            event = OutcomeEvent(command.event.strip().lower())
        except ValueError as error:
            raise ConfigurationError(f"Unsupported outcome event: {command.event!r}") from error
        scheduler = _scheduler(_settings(command.state_dir))
        record = scheduler.record_outcome(command.story_id, command.agent, command.model, event)
        lines = [
            f"Recorded {record.result.value} for {command.story_id} "
            f"({record.agent}/{record.model})",
        ]
        if event == OutcomeEvent.FAILURE and scheduler.should_rotate(
            command.story_id,
            command.agent,
            command.model,
        ):
            lines.append("Failure threshold reached: rotation recommended")
        return lines

    def rotation_rate_limit(self, command: RotationRateLimitCommand) -> list[str]:
        scheduler = _scheduler(_settings(command.state_dir))
        window = scheduler.record_rate_limit(command.agent)
        until = datetime.fromtimestamp(window.cooldown_until, tz=UTC)
        return [f"Rate limit recorded for {command.agent}, cooldown until {until.isoformat()}"]

    def rotation_should_rotate(self, command: RotationShouldRotateCommand) -> CheckResult:
        scheduler = _scheduler(_settings(command.state_dir))
        rotate = scheduler.should_rotate(command.story_id, command.agent, command.model)
        return CheckResult(lines=[f"rotate={'yes' if rotate else 'no'}"], success=rotate)

    def rotation_rotate(self, command: RotationRotateCommand) -> list[str]:
        scheduler = _scheduler(_settings(command.state_dir))
        if command.agent:
            outcome = scheduler.rotate_model(command.agent, command.command)
        else:
            outcome = scheduler.rotate_agent(command.command)
        return [f"Rotation outcome: {outcome.value}"]

    def rotation_reset(self, command: RotationResetCommand) -> list[str]:
        scheduler = _scheduler(_settings(command.state_dir))
        if scheduler.reset_story(command.story_id):
            return [f"Story state reset: {command.story_id}"]
        return [f"No rotation state for story: {command.story_id}"]

    def rotation_status(self, state_dir: Path | None) -> list[str]:
        return _scheduler(_settings(state_dir)).status_lines()

    def rotation_detect(self, command: RotationDetectCommand) -> CheckResult:
        pattern = classifier_for(command.agent).matched_rate_limit_pattern(command.output)
        if not command.record:
            if pattern is None:
                return CheckResult(lines=["rate_limit=no"], success=False)
            return CheckResult(lines=[f"rate_limit=yes pattern={pattern}"], success=True)

        scheduler = _scheduler(_settings(command.state_dir))
        lines: list[str] = []
        usage = scheduler.extract_usage(command.agent, command.output)
        for name, value in sorted(usage.items()):
            lines.append(f"usage {command.agent}.{name} += {value}")
        if pattern is None:
            lines.insert(0, "rate_limit=no")
            return CheckResult(lines=lines, success=False)
        window = scheduler.record_rate_limit(command.agent)
        lines.insert(0, f"rate_limit=yes pattern={pattern}")
        lines.append(f"cooldown_until={window.cooldown_until}")
        return CheckResult(lines=lines, success=True)

    # ---- context -----------------------------------------------------

    def context_build(self, command: ContextBuildCommand) -> list[str]:
        settings = _settings(command.state_dir)
        if command.mode is not None:
            settings.context.mode = ContextMode(command.mode)
        title, description = _task_text(
            settings,
            task_id=command.task_id,
            title=command.title,
            description=command.description,
        )
        assembler = ContextAssembler(settings.context)
        assembled = assembler.assemble_from_files(
            task_title=title,
            task_description=description,
            doc_index_path=settings.doc_index,
            progress_path=settings.progress_file,
            budget_tokens=command.budget_tokens,
        )
        text = assembled.text
        if command.prompt_path is not None:
            text = build_prompt(command.prompt_path.read_text("utf-8"), text)

        lines = text.splitlines()
        if command.show_usage:
            usage = assembler.usage_report(text, command.budget_tokens)
            lines += [
                "",
                f"Context usage: ~{usage.used_tokens} of {usage.budget_tokens} tokens "
                f"({usage.percent}%, {usage.level})",
                assembler.file_token_summary(
                    doc_index_path=settings.doc_index,
                    progress_path=settings.progress_file,
                ),
            ]
            if assembled.skipped:
                lines.append(f"Skipped sections: {', '.join(assembled.skipped)}")
        return lines

    def context_expand(self, command: ContextExpandCommand) -> list[str]:
        settings = _settings(command.state_dir)
        expander = ContextExpander(
            doc_index_path=settings.doc_index,
            progress_path=settings.progress_file,
        )
        return expander.expand(ExpansionKind(command.kind), command.param).splitlines()

    # ---- progress ----------------------------------------------------

    def progress_compact(self, command: ProgressCompactCommand) -> list[str]:
        settings = _settings(command.state_dir)
        path = command.progress_path or settings.progress_file
        mode = CompactionMode(command.mode) if command.mode else settings.compaction.mode
        keywords = list(command.keywords)
        if not keywords and mode == CompactionMode.RELEVANCE:
            keywords = _current_keywords(settings, command.task_id)

        compactor = ProgressCompactor(
            settings.compaction,
            event_log_path=settings.compaction_log_path,
        )
        stats = compactor.compact_file(path, keywords, mode=mode)
        if not stats.compacted:
            return [f"Compaction skipped for {path}: {stats.skipped_reason}"]
        return [
            f"Compacted {path} ({stats.mode.value}): "
            f"{stats.lines_before} -> {stats.lines_after} lines, "
            f"{stats.entries_before} -> {stats.entries_after} entries",
            f"Backup: {stats.backup_path}",
        ]

    def progress_keywords(self, command: ProgressKeywordsCommand) -> list[str]:
        settings = _settings(command.state_dir)
        return _current_keywords(settings, command.task_id)

    # ---- checkpoints -------------------------------------------------

    def checkpoint_create(self, command: CheckpointCreateCommand) -> list[str]:
        store = _checkpoint_store(_settings(command.state_dir))
        status = CheckpointStatus(command.status)
        if command.name:
            checkpoint = store.create(command.name, command.task_id, status, command.notes)
        else:
            checkpoint = store.create_auto(command.task_id, status, command.notes)
        return [f"Checkpoint created: {checkpoint.path}"]

    def checkpoint_latest(self, command: CheckpointLookupCommand) -> CheckResult:
        store = _checkpoint_store(_settings(command.state_dir))
        if not command.show_all:
            line = store.summary_line(command.task_id)
            return CheckResult(lines=[line], success=store.has_checkpoint(command.task_id))

        checkpoints = store.list_for_task(command.task_id)
        lines = [
            f"[{checkpoint.status.value}] {checkpoint.checkpoint_name} "
            f"@ {checkpoint.created_at.isoformat()} {checkpoint.path}"
            for checkpoint in checkpoints
        ]
        return CheckResult(lines=lines or ["No checkpoint"], success=bool(checkpoints))

    def checkpoint_resume(self, command: CheckpointLookupCommand) -> CheckResult:
        store = _checkpoint_store(_settings(command.state_dir))
        checkpoint = store.latest(command.task_id)
        if checkpoint is None:
            return CheckResult(lines=[f"No checkpoint for task {command.task_id}"], success=False)
        return CheckResult(lines=store.resume_summary(checkpoint).splitlines(), success=True)

    def checkpoint_prune(self, command: CheckpointPruneCommand) -> list[str]:
        settings = _settings(command.state_dir)
        store = _checkpoint_store(settings)
        if command.task_id:
            removed = store.prune_task(command.task_id)
            return [f"Removed {removed} checkpoints for task {command.task_id}"]
        days = command.days if command.days is not None else settings.checkpoints.retention_days
        removed = store.prune_older_than(days)
        return [f"Removed {removed} checkpoints older than {days} days"]


def _settings(state_dir: Path | None) -> Settings:
    settings = Settings.from_env(state_dir=state_dir)
    settings.validate()
    return settings


def _scheduler(settings: Settings) -> RotationScheduler:
    return RotationScheduler(settings=settings.rotation, state_path=settings.rotation_state_path)


def _checkpoint_store(settings: Settings) -> CheckpointStore:
    return CheckpointStore(
        settings.checkpoints_dir,
        git=GitStateReader(),
        tasks=PrdTaskSource(settings.prd_file),
    )


def _resolve_task(settings: Settings, task_id: str | None) -> TaskDefinition | None:
    tasks = PrdTaskSource(settings.prd_file)
    if task_id:
        return tasks.get(task_id)
    return tasks.current_task()


def _task_text(
    settings: Settings,
    *,
    task_id: str | None,
    title: str | None,
    description: str | None,
) -> tuple[str, str]:
    if title is not None:
        return title, description or ""
    task = _resolve_task(settings, task_id)
    if task is None:
        raise ConfigurationError(
            f"No task found in {settings.prd_file}; pass --title or a known --task-id.",
        )
    return task.title, description if description is not None else task.description


def _current_keywords(settings: Settings, task_id: str | None) -> list[str]:
    task = _resolve_task(settings, task_id)
    if task is None:
        return []
    return task_keywords(task.title, task.description)
