"""CLI entrypoint for ralph-driver."""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TextIO

import rich_click as click

from ralph_driver import __version__
from ralph_driver.checkpoints.models import CheckpointStatus
from ralph_driver.config import ConfigurationError
from ralph_driver.context.models import ContextMode, ExpansionKind
from ralph_driver.controllers import (
    CheckpointCreateCommand,
    CheckpointLookupCommand,
    CheckpointPruneCommand,
    CheckResult,
    ContextBuildCommand,
    ContextExpandCommand,
    ProgressCompactCommand,
    ProgressKeywordsCommand,
    RalphCliController,
    RotationDetectCommand,
    RotationRateLimitCommand,
    RotationRecordCommand,
    RotationResetCommand,
    RotationRotateCommand,
    RotationSelectCommand,
    RotationShouldRotateCommand,
)
from ralph_driver.progress.models import CompactionMode
from ralph_driver.rotation.models import OutcomeEvent

click.rich_click.USE_MARKDOWN = True
CONTROLLER = RalphCliController()

STATE_DIR_OPTION = click.option(
    "--state-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="State directory; defaults to RALPH_STATE_DIR or `.ralph`.",
)


@click.group()
@click.version_option(version=__version__, prog_name="ralph-driver")
def ralph_driver() -> None:
    """Control-loop helpers for autonomous coding agents."""


# ---- rotation --------------------------------------------------------


@ralph_driver.group()
def rotation() -> None:
    """Agent/model rotation commands."""


@rotation.command("select")
@STATE_DIR_OPTION
@click.option("--story", "story_id", required=True, help="Story id of the next attempt.")
@click.option(
    "--command",
    "command_name",
    default="build",
    show_default=True,
    help="Command whose rotation list applies (RALPH_COMMAND_AGENT_ROTATION).",
)
def rotation_select(state_dir: Path | None, story_id: str, command_name: str) -> None:
    """Print the agent and model to use for the next attempt."""

    with _configuration_errors():
        _emit_lines(
            CONTROLLER.rotation_select(
                RotationSelectCommand(
                    state_dir=state_dir,
                    story_id=story_id,
                    command=command_name,
                ),
            ),
        )


@rotation.command("record")
@STATE_DIR_OPTION
@click.option("--story", "story_id", required=True, help="Story id.")
@click.option("--agent", required=True, help="Agent that ran the attempt.")
@click.option("--model", required=True, help="Model that ran the attempt.")
@click.option(
    "--event",
    type=click.Choice([event.value for event in OutcomeEvent], case_sensitive=False),
    required=True,
    help="Attempt outcome.",
)
def rotation_record(
    state_dir: Path | None,
    story_id: str,
    agent: str,
    model: str,
    event: str,
) -> None:
    """Append an attempt outcome to the story history."""

    with _configuration_errors():
        _emit_lines(
            CONTROLLER.rotation_record(
                RotationRecordCommand(
                    state_dir=state_dir,
                    story_id=story_id,
                    agent=agent,
                    model=model,
                    event=event,
                ),
            ),
        )


@rotation.command("rate-limit")
@STATE_DIR_OPTION
@click.option("--agent", required=True, help="Agent that hit a rate limit.")
def rotation_rate_limit(state_dir: Path | None, agent: str) -> None:
    """Start a cooldown window for an agent."""

    with _configuration_errors():
        _emit_lines(
            CONTROLLER.rotation_rate_limit(
                RotationRateLimitCommand(state_dir=state_dir, agent=agent),
            ),
        )


@rotation.command("should-rotate")
@STATE_DIR_OPTION
@click.option("--story", "story_id", required=True, help="Story id.")
@click.option("--agent", required=True, help="Current agent.")
@click.option("--model", required=True, help="Current model.")
def rotation_should_rotate(state_dir: Path | None, story_id: str, agent: str, model: str) -> None:
    """Exit 0 when failures for this story/agent/model reached the threshold, else 1."""

    with _configuration_errors():
        result = CONTROLLER.rotation_should_rotate(
            RotationShouldRotateCommand(
                state_dir=state_dir,
                story_id=story_id,
                agent=agent,
                model=model,
            ),
        )
    _emit_check(result)


@rotation.command("rotate")
@STATE_DIR_OPTION
@click.option(
    "--agent",
    default=None,
    help="Rotate this agent's model first; without it the agent rotates directly.",
)
@click.option(
    "--command",
    "command_name",
    default=None,
    help="Command whose rotation list applies.",
)
def rotation_rotate(state_dir: Path | None, agent: str | None, command_name: str | None) -> None:
    """Advance to the next model or agent."""

    with _configuration_errors():
        _emit_lines(
            CONTROLLER.rotation_rotate(
                RotationRotateCommand(state_dir=state_dir, agent=agent, command=command_name),
            ),
        )


@rotation.command("reset")
@STATE_DIR_OPTION
@click.option("--story", "story_id", required=True, help="Story id to forget.")
def rotation_reset(state_dir: Path | None, story_id: str) -> None:
    """Drop the attempt history of one story."""

    with _configuration_errors():
        _emit_lines(
            CONTROLLER.rotation_reset(RotationResetCommand(state_dir=state_dir, story_id=story_id)),
        )


@rotation.command("status")
@STATE_DIR_OPTION
def rotation_status(state_dir: Path | None) -> None:
    """Show rotation counters, current agent and active cooldowns."""

    with _configuration_errors():
        _emit_lines(CONTROLLER.rotation_status(state_dir))


@rotation.command("detect")
@STATE_DIR_OPTION
@click.option("--agent", required=True, help="Agent that produced the output.")
@click.option(
    "--output-file",
    type=click.File("r", encoding="utf-8"),
    default="-",
    show_default=True,
    help="Captured agent output; `-` reads stdin.",
)
@click.option(
    "--record/--no-record",
    default=False,
    show_default=True,
    help="Record a detected rate limit and accumulate parsed usage.",
)
def rotation_detect(
    state_dir: Path | None,
    agent: str,
    output_file: TextIO,
    record: bool,
) -> None:
    """Exit 0 when the output signals a rate limit, else 1."""

    with _configuration_errors():
        result = CONTROLLER.rotation_detect(
            RotationDetectCommand(
                state_dir=state_dir,
                agent=agent,
                output=output_file.read(),
                record=record,
            ),
        )
    _emit_check(result)


# ---- context ---------------------------------------------------------


@ralph_driver.group()
def context() -> None:
    """Context assembly commands."""


@context.command("build")
@STATE_DIR_OPTION
@click.option("--task-id", default=None, help="PRD story id; defaults to the current story.")
@click.option("--title", default=None, help="Task title; overrides the PRD lookup.")
@click.option("--description", default=None, help="Task description.")
@click.option(
    "--mode",
    type=click.Choice([mode.value for mode in ContextMode], case_sensitive=False),
    default=None,
    help="Overrides RALPH_CONTEXT_MODE.",
)
@click.option(
    "--budget",
    "budget_tokens",
    type=click.IntRange(min=1),
    default=None,
    help="Token budget for dynamic mode; defaults to RALPH_CONTEXT_BUDGET.",
)
@click.option(
    "--prompt-file",
    "prompt_path",
    type=click.Path(path_type=Path, dir_okay=False, exists=True),
    default=None,
    help="Wrap this base prompt with the assembled context.",
)
@click.option(
    "--usage/--no-usage",
    "show_usage",
    default=False,
    show_default=True,
    help="Append a token usage report.",
)
def context_build(  # noqa: PLR0913
    state_dir: Path | None,
    task_id: str | None,
    title: str | None,
    description: str | None,
    mode: str | None,
    budget_tokens: int | None,
    prompt_path: Path | None,
    show_usage: bool,
) -> None:
    """Assemble the working context for a task."""

    with _configuration_errors():
        _emit_lines(
            CONTROLLER.context_build(
                ContextBuildCommand(
                    state_dir=state_dir,
                    task_id=task_id,
                    title=title,
                    description=description,
                    mode=mode.lower() if mode else None,
                    budget_tokens=budget_tokens,
                    prompt_path=prompt_path,
                    show_usage=show_usage,
                ),
            ),
        )


@context.command("expand")
@STATE_DIR_OPTION
@click.argument(
    "kind",
    type=click.Choice([kind.value for kind in ExpansionKind], case_sensitive=False),
)
@click.argument("param")
def context_expand(state_dir: Path | None, kind: str, param: str) -> None:
    """Fetch a spec section, a file or a progress window on demand."""

    with _configuration_errors():
        _emit_lines(
            CONTROLLER.context_expand(
                ContextExpandCommand(state_dir=state_dir, kind=kind.lower(), param=param),
            ),
        )


# ---- progress --------------------------------------------------------


@ralph_driver.group()
def progress() -> None:
    """Progress log commands."""


@progress.command("compact")
@STATE_DIR_OPTION
@click.option(
    "--file",
    "progress_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Progress log; defaults to RALPH_PROGRESS_FILE.",
)
@click.option(
    "--mode",
    type=click.Choice([mode.value for mode in CompactionMode], case_sensitive=False),
    default=None,
    help="Overrides RALPH_COMPACTION_MODE.",
)
@click.option("--task-id", default=None, help="Story whose keywords drive relevance scoring.")
@click.option(
    "--keyword",
    "keywords",
    multiple=True,
    help="Explicit scoring keyword. Can be repeated.",
)
def progress_compact(
    state_dir: Path | None,
    progress_path: Path | None,
    mode: str | None,
    task_id: str | None,
    keywords: tuple[str, ...],
) -> None:
    """Compact the progress log when it exceeds the line threshold."""

    with _configuration_errors():
        _emit_lines(
            CONTROLLER.progress_compact(
                ProgressCompactCommand(
                    state_dir=state_dir,
                    progress_path=progress_path,
                    mode=mode.lower() if mode else None,
                    task_id=task_id,
                    keywords=keywords,
                ),
            ),
        )


@progress.command("keywords")
@STATE_DIR_OPTION
@click.option("--task-id", default=None, help="PRD story id; defaults to the current story.")
def progress_keywords(state_dir: Path | None, task_id: str | None) -> None:
    """Print the scoring keywords of a task."""

    with _configuration_errors():
        _emit_lines(
            CONTROLLER.progress_keywords(
                ProgressKeywordsCommand(state_dir=state_dir, task_id=task_id),
            ),
        )


# ---- checkpoints -----------------------------------------------------


@ralph_driver.group()
def checkpoint() -> None:
    """Checkpoint commands."""


@checkpoint.command("create")
@STATE_DIR_OPTION
@click.option("--task-id", required=True, help="Story id.")
@click.option("--name", default=None, help="Checkpoint name; defaults to `auto`.")
@click.option(
    "--status",
    type=click.Choice([status.value for status in CheckpointStatus], case_sensitive=False),
    default=CheckpointStatus.IN_PROGRESS.value,
    show_default=True,
    help="Task status to record.",
)
@click.option("--notes", default="", help="Free-form notes for the resuming agent.")
def checkpoint_create(
    state_dir: Path | None,
    task_id: str,
    name: str | None,
    status: str,
    notes: str,
) -> None:
    """Snapshot task progress and git state."""

    with _configuration_errors():
        _emit_lines(
            CONTROLLER.checkpoint_create(
                CheckpointCreateCommand(
                    state_dir=state_dir,
                    task_id=task_id,
                    name=name,
                    status=status.lower(),
                    notes=notes,
                ),
            ),
        )


@checkpoint.command("latest")
@STATE_DIR_OPTION
@click.option("--task-id", required=True, help="Story id.")
@click.option(
    "--all/--latest-only",
    "show_all",
    default=False,
    show_default=True,
    help="List every checkpoint of the task, newest first.",
)
def checkpoint_latest(state_dir: Path | None, task_id: str, show_all: bool) -> None:
    """Show the newest checkpoint of a task; exit 1 when there is none."""

    with _configuration_errors():
        result = CONTROLLER.checkpoint_latest(
            CheckpointLookupCommand(state_dir=state_dir, task_id=task_id, show_all=show_all),
        )
    _emit_check(result)


@checkpoint.command("resume")
@STATE_DIR_OPTION
@click.option("--task-id", required=True, help="Story id.")
def checkpoint_resume(state_dir: Path | None, task_id: str) -> None:
    """Print the resume digest of the newest checkpoint."""

    with _configuration_errors():
        result = CONTROLLER.checkpoint_resume(
            CheckpointLookupCommand(state_dir=state_dir, task_id=task_id),
        )
    if not result.success:
        raise click.ClickException(result.lines[0])
    _emit_lines(result.lines)


@checkpoint.command("prune")
@STATE_DIR_OPTION
@click.option(
    "--days",
    type=click.IntRange(min=0),
    default=None,
    help="Retention in days; defaults to RALPH_CHECKPOINT_RETENTION.",
)
@click.option("--task-id", default=None, help="Delete every checkpoint of this task instead.")
def checkpoint_prune(state_dir: Path | None, days: int | None, task_id: str | None) -> None:
    """Delete old checkpoints."""

    with _configuration_errors():
        _emit_lines(
            CONTROLLER.checkpoint_prune(
                CheckpointPruneCommand(state_dir=state_dir, days=days, task_id=task_id),
            ),
        )


@contextmanager
def _configuration_errors() -> Iterator[None]:
    try:
        yield
    except ConfigurationError as error:
        raise click.ClickException(str(error)) from error


def _emit_check(result: CheckResult) -> None:
    _emit_lines(result.lines)
    if not result.success:
        click.get_current_context().exit(1)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    ralph_driver()
