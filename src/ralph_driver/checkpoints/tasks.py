"""Task definitions read from the PRD (``prd.json`` user stories)."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from ralph_driver.checkpoints.models import TaskDefinition
from ralph_driver.storage import load_json

logger = logging.getLogger(__name__)


class PrdTaskSource:
    """Looks up user stories by id; a missing or unreadable PRD yields no tasks."""

    def __init__(self, prd_path: Path) -> None:
        self.prd_path = prd_path

    def tasks(self) -> list[TaskDefinition]:
        if not self.prd_path.is_file():
            return []
        try:
            raw = load_json(self.prd_path)
        except (json.JSONDecodeError, TypeError) as error:
            logger.warning("Cannot read task definitions from %s: %s", self.prd_path, error)
            return []
        stories = raw.get("userStories")
        if not isinstance(stories, list):
            return []

        tasks: list[TaskDefinition] = []
        for story in stories:
            if not isinstance(story, dict) or not isinstance(story.get("id"), str):
                continue
            priority = story.get("priority", 0)
            tasks.append(
                TaskDefinition(
                    task_id=story["id"],
                    title=str(story.get("title") or ""),
                    description=str(story.get("description") or ""),
                    priority=priority if isinstance(priority, int) else 0,
                    passes=story.get("passes") is True,
                ),
            )
        return tasks

    def get(self, task_id: str) -> TaskDefinition | None:
        for task in self.tasks():
            if task.task_id == task_id:
                return task
        return None

    def current_task(self) -> TaskDefinition | None:
        """Highest-priority (lowest number) story that does not pass yet."""

        pending = [task for task in self.tasks() if not task.passes]
        if not pending:
            return None
        return min(pending, key=lambda task: task.priority)
