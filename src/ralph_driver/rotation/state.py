"""JSON-file persistence for rotation state."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from ralph_driver.rotation.models import RotationState
from ralph_driver.storage import load_json, write_json

logger = logging.getLogger(__name__)


class RotationStateStore:
    """Loads and atomically saves the single rotation state document.

    Single-writer: concurrent callers against the same path must serialise
    access themselves.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> RotationState:
        """Return persisted state, creating or repairing the file as needed."""

        if not self.path.exists():
            state = RotationState()
            self.save(state)
            logger.debug("Initialized rotation state file %s", self.path)
            return state
        try:
            return RotationState.from_dict(load_json(self.path))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as error:
            logger.warning(
                "Rotation state %s is corrupt (%s); reinitializing with defaults",
                self.path,
                error,
            )
            state = RotationState()
            self.save(state)
            return state

    def save(self, state: RotationState) -> None:
        write_json(self.path, state.to_dict())
