"""On-demand context requests made by an agent mid-task."""

from __future__ import annotations

from pathlib import Path

from ralph_driver.config import ConfigurationError
from ralph_driver.context.docs import section_by_heading
from ralph_driver.context.models import ExpansionKind

FILE_LINE_CAP = 200
PROGRESS_WINDOW_LINES = 100


class ContextExpander:
    """Serves ``spec``, ``file`` and ``progress`` requests."""

    def __init__(self, *, doc_index_path: Path, progress_path: Path) -> None:
        self.doc_index_path = doc_index_path
        self.progress_path = progress_path

    def expand(self, kind: ExpansionKind | str, param: str) -> str:
        request = ExpansionKind(kind)
        if request == ExpansionKind.SPEC:
            return self.spec(param)
        if request == ExpansionKind.FILE:
            return self.file(Path(param))
        return self.progress(_progress_offset(param))

    def spec(self, name: str) -> str:
        if not self.doc_index_path.is_file():
            return ""
        return section_by_heading(self.doc_index_path.read_text("utf-8"), name)

    def file(self, path: Path) -> str:
        if not path.is_file():
            return f"File not found: {path}"
        lines = path.read_text("utf-8", errors="replace").splitlines()
        shown = "\n".join(lines[:FILE_LINE_CAP])
        if len(lines) > FILE_LINE_CAP:
            shown += f"\n... ({len(lines) - FILE_LINE_CAP} more lines)"
        return shown

    def progress(self, offset: int) -> str:
        """Progress log window starting at 1-based line ``offset``."""

        if not self.progress_path.is_file():
            return ""
        lines = self.progress_path.read_text("utf-8").splitlines()
        start = max(offset - 1, 0)
        return "\n".join(lines[start : start + PROGRESS_WINDOW_LINES])


def _progress_offset(param: str) -> int:
    if not param.strip():
        return 0
    try:
        return int(param)
    except ValueError:
        raise ConfigurationError(
            f"Progress offset must be a line number, got {param!r}.",
        ) from None
