"""Row writers: where a task's output rows end up."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import IO, Any, Protocol, runtime_checkable

import structlog

logger = structlog.get_logger()


@runtime_checkable
class RowWriter(Protocol):
    """Protocol for per-task row output. One writer is owned by one task."""

    def add(self, row: dict[str, Any]) -> None:
        """Buffer or write a single row."""
        ...

    def finish(self) -> None:
        """Flush everything added so far; the task produced its last row."""
        ...

    def close(self) -> None:
        """Release resources. Safe to call after finish() or on failure."""
        ...


class MemoryWriter:
    """Keeps rows in a list."""

    def __init__(self) -> None:
        self.rows: list[dict[str, Any]] = []
        self.finished = False
        self.closed = False

    def add(self, row: dict[str, Any]) -> None:
        self.rows.append(row)

    def finish(self) -> None:
        self.finished = True

    def close(self) -> None:
        self.closed = True


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    msg = f"Object of type {type(value).__name__} is not JSON serializable"
    raise TypeError(msg)


class JsonLinesWriter:
    """Writes one JSON document per line to ``<directory>/part-<task>.jsonl``."""

    def __init__(self, directory: str | Path, task_index: int) -> None:
        self._path = Path(directory) / f"part-{task_index:05d}.jsonl"
        self._file: IO[str] | None = None
        self._rows = 0

    @property
    def path(self) -> Path:
        return self._path

    def add(self, row: dict[str, Any]) -> None:
        if self._file is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._file = self._path.open("w", encoding="utf-8")
        self._file.write(json.dumps(row, default=_json_default))
        self._file.write("\n")
        self._rows += 1

    def finish(self) -> None:
        if self._file is not None:
            self._file.flush()
        logger.debug("writer.finished", path=str(self._path), rows=self._rows)

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
