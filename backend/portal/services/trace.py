"""Debug/trace log for the state permissions workflow.

An in-memory, append-only record of structured stage events. It is the
only audit trail of the editing session itself (the `activity_logs`
table records outcomes, not stages). Entries are surfaced to the admin
only while the debug panel is toggled on, but they are always recorded
and always mirrored to the `portal.trace` logger.

The log is bounded: once `capacity` entries are held, the oldest entry
is evicted and `dropped` is incremented.
"""

from __future__ import annotations

import enum
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger("portal.trace")


class LogLevel(str, enum.Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class StageStatus(str, enum.Enum):
    START = "start"
    PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"
    WARNING = "warning"


_STATUS_LEVEL = {
    StageStatus.START: LogLevel.INFO,
    StageStatus.PROGRESS: LogLevel.INFO,
    StageStatus.COMPLETE: LogLevel.SUCCESS,
    StageStatus.WARNING: LogLevel.WARNING,
    StageStatus.ERROR: LogLevel.ERROR,
}

_PY_LEVEL = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class DebugLogEntry:
    level: LogLevel
    message: str
    data: dict[str, Any] | None = None
    stage: str | None = None
    status: StageStatus | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> dict:
        return {
            "level": self.level.value,
            "message": self.message,
            "data": self.data,
            "stage": self.stage,
            "status": self.status.value if self.status else None,
            "timestamp": self.timestamp.isoformat(),
        }


def serialize_error(error: BaseException | str | None) -> dict | None:
    if error is None:
        return None
    if isinstance(error, BaseException):
        return {"type": type(error).__name__, "message": str(error)}
    return {"type": "str", "message": str(error)}


class TraceLog:
    """Bounded ring of DebugLogEntry values."""

    def __init__(self, capacity: int = 500, visible: bool = False):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._entries: deque[DebugLogEntry] = deque(maxlen=capacity)
        self.capacity = capacity
        self.visible = visible
        self.dropped = 0

    def __len__(self) -> int:
        return len(self._entries)

    def add(
        self,
        level: LogLevel | str,
        message: str,
        data: dict[str, Any] | None = None,
        *,
        stage: str | None = None,
        status: StageStatus | None = None,
    ) -> DebugLogEntry:
        entry = DebugLogEntry(
            level=LogLevel(level),
            message=message,
            data=data,
            stage=stage,
            status=status,
        )
        if len(self._entries) == self.capacity:
            self.dropped += 1
        self._entries.append(entry)
        logger.log(_PY_LEVEL[entry.level], "%s %s", message, data if data else "")
        return entry

    def log_stage(
        self,
        stage: str,
        status: StageStatus | str,
        details: dict[str, Any] | None = None,
    ) -> DebugLogEntry:
        status = StageStatus(status)
        return self.add(
            _STATUS_LEVEL[status],
            f"{stage}: {status.value}",
            details,
            stage=stage,
            status=status,
        )

    def log_error(
        self,
        message: str,
        error: BaseException | str | None,
        details: dict[str, Any] | None = None,
    ) -> DebugLogEntry:
        data = dict(details or {})
        data["error"] = serialize_error(error)
        return self.add(LogLevel.ERROR, message, data)

    def entries(self) -> list[DebugLogEntry]:
        return list(self._entries)

    def visible_entries(self) -> list[DebugLogEntry]:
        """Entries as the debug panel shows them: nothing while hidden."""
        return self.entries() if self.visible else []

    def clear(self) -> None:
        self._entries.clear()
        self.dropped = 0
