"""User-visible notices (the toasts of the admin page).

Notices are collected per request or per editor session and returned to
the client alongside the response body.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass(frozen=True)
class Notice:
    level: str  # info | success | warning | error
    message: str
    description: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> dict:
        return {
            "level": self.level,
            "message": self.message,
            "description": self.description,
            "created_at": self.created_at.isoformat(),
        }


class NoticeBoard:
    def __init__(self):
        self._notices: list[Notice] = []

    def post(self, level: str, message: str, description: str | None = None) -> Notice:
        notice = Notice(level=level, message=message, description=description)
        self._notices.append(notice)
        return notice

    def info(self, message: str, description: str | None = None) -> Notice:
        return self.post("info", message, description)

    def success(self, message: str, description: str | None = None) -> Notice:
        return self.post("success", message, description)

    def warning(self, message: str, description: str | None = None) -> Notice:
        return self.post("warning", message, description)

    def error(self, message: str, description: str | None = None) -> Notice:
        return self.post("error", message, description)

    def all(self) -> list[Notice]:
        return list(self._notices)

    def drain(self) -> list[Notice]:
        notices, self._notices = self._notices, []
        return notices
