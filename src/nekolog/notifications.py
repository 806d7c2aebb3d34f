"""Notificaciones locales: aviso diario del puntaje y badge."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)

MORNING_SCORE_ID = "morningScoreNotification"
SCORE_TITLE = "Today's wellness score"
SCORE_BODY = "{0}, today's score is {1}!"


class NotificationService(Protocol):
    def schedule_daily(
        self, identifier: str, hour: int, minute: int, title: str, body: str
    ) -> None: ...

    def set_badge(self, count: int) -> None: ...


@dataclass(frozen=True)
class DailyNotification:
    """A notification repeating every day at hour:minute."""

    identifier: str
    hour: int
    minute: int
    title: str
    body: str


class LocalNotificationCenter:
    """In-process notification center.

    Scheduling again with the same identifier replaces the pending request.
    """

    def __init__(self) -> None:
        self._pending: dict[str, DailyNotification] = {}
        self._lock = threading.Lock()
        self.badge = 0

    def schedule_daily(
        self, identifier: str, hour: int, minute: int, title: str, body: str
    ) -> None:
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise ValueError(f"Invalid time {hour:02d}:{minute:02d}")
        request = DailyNotification(identifier, hour, minute, title, body)
        with self._lock:
            self._pending[identifier] = request
        logger.info("Scheduled %s at %02d:%02d: %s", identifier, hour, minute, body)

    def set_badge(self, count: int) -> None:
        self.badge = max(count, 0)

    def pending(self) -> list[DailyNotification]:
        with self._lock:
            return list(self._pending.values())


def format_score_body(cat_name: str, score: int, template: str = SCORE_BODY) -> str:
    return template.format(cat_name, score)
