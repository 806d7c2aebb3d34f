"""Eventos del motor: suscriptores registrados por nombre de evento."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

TREATS_CHANGED = "treats_changed"
SCORE_UPDATED = "score_updated"
SUBSCRIPTION_CHANGED = "subscription_changed"
DAY_RESET = "day_reset"
STEPS_REWARDED = "steps_rewarded"

Listener = Callable[[Any], None]


class EventBus:
    """Synchronous publish/subscribe between engine components."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event: str, listener: Listener) -> Callable[[], None]:
        """Register a listener.

        Returns:
            Callable that removes the listener again.
        """
        with self._lock:
            self._listeners[event].append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners[event]:
                    self._listeners[event].remove(listener)

        return _unsubscribe

    def emit(self, event: str, payload: Any = None) -> None:
        with self._lock:
            listeners = list(self._listeners[event])
        for listener in listeners:
            try:
                listener(payload)
            except Exception:
                logger.exception("Listener for %s failed", event)
