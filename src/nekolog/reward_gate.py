"""Premio diario por alcanzar la meta de pasos (una vez por día)."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import replace
from datetime import date, datetime

from nekolog.events import STEPS_REWARDED, EventBus
from nekolog.ledger import RewardLedger
from nekolog.sources.base import StepSignal
from nekolog.storage import SQLiteStore

logger = logging.getLogger(__name__)

DEFAULT_STEP_GOAL = 10000


class StepRewardGate:
    """Grants one treat the first time the step goal is met each day.

    The step signal may fire many times a day; the persisted
    ``last_reward_date`` is the only guard.
    """

    def __init__(
        self,
        store: SQLiteStore,
        ledger: RewardLedger,
        events: EventBus | None = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._events = events

    @property
    def last_reward_date(self) -> date | None:
        return self._store.load_state().last_reward_date

    def evaluate(self, current_steps: int, goal: int, today: date) -> bool:
        """Grant the daily treat if the goal is met and not yet rewarded.

        Returns:
            True if a treat was granted by this call.
        """
        try:
            with self._store.lock:
                if self._store.load_state().last_reward_date == today:
                    return False
                if current_steps < goal:
                    return False
                self._ledger.grant(
                    1, stamp=lambda s: replace(s, last_reward_date=today)
                )
        except sqlite3.Error as exc:
            logger.warning("Could not record the step reward, will retry: %s", exc)
            return False
        logger.info(
            "Step goal %d reached (%d steps), treat granted", goal, current_steps
        )
        if self._events is not None:
            self._events.emit(STEPS_REWARDED, today)
        return True

    def refresh(
        self,
        signal: StepSignal,
        now: datetime,
        goal: int = DEFAULT_STEP_GOAL,
    ) -> bool:
        """Query today's steps from the signal and evaluate the gate.

        A failed query leaves the gate untouched; the next delivery retries.
        """
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        try:
            steps = signal.cumulative_steps(start_of_day, now)
        except Exception as exc:
            logger.warning("Step query failed, will retry on next update: %s", exc)
            return False
        return self.evaluate(steps, goal, now.date())


def remaining_steps(steps: int, goal: int = DEFAULT_STEP_GOAL) -> int:
    """Pasos que faltan para la meta (nunca negativo)."""
    return max(goal - steps, 0)
