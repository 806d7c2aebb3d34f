"""Contexto del motor: reinicio diario, catch-up y conexión de servicios."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import date, datetime, tzinfo

from dateutil import tz

from nekolog.events import DAY_RESET, SCORE_UPDATED, EventBus
from nekolog.ledger import RewardLedger
from nekolog.model import (
    DailySteps,
    DayFlags,
    PersistedState,
    SliderInputs,
    WellnessScore,
)
from nekolog.notifications import (
    MORNING_SCORE_ID,
    SCORE_TITLE,
    LocalNotificationCenter,
    NotificationService,
    format_score_body,
)
from nekolog.reward_gate import StepRewardGate
from nekolog.scheduler import DailyScheduler
from nekolog.score import DEFAULT_SCORE_CONFIG, ScoreConfig, compute_score
from nekolog.sources.base import StepSignal
from nekolog.storage import SQLiteStore
from nekolog.subscription import (
    DEFAULT_PLAN,
    OfflinePurchaseService,
    PurchaseService,
    SubscriptionLedger,
    SubscriptionPlan,
)

logger = logging.getLogger(__name__)

NOTIFY_HOUR = 5
NOTIFY_MINUTE = 0


class WellnessContext:
    """Explicit service container passed to callers instead of globals.

    Score, treats, step reward, subscription and the midnight schedule all
    share the store's lock, so a reset never interleaves with a read of the
    today/yesterday score pair.
    """

    def __init__(
        self,
        store: SQLiteStore,
        *,
        purchase_service: PurchaseService | None = None,
        notifications: NotificationService | None = None,
        step_signal: StepSignal | None = None,
        zone: tzinfo | None = None,
        clock: Callable[[], datetime] | None = None,
        score_config: ScoreConfig = DEFAULT_SCORE_CONFIG,
        plan: SubscriptionPlan = DEFAULT_PLAN,
    ) -> None:
        self.store = store
        self.zone = zone or tz.tzlocal()
        self.clock = clock or (lambda: datetime.now(self.zone))
        self.events = EventBus()
        self.notifications = notifications or LocalNotificationCenter()
        self.step_signal = step_signal
        self.score_config = score_config
        self.ledger = RewardLedger(store, self.events)
        self.gate = StepRewardGate(store, self.ledger, self.events)
        self.subscription = SubscriptionLedger(
            store,
            self.ledger,
            purchase_service or OfflinePurchaseService(),
            plan,
            self.events,
            self.clock,
        )
        self.scheduler = DailyScheduler(
            self._on_midnight, zone=self.zone, clock=self.clock
        )
        self._unsubscribe_steps: Callable[[], None] | None = None

    def start(self) -> None:
        """Arm the midnight schedule and listen to the step signal."""
        self.scheduler.start()
        if self.step_signal is not None and self._unsubscribe_steps is None:
            self._unsubscribe_steps = self.step_signal.subscribe(self.refresh_steps)

    def stop(self) -> None:
        self.scheduler.stop()
        if self._unsubscribe_steps is not None:
            self._unsubscribe_steps()
            self._unsubscribe_steps = None

    def snapshot(self) -> PersistedState:
        with self.store.lock:
            return self.store.load_state()

    def today_score(self) -> WellnessScore:
        state = self.snapshot()
        day = state.last_calculation_date or self._local_date(self.clock())
        return WellnessScore(day=day, value=state.today_score)

    def set_inputs(self, inputs: SliderInputs) -> None:
        """Keep the latest slider values for the next daily computation."""
        self.store.update_state(lambda s: replace(s, slider_values=inputs.values()))

    def on_foreground(self, now: datetime | None = None) -> bool:
        """Catch-up check on every activation.

        Returns:
            True if a missed daily reset was run.
        """
        now = now or self.clock()
        today = self._local_date(now)
        with self.store.lock:
            missed = self.store.load_state().last_calculation_date != today
            if missed:
                logger.info("Daily reset missed for %s, catching up", today)
                self.run_daily_reset(now, badge=0)
            else:
                self.store.update_state(lambda s: replace(s, badge_count=0))
                self._set_badge(0)
        self.subscription.update_status(now)
        if self.step_signal is not None:
            self.refresh_steps(now)
        return missed

    def run_daily_reset(self, now: datetime, *, badge: int = 0) -> int:
        """Clear per-day state, recompute the score and reschedule the notice.

        Runs at most once per local date; a second call for the same date
        (late timer after a catch-up) leaves everything as it is.

        Returns:
            The score of that date.
        """
        today = self._local_date(now)
        config = self.store.load_config()
        ran = False

        def _reset(state: PersistedState) -> PersistedState:
            nonlocal ran
            if state.last_calculation_date == today:
                return state
            ran = True
            inputs = SliderInputs.from_sequence(state.slider_values)
            score = compute_score(
                inputs,
                today.weekday(),
                state.yesterday_score,
                config.address,
                self.score_config,
            )
            return replace(
                state,
                today_score=score,
                yesterday_score=score,
                last_calculation_date=today,
                day_flags=DayFlags(),
                badge_count=badge,
            )

        with self.store.lock:
            state = self.store.update_state(_reset)
            if ran:
                self.store.record_score(today, state.today_score)
        score = state.today_score
        if not ran:
            logger.info("Daily reset for %s already done, skipping", today)
            return score
        logger.info("Daily reset for %s, score=%d", today, score)

        try:
            self.notifications.schedule_daily(
                MORNING_SCORE_ID,
                NOTIFY_HOUR,
                NOTIFY_MINUTE,
                SCORE_TITLE,
                format_score_body(config.cat_name, score),
            )
        except Exception as exc:
            logger.warning("Could not schedule score notification: %s", exc)
        self._set_badge(badge)
        self.events.emit(DAY_RESET, today)
        self.events.emit(SCORE_UPDATED, WellnessScore(day=today, value=score))
        return score

    def refresh_steps(self, now: datetime | None = None) -> bool:
        """Re-read steps and run the daily reward gate."""
        if self.step_signal is None:
            return False
        now = now or self.clock()
        goal = self.store.load_config().step_goal
        return self.gate.refresh(self.step_signal, now.astimezone(self.zone), goal)

    def weekly_steps(self, today: date | None = None) -> list[DailySteps]:
        today = today or self._local_date(self.clock())
        weekly = getattr(self.step_signal, "weekly_steps", None)
        if weekly is None:
            return []
        try:
            return list(weekly(today))
        except Exception as exc:
            logger.warning("Weekly steps unavailable: %s", exc)
            return []

    def feed_cat(self) -> bool:
        """Spend one treat and reopen the chat input.

        Returns:
            False when there are no treats left.
        """
        with self.store.lock:
            if self.ledger.balance == 0:
                return False
            self.ledger.spend(1)
            self.store.update_state(
                lambda s: replace(
                    s, day_flags=replace(s.day_flags, input_visible=True)
                )
            )
        return True

    def _on_midnight(self, fire_time: datetime) -> None:
        self.run_daily_reset(fire_time, badge=1)

    def _set_badge(self, count: int) -> None:
        try:
            self.notifications.set_badge(count)
        except Exception as exc:
            logger.warning("Could not set badge: %s", exc)

    def _local_date(self, moment: datetime) -> date:
        if moment.tzinfo is None:
            return moment.date()
        return moment.astimezone(self.zone).date()
