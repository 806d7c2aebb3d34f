"""Tests for the daily reset, catch-up and service wiring."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest

from nekolog.engine import NOTIFY_HOUR, WellnessContext
from nekolog.events import DAY_RESET, SCORE_UPDATED
from nekolog.model import DayFlags, PersistedState, SliderInputs, WellnessScore
from nekolog.notifications import MORNING_SCORE_ID, LocalNotificationCenter
from nekolog.scheduler import ScheduleHandle
from nekolog.storage import AppConfig, SQLiteStore

UTC = timezone.utc
# Wednesday
NOW = datetime(2025, 6, 11, 8, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def _no_active_schedule(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(ScheduleHandle, "_active", None)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class _Signal:
    def __init__(self, steps: int) -> None:
        self.steps = steps
        self.listeners: list[Callable[[], None]] = []

    def cumulative_steps(self, start: datetime, end: datetime) -> int:
        return self.steps

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        self.listeners.append(listener)
        return lambda: self.listeners.remove(listener)


class _BrokenNotifications:
    def schedule_daily(
        self, identifier: str, hour: int, minute: int, title: str, body: str
    ) -> None:
        raise RuntimeError("notifications disabled")

    def set_badge(self, count: int) -> None:
        raise RuntimeError("notifications disabled")


def _context(
    tmp_path: Path, **kwargs: object
) -> tuple[WellnessContext, SQLiteStore, _Clock]:
    store = SQLiteStore(tmp_path / "app.sqlite3")
    store.save_config(
        AppConfig(
            cat_name="Tama",
            address="Shinjuku, Tokyo",
            step_goal=10000,
            fit_root="",
            timezone="UTC",
        )
    )
    clock = _Clock(NOW)
    ctx = WellnessContext(
        store, zone=UTC, clock=clock, **kwargs  # type: ignore[arg-type]
    )
    return ctx, store, clock


def test_first_foreground_runs_missed_reset(tmp_path: Path) -> None:
    notifications = LocalNotificationCenter()
    ctx, store, _ = _context(tmp_path, notifications=notifications)

    assert ctx.on_foreground()
    state = ctx.snapshot()
    assert state.today_score == 57
    assert state.yesterday_score == 57
    assert state.last_calculation_date == date(2025, 6, 11)
    assert ctx.today_score() == WellnessScore(day=date(2025, 6, 11), value=57)
    assert list(store.load_score_history()["score"]) == [57]

    (pending,) = notifications.pending()
    assert pending.identifier == MORNING_SCORE_ID
    assert (pending.hour, pending.minute) == (NOTIFY_HOUR, 0)
    assert pending.body == "Tama, today's score is 57!"
    assert notifications.badge == 0


def test_foreground_same_day_does_not_recompute(tmp_path: Path) -> None:
    ctx, store, clock = _context(tmp_path)
    ctx.on_foreground()
    clock.now = NOW + timedelta(hours=6)

    assert not ctx.on_foreground()
    assert ctx.snapshot().today_score == 57
    assert len(store.load_score_history()) == 1


def test_next_day_uses_previous_score(tmp_path: Path) -> None:
    notifications = LocalNotificationCenter()
    ctx, store, clock = _context(tmp_path, notifications=notifications)
    ctx.on_foreground()

    clock.now = NOW + timedelta(days=1)
    assert ctx.on_foreground()
    # 65 - 5 (weekday) - 3 (Tokyo) + (57 - 50) * 0.4 = 59.8
    assert ctx.snapshot().today_score == 60
    assert list(store.load_score_history()["score"]) == [57, 60]
    assert len(notifications.pending()) == 1


def test_timer_reset_sets_badge_and_clears_day_flags(tmp_path: Path) -> None:
    notifications = LocalNotificationCenter()
    ctx, store, _ = _context(tmp_path, notifications=notifications)
    store.update_state(
        lambda s: replace(
            s, day_flags=DayFlags(wallpaper_set=True, icon_set=True, ai_reply="nya")
        )
    )

    midnight = datetime(2025, 6, 12, tzinfo=UTC)
    ctx.run_daily_reset(midnight, badge=1)
    state = ctx.snapshot()
    assert state.day_flags == DayFlags()
    assert state.badge_count == 1
    assert state.last_calculation_date == date(2025, 6, 12)
    assert notifications.badge == 1

    assert not ctx.on_foreground(midnight + timedelta(hours=7))
    assert notifications.badge == 0
    assert ctx.snapshot().badge_count == 0


def test_late_timer_after_catch_up_is_ignored(tmp_path: Path) -> None:
    notifications = LocalNotificationCenter()
    ctx, store, _ = _context(tmp_path, notifications=notifications)
    seen: list[object] = []
    ctx.events.subscribe(DAY_RESET, seen.append)
    assert ctx.on_foreground()
    ctx.set_inputs(SliderInputs(10, 10, 10, 10, 10, 10))
    store.update_state(lambda s: replace(s, day_flags=DayFlags(ai_reply="nya")))
    # timer for the same date fires after the catch-up already ran
    assert ctx.run_daily_reset(datetime(2025, 6, 11, tzinfo=UTC), badge=1) == 57

    state = ctx.snapshot()
    assert state.today_score == 57
    assert state.yesterday_score == 57
    assert state.badge_count == 0
    assert state.day_flags.ai_reply == "nya"
    assert list(store.load_score_history()["score"]) == [57]
    assert notifications.badge == 0
    assert notifications.pending()[0].body == "Tama, today's score is 57!"
    assert seen == [date(2025, 6, 11)]


def test_reset_emits_events(tmp_path: Path) -> None:
    ctx, _, _ = _context(tmp_path)
    seen: list[object] = []
    ctx.events.subscribe(DAY_RESET, seen.append)
    ctx.events.subscribe(SCORE_UPDATED, seen.append)

    ctx.on_foreground()
    assert seen == [
        date(2025, 6, 11),
        WellnessScore(day=date(2025, 6, 11), value=57),
    ]


def test_notification_failure_does_not_break_reset(tmp_path: Path) -> None:
    ctx, _, _ = _context(tmp_path, notifications=_BrokenNotifications())
    assert ctx.on_foreground()
    assert ctx.snapshot().last_calculation_date == date(2025, 6, 11)


def test_set_inputs_feed_next_reset(tmp_path: Path) -> None:
    ctx, _, _ = _context(tmp_path)
    ctx.set_inputs(SliderInputs(100, 100, 100, 100, 100, 100))
    ctx.on_foreground()
    # 100 - 5 - 3 + 0
    assert ctx.snapshot().today_score == 92


def test_feed_cat(tmp_path: Path) -> None:
    ctx, store, _ = _context(tmp_path)
    store.save_state(
        PersistedState(treats=1, day_flags=DayFlags(input_visible=False))
    )

    assert ctx.feed_cat()
    state = ctx.snapshot()
    assert state.treats == 0
    assert state.day_flags.input_visible
    assert not ctx.feed_cat()
    assert ctx.snapshot().treats == 0


def test_step_signal_rewards_once(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    signal = _Signal(steps=12000)
    ctx, store, _ = _context(tmp_path, step_signal=signal)
    # the fixed clock is in the past; keep midnight jobs off the background
    monkeypatch.setattr(ctx.scheduler, "start", lambda: None)
    store.save_state(PersistedState(treats=0, last_calculation_date=NOW.date()))

    ctx.start()
    try:
        assert len(signal.listeners) == 1
        signal.listeners[0]()
        signal.listeners[0]()
    finally:
        ctx.stop()

    assert signal.listeners == []
    assert ctx.snapshot().treats == 1
    assert ctx.snapshot().last_reward_date == NOW.date()
    assert ctx.weekly_steps() == []
