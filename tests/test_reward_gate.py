from __future__ import annotations

import sqlite3
from collections.abc import Callable
from datetime import date, datetime, timedelta
from pathlib import Path

import pytest

from nekolog.events import STEPS_REWARDED, EventBus
from nekolog.ledger import RewardLedger
from nekolog.model import PersistedState
from nekolog.reward_gate import StepRewardGate, remaining_steps
from nekolog.sources.base import StepSignalError
from nekolog.storage import SQLiteStore


class _Signal:
    def __init__(self, steps: int = 0, fail: bool = False) -> None:
        self.steps = steps
        self.fail = fail
        self.queries: list[tuple[datetime, datetime]] = []

    def cumulative_steps(self, start: datetime, end: datetime) -> int:
        self.queries.append((start, end))
        if self.fail:
            raise StepSignalError("offline")
        return self.steps

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        return lambda: None


def _gate(tmp_path: Path) -> tuple[StepRewardGate, RewardLedger, EventBus]:
    store = SQLiteStore(tmp_path / "app.sqlite3")
    store.save_state(PersistedState(treats=0))
    events = EventBus()
    ledger = RewardLedger(store, events)
    return StepRewardGate(store, ledger, events), ledger, events


def test_goal_grants_once_per_day(tmp_path: Path) -> None:
    gate, ledger, events = _gate(tmp_path)
    rewarded: list[date] = []
    events.subscribe(STEPS_REWARDED, rewarded.append)
    today = date(2025, 6, 11)

    results = [gate.evaluate(12000, 10000, today) for _ in range(5)]

    assert results == [True, False, False, False, False]
    assert ledger.balance == 1
    assert gate.last_reward_date == today
    assert rewarded == [today]


def test_next_day_grants_again(tmp_path: Path) -> None:
    gate, ledger, _ = _gate(tmp_path)
    today = date(2025, 6, 11)
    assert gate.evaluate(10000, 10000, today)
    assert gate.evaluate(10000, 10000, today + timedelta(days=1))
    assert ledger.balance == 2


def test_below_goal_does_not_grant(tmp_path: Path) -> None:
    gate, ledger, _ = _gate(tmp_path)
    assert not gate.evaluate(9999, 10000, date(2025, 6, 11))
    assert ledger.balance == 0
    assert gate.last_reward_date is None


def test_refresh_queries_since_start_of_day(tmp_path: Path) -> None:
    gate, ledger, _ = _gate(tmp_path)
    signal = _Signal(steps=15000)
    now = datetime(2025, 6, 11, 18, 30)

    assert gate.refresh(signal, now, 10000)
    assert signal.queries == [(datetime(2025, 6, 11), now)]
    assert ledger.balance == 1


def test_failed_query_leaves_state_untouched(tmp_path: Path) -> None:
    gate, ledger, _ = _gate(tmp_path)
    signal = _Signal(steps=15000, fail=True)
    now = datetime(2025, 6, 11, 18, 30)

    assert not gate.refresh(signal, now, 10000)
    assert ledger.balance == 0
    assert gate.last_reward_date is None

    signal.fail = False
    assert gate.refresh(signal, now, 10000)
    assert ledger.balance == 1


def test_remaining_steps() -> None:
    assert remaining_steps(2500) == 7500
    assert remaining_steps(12000) == 0
    assert remaining_steps(100, goal=500) == 400


def test_reward_and_date_are_one_write(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    store = SQLiteStore(tmp_path / "app.sqlite3")
    store.save_state(PersistedState(treats=0))
    gate = StepRewardGate(store, RewardLedger(store))
    today = date(2025, 6, 11)
    writes: list[PersistedState] = []
    real_save = store.save_state

    def _locked_once(state: PersistedState) -> None:
        if not writes:
            writes.append(state)
            raise sqlite3.OperationalError("database is locked")
        writes.append(state)
        real_save(state)

    monkeypatch.setattr(store, "save_state", _locked_once)

    assert not gate.evaluate(12000, 10000, today)
    assert store.load_state().treats == 0
    assert store.load_state().last_reward_date is None

    assert gate.evaluate(12000, 10000, today)
    assert len(writes) == 2
    assert (writes[1].treats, writes[1].last_reward_date) == (1, today)
    assert not gate.evaluate(12000, 10000, today)
    assert store.load_state().treats == 1
