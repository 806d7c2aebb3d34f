from __future__ import annotations

import threading
from collections.abc import Callable
from pathlib import Path

import pytest

from nekolog.events import TREATS_CHANGED, EventBus
from nekolog.ledger import RewardLedger
from nekolog.model import PersistedState
from nekolog.storage import SQLiteStore


def _ledger(tmp_path: Path, treats: int) -> tuple[RewardLedger, EventBus]:
    store = SQLiteStore(tmp_path / "app.sqlite3")
    store.save_state(PersistedState(treats=treats))
    events = EventBus()
    return RewardLedger(store, events), events


def test_spend_at_zero_stays_zero(tmp_path: Path) -> None:
    ledger, _ = _ledger(tmp_path, 0)
    assert ledger.spend(1) == 0
    assert ledger.balance == 0


def test_spend_more_than_balance_clamps(tmp_path: Path) -> None:
    ledger, _ = _ledger(tmp_path, 3)
    assert ledger.spend(5) == 0


def test_grant_persists_and_notifies(tmp_path: Path) -> None:
    ledger, events = _ledger(tmp_path, 2)
    seen: list[int] = []
    events.subscribe(TREATS_CHANGED, seen.append)

    assert ledger.grant(5) == 7
    assert ledger.spend(1) == 6
    assert seen == [7, 6]

    reopened = RewardLedger(SQLiteStore(tmp_path / "app.sqlite3"))
    assert reopened.balance == 6


def test_negative_amounts_are_rejected(tmp_path: Path) -> None:
    ledger, _ = _ledger(tmp_path, 2)
    with pytest.raises(ValueError, match="non-negative"):
        ledger.grant(-1)
    with pytest.raises(ValueError, match="non-negative"):
        ledger.spend(-1)
    assert ledger.balance == 2


def test_buy_returns_price(tmp_path: Path) -> None:
    ledger, _ = _ledger(tmp_path, 0)
    assert ledger.buy(3) == 300
    assert ledger.balance == 3
    with pytest.raises(ValueError, match="quantity"):
        ledger.buy(0)
    with pytest.raises(ValueError, match="quantity"):
        ledger.buy(100)
    assert ledger.balance == 3


def _in_threads(*targets: Callable[[], object]) -> None:
    threads = [threading.Thread(target=t) for t in targets]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(10.0)
    assert not any(thread.is_alive() for thread in threads)


def test_concurrent_grants_are_not_lost(tmp_path: Path) -> None:
    ledger, _ = _ledger(tmp_path, 0)

    def _grant_many() -> None:
        for _ in range(25):
            ledger.grant(1)

    _in_threads(*[_grant_many] * 8)
    assert ledger.balance == 200


def test_concurrent_grants_and_spends_balance_out(tmp_path: Path) -> None:
    ledger, events = _ledger(tmp_path, 100)
    seen: list[int] = []
    events.subscribe(TREATS_CHANGED, seen.append)

    def _grant_many() -> None:
        for _ in range(25):
            ledger.grant(1)

    def _spend_many() -> None:
        for _ in range(25):
            ledger.spend(1)

    _in_threads(*[_grant_many, _spend_many] * 4)
    assert ledger.balance == 100
    assert len(seen) == 200
    assert min(seen) >= 0
