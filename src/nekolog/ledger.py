"""Saldo de premios (treats): otorgar, gastar y compra manual."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace

from nekolog.events import TREATS_CHANGED, EventBus
from nekolog.model import PersistedState
from nekolog.storage import SQLiteStore

logger = logging.getLogger(__name__)

PRICE_PER_TREAT = 100
MAX_TREATS_PER_PURCHASE = 99


class RewardLedger:
    """Non-negative treat balance persisted in the state record."""

    def __init__(self, store: SQLiteStore, events: EventBus | None = None) -> None:
        self._store = store
        self._events = events
        self._lock = store.lock

    @property
    def balance(self) -> int:
        return self._store.load_state().treats

    def grant(
        self,
        amount: int,
        stamp: Callable[[PersistedState], PersistedState] | None = None,
    ) -> int:
        """Add treats and persist.

        Args:
            amount: Treats to add.
            stamp: Extra change written in the same update as the balance.

        Returns:
            The new balance.

        Raises:
            ValueError: If amount is negative.
        """
        _check_amount(amount)
        with self._lock:
            state = self._store.update_state(
                lambda s: _stamped(replace(s, treats=s.treats + amount), stamp)
            )
        logger.info("Granted %d treats, balance=%d", amount, state.treats)
        self._notify(state.treats)
        return state.treats

    def spend(self, amount: int) -> int:
        """Remove treats, never going below zero.

        Returns:
            The new balance.
        """
        _check_amount(amount)
        with self._lock:
            state = self._store.update_state(
                lambda s: replace(s, treats=max(s.treats - amount, 0))
            )
        logger.info("Spent %d treats, balance=%d", amount, state.treats)
        self._notify(state.treats)
        return state.treats

    def buy(self, quantity: int) -> int:
        """Manual purchase from the shop screen.

        Args:
            quantity: Treats to buy, 1..99.

        Returns:
            Total price (yen).
        """
        if not 1 <= quantity <= MAX_TREATS_PER_PURCHASE:
            raise ValueError(
                f"quantity must be 1..{MAX_TREATS_PER_PURCHASE}, got {quantity}"
            )
        self.grant(quantity)
        return quantity * PRICE_PER_TREAT

    def _notify(self, balance: int) -> None:
        if self._events is not None:
            self._events.emit(TREATS_CHANGED, balance)


def _stamped(
    state: PersistedState,
    stamp: Callable[[PersistedState], PersistedState] | None,
) -> PersistedState:
    return stamp(state) if stamp is not None else state


def _check_amount(amount: int) -> None:
    if amount < 0:
        raise ValueError(f"amount must be non-negative, got {amount}")
