"""Suscripción: prueba gratuita, renovaciones y premios por compra."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Protocol

from dateutil import tz
from dateutil.relativedelta import relativedelta

from nekolog.events import SUBSCRIPTION_CHANGED, EventBus
from nekolog.ledger import RewardLedger
from nekolog.model import (
    Active,
    Entitlement,
    Expired,
    NoSubscription,
    PurchaseCancelled,
    PurchaseFailed,
    PurchaseOutcome,
    PurchaseResult,
    SubscriptionState,
    SubscriptionStatus,
    Trial,
)
from nekolog.storage import SQLiteStore

logger = logging.getLogger(__name__)


class PurchaseService(Protocol):
    """Store front used to buy and restore the subscription."""

    def purchase(self, product_id: str) -> PurchaseOutcome: ...

    def current_entitlements(self) -> Iterable[Entitlement]: ...


@dataclass(frozen=True)
class SubscriptionPlan:
    """Product and treat amounts of the monthly plan."""

    product_id: str = "com.example.mentalhealth.monthly"
    trial_days: int = 7
    welcome_grant: int = 99
    trial_grant: int = 7
    renewal_grant: int = 31


DEFAULT_PLAN = SubscriptionPlan()


class OfflinePurchaseService:
    """Used when no store front is wired in: every purchase fails."""

    def purchase(self, product_id: str) -> PurchaseOutcome:
        return PurchaseFailed(reason=f"store unavailable for {product_id}")

    def current_entitlements(self) -> Iterable[Entitlement]:
        return []


def elapsed_days(start: datetime, end: datetime) -> int:
    """Whole days between two instants (negative if end precedes start)."""
    return (_ensure_aware(end) - _ensure_aware(start)).days


def apply_purchase(
    state: SubscriptionState,
    purchase_date: datetime,
    plan: SubscriptionPlan = DEFAULT_PLAN,
) -> tuple[SubscriptionState, int]:
    """Transition for one verified purchase.

    Returns:
        The new state and the treats to grant.
    """
    if isinstance(state, NoSubscription):
        return Trial(start=purchase_date), plan.welcome_grant
    if isinstance(state, Trial):
        if elapsed_days(state.start, purchase_date) < plan.trial_days:
            return state, plan.trial_grant
        return Active(start=state.start), plan.renewal_grant
    if isinstance(state, Expired):
        # resubscribing restarts the period
        return Active(start=purchase_date), plan.renewal_grant
    return Active(start=state.start), plan.renewal_grant


def derive_restored_state(
    state: SubscriptionState,
    purchase_date: datetime,
    now: datetime,
    plan: SubscriptionPlan = DEFAULT_PLAN,
) -> SubscriptionState:
    """Re-derive the state from a restored entitlement; never rewinds."""
    if isinstance(state, Active):
        return state
    start = purchase_date if isinstance(state, NoSubscription) else state.start
    if elapsed_days(start, now) < plan.trial_days:
        return Trial(start=start)
    return Active(start=start)


def revoke(state: SubscriptionState, revocation_date: datetime) -> SubscriptionState:
    if isinstance(state, Trial | Active):
        return Expired(start=state.start, end=revocation_date)
    return state


class SubscriptionLedger:
    """Tracks the subscription lifecycle and the treats it grants.

    Failures of the purchase service end up in ``status_message`` and
    never raise; no treats move on a failed or cancelled purchase.
    """

    def __init__(
        self,
        store: SQLiteStore,
        ledger: RewardLedger,
        service: PurchaseService,
        plan: SubscriptionPlan = DEFAULT_PLAN,
        events: EventBus | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._service = service
        self._plan = plan
        self._events = events
        self._clock = clock or (lambda: datetime.now(tz.tzlocal()))
        self.has_active_subscription = False
        self.status_message = ""

    @property
    def state(self) -> SubscriptionState:
        return self._store.load_state().subscription

    def purchase(self) -> int:
        """Buy the plan and grant treats according to the subscription age.

        Returns:
            Treats granted (0 on failure, cancellation or duplicate delivery).
        """
        try:
            outcome = self._service.purchase(self._plan.product_id)
        except Exception as exc:
            logger.warning("Purchase error: %s", exc)
            self.status_message = f"Error: {exc}"
            return 0

        if isinstance(outcome, PurchaseCancelled):
            self.status_message = "User cancelled"
            return 0
        if not isinstance(outcome, PurchaseResult):
            logger.warning("Purchase failed: %s", getattr(outcome, "reason", ""))
            self.status_message = "Purchase failed"
            return 0
        if not outcome.verified:
            logger.warning("Unverified transaction %s ignored", outcome.transaction_id)
            self.status_message = "Purchase failed: unverified transaction"
            return 0

        granted = self._credit_purchase(outcome)
        self.update_status()
        return granted

    def restore(self) -> int:
        """Replay current entitlements without double-crediting.

        Returns:
            Treats granted for entitlements never credited before.
        """
        now = self._clock()
        try:
            entitlements = list(self._service.current_entitlements())
        except Exception as exc:
            logger.warning("Restore error: %s", exc)
            self.status_message = f"Error: {exc}"
            return 0

        granted = 0
        restored = 0
        for entitlement in entitlements:
            if not entitlement.verified:
                logger.warning(
                    "Unverified entitlement %s skipped", entitlement.transaction_id
                )
                continue
            if entitlement.product_id != self._plan.product_id:
                continue
            restored += 1
            granted += self._restore_entitlement(entitlement, now)

        if restored:
            self.update_status(now)
        self.status_message = (
            "Purchases restored" if restored else "No purchases to restore"
        )
        return granted

    def observe_revocation(self, revocation_date: datetime) -> SubscriptionState:
        """Move a live subscription to Expired."""
        new_state = self._set_subscription(lambda s: revoke(s, revocation_date))
        self.update_status()
        return new_state

    def subscription_end_date(self) -> datetime | None:
        state = self.state
        if isinstance(state, Expired):
            return state.end
        if isinstance(state, Trial | Active):
            return state.start + relativedelta(days=self._plan.trial_days)
        return None

    def update_status(self, now: datetime | None = None) -> SubscriptionStatus:
        """Derive the display status from ``now`` and the end date."""
        now = now or self._clock()
        end = self.subscription_end_date()
        if end is None:
            status = SubscriptionStatus(has_active=False, message="Not subscribed")
        elif _ensure_aware(now) < _ensure_aware(end):
            days_left = elapsed_days(now, end)
            status = SubscriptionStatus(
                has_active=True,
                message=f"Active (expires in {days_left} days)",
                days_left=days_left,
            )
        else:
            status = SubscriptionStatus(
                has_active=False, message="Subscription expired", days_left=0
            )
        self.has_active_subscription = status.has_active
        self.status_message = status.message
        return status

    def _credit_purchase(self, outcome: PurchaseResult) -> int:
        with self._store.lock:
            current = self.state
            new_state, amount = apply_purchase(
                current, outcome.purchase_date, self._plan
            )
            credited = self._store.credit_transaction(
                outcome.transaction_id,
                product_id=outcome.product_id,
                purchase_date=outcome.purchase_date,
                amount=amount,
            )
            if not credited:
                logger.info(
                    "Transaction %s already credited, skipping",
                    outcome.transaction_id,
                )
                amount = 0
                new_state = current
            else:
                self._ledger.grant(amount)
            if outcome.revocation_date is not None:
                new_state = revoke(new_state, outcome.revocation_date)
            self._set_subscription(lambda _s: new_state)
        logger.info(
            "Purchase %s: %s, granted %d",
            outcome.transaction_id,
            type(new_state).__name__,
            amount,
        )
        return amount

    def _restore_entitlement(self, entitlement: Entitlement, now: datetime) -> int:
        amount = (
            self._plan.trial_grant
            if elapsed_days(entitlement.purchase_date, now) < self._plan.trial_days
            else self._plan.renewal_grant
        )
        with self._store.lock:
            new_state = derive_restored_state(
                self.state, entitlement.purchase_date, now, self._plan
            )
            if entitlement.revocation_date is not None:
                new_state = revoke(new_state, entitlement.revocation_date)
            credited = self._store.credit_transaction(
                entitlement.transaction_id,
                product_id=entitlement.product_id,
                purchase_date=entitlement.purchase_date,
                amount=amount,
            )
            if credited:
                self._ledger.grant(amount)
            else:
                amount = 0
            self._set_subscription(lambda _s: new_state)
        return amount

    def _set_subscription(
        self, mutate: Callable[[SubscriptionState], SubscriptionState]
    ) -> SubscriptionState:
        before = self.state
        state = self._store.update_state(
            lambda s: replace(s, subscription=mutate(s.subscription))
        )
        if state.subscription != before and self._events is not None:
            self._events.emit(SUBSCRIPTION_CHANGED, state.subscription)
        return state.subscription


def _ensure_aware(value: datetime) -> datetime:
    """Naive timestamps are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
