"""Modelos tipados para puntaje diario, premios y suscripción."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime

SLIDER_FACTORS: tuple[str, ...] = (
    "mood",
    "stress",
    "stamina",
    "sleep",
    "focus",
    "safety",
)

DEFAULT_SLIDER_VALUES: tuple[float, ...] = (80.0, 40.0, 50.0, 70.0, 60.0, 90.0)


@dataclass(frozen=True)
class SliderInputs:
    """The six subjective factors the user sets each day (0-100 each)."""

    mood: float
    stress: float
    stamina: float
    sleep: float
    focus: float
    safety: float

    def __post_init__(self) -> None:
        for name in SLIDER_FACTORS:
            value = getattr(self, name)
            if not isinstance(value, int | float) or not math.isfinite(value):
                raise ValueError(f"{name} must be a finite number, got {value!r}")
            if not 0 <= value <= 100:
                raise ValueError(f"{name} must be within [0, 100], got {value}")

    @classmethod
    def from_sequence(cls, values: Sequence[float]) -> SliderInputs:
        """Build inputs from an ordered sequence (mood .. safety).

        Raises:
            ValueError: If the sequence does not hold exactly six values.
        """
        if len(values) != len(SLIDER_FACTORS):
            raise ValueError(
                f"Expected {len(SLIDER_FACTORS)} slider values, got {len(values)}"
            )
        return cls(*(float(v) for v in values))

    def values(self) -> tuple[float, ...]:
        return tuple(float(getattr(self, name)) for name in SLIDER_FACTORS)


@dataclass(frozen=True)
class WellnessScore:
    """Daily score tagged with the day it was computed for."""

    day: date
    value: int


@dataclass(frozen=True)
class NoSubscription:
    """The user never bought the plan."""


@dataclass(frozen=True)
class Trial:
    """Inside the free trial window."""

    start: datetime


@dataclass(frozen=True)
class Active:
    """Paid subscription past the trial window."""

    start: datetime


@dataclass(frozen=True)
class Expired:
    """Subscription revoked or lapsed."""

    start: datetime
    end: datetime


SubscriptionState = NoSubscription | Trial | Active | Expired


@dataclass(frozen=True)
class PurchaseResult:
    """A purchase the store reported as completed."""

    transaction_id: str
    product_id: str
    purchase_date: datetime
    revocation_date: datetime | None = None
    verified: bool = True


@dataclass(frozen=True)
class PurchaseCancelled:
    """The user backed out of the purchase sheet."""


@dataclass(frozen=True)
class PurchaseFailed:
    """The store could not complete the purchase."""

    reason: str = ""


PurchaseOutcome = PurchaseResult | PurchaseCancelled | PurchaseFailed


@dataclass(frozen=True)
class Entitlement:
    """One current entitlement returned by the store on restore."""

    transaction_id: str
    product_id: str
    purchase_date: datetime
    revocation_date: datetime | None = None
    verified: bool = True


@dataclass(frozen=True)
class SubscriptionStatus:
    """Derived, display-only view of the subscription."""

    has_active: bool
    message: str
    days_left: int | None = None


@dataclass(frozen=True)
class DailySteps:
    """Step total for one calendar day."""

    day: date
    steps: int


@dataclass(frozen=True)
class DayFlags:
    """Per-day presentation flags cleared at midnight."""

    wallpaper_set: bool = False
    icon_set: bool = False
    ai_reply: str = ""
    input_visible: bool = True


@dataclass(frozen=True)
class PersistedState:
    """Everything the engine keeps across restarts, stored as one record."""

    treats: int = 0
    today_score: int = 0
    yesterday_score: int = 50
    last_calculation_date: date | None = None
    last_reward_date: date | None = None
    subscription: SubscriptionState = field(default_factory=NoSubscription)
    slider_values: tuple[float, ...] = DEFAULT_SLIDER_VALUES
    day_flags: DayFlags = field(default_factory=DayFlags)
    badge_count: int = 0
