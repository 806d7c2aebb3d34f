"""Cálculo del puntaje de bienestar diario (0-100)."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from statistics import fmean

from nekolog.model import SliderInputs


def _default_location_factors() -> dict[str, float]:
    return {"Tokyo": -3.0, "Osaka": 2.0}


@dataclass(frozen=True)
class ScoreConfig:
    """Constants of the daily score formula."""

    weekday_factor: float = -5.0
    weekend_factor: float = 5.0
    location_factors: dict[str, float] = field(
        default_factory=_default_location_factors
    )
    default_location_factor: float = 0.0
    yesterday_pivot: int = 50
    yesterday_weight: float = 0.4


DEFAULT_SCORE_CONFIG = ScoreConfig()


def weekday_factor(weekday: int, config: ScoreConfig = DEFAULT_SCORE_CONFIG) -> float:
    """Factor for the day of week (0=Monday .. 6=Sunday).

    Raises:
        ValueError: If weekday is outside 0..6.
    """
    if not 0 <= weekday <= 6:
        raise ValueError(f"weekday must be 0..6, got {weekday}")
    return config.weekday_factor if weekday < 5 else config.weekend_factor


def location_factor(
    location_key: str, config: ScoreConfig = DEFAULT_SCORE_CONFIG
) -> float:
    """Primer match por substring en la tabla; si no hay, el default."""
    for needle, factor in config.location_factors.items():
        if needle in location_key:
            return factor
    return config.default_location_factor


def compute_score(
    inputs: SliderInputs,
    weekday: int,
    yesterday_score: int,
    location_key: str,
    config: ScoreConfig = DEFAULT_SCORE_CONFIG,
) -> int:
    """Compute today's wellness score.

    Args:
        inputs: The six slider values.
        weekday: Day of week, 0=Monday .. 6=Sunday.
        yesterday_score: Score carried over from the previous day.
        location_key: Profile address, matched by substring.
        config: Formula constants.

    Returns:
        Integer score clamped to [0, 100].
    """
    total = (
        fmean(inputs.values())
        + weekday_factor(weekday, config)
        + location_factor(location_key, config)
        + (yesterday_score - config.yesterday_pivot) * config.yesterday_weight
    )
    return min(max(_round_half_up(total), 0), 100)


def _round_half_up(value: float) -> int:
    # round() is banker's rounding; .5 always goes up here.
    return int(math.floor(value + 0.5))


def encouragement_band(score: int) -> str:
    """Clave del mensaje de ánimo según el puntaje."""
    if score < 40:
        return "bad"
    if score < 60:
        return "low"
    if score < 80:
        return "good"
    return "great"
