"""Pasos diarios desde Google Fit Takeout, expuestos como señal de pasos."""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import cast

import pandas as pd

from nekolog.model import DailySteps
from nekolog.sources.base import (
    DataSource,
    SourcePaths,
    StepSignalError,
    StepsListener,
)

logger = logging.getLogger(__name__)

METRICS_DIR_NAME = "Métricas de actividad diaria"


@dataclass(frozen=True)
class GoogleFitPaths(SourcePaths):
    """Paths for Google Fit Takeout/Fit directory."""

    # root: .../Takeout/Fit


class GoogleFitSource(DataSource):
    """Step signal backed by per-day Takeout CSV files.

    The export has daily resolution, so a query covers every whole day
    touched by the ``[start, end]`` interval.
    """

    def __init__(self, paths: GoogleFitPaths) -> None:
        super().__init__(paths)
        self._listeners: list[StepsListener] = []
        self._lock = threading.Lock()
        self._seen: tuple[tuple[str, float], ...] = ()

    def validate(self) -> None:
        """Validate the path of the files."""
        if not self._paths.root.exists():
            raise FileNotFoundError(str(self._paths.root))

    def daily_metrics_files(self) -> list[Path]:
        """Return per-day CSV files for daily activity metrics."""
        metrics_dir = self._paths.root / METRICS_DIR_NAME
        if not metrics_dir.exists():
            raise FileNotFoundError(str(metrics_dir))

        return sorted(
            p
            for p in metrics_dir.glob("*.csv")
            if p.name.lower() != f"{METRICS_DIR_NAME}.csv".lower()
        )

    def load_daily(self, csv_paths: list[Path]) -> pd.DataFrame:
        """Load daily step totals from per-day CSVs.

        Returns DataFrame columns: date, steps
        """
        rows: list[dict[str, object]] = []
        for csv_path in csv_paths:
            file_date = _date_from_filename(csv_path)
            if not file_date:
                continue
            df = pd.read_csv(csv_path)
            row = _summarize_daily_file(df, file_date)
            if row:
                rows.append(row)

        if not rows:
            return pd.DataFrame(columns=["date", "steps"])
        return pd.DataFrame(rows).sort_values("date").reset_index(drop=True)

    def cumulative_steps(self, start: datetime, end: datetime) -> int:
        """Sum of steps for the days from ``start`` to ``end`` (inclusive).

        Raises:
            StepSignalError: If the export cannot be read.
        """
        if end < start:
            return 0
        daily = self._read_daily()
        if daily.empty:
            return 0
        mask = (daily["date"] >= start.date()) & (daily["date"] <= end.date())
        total = pd.to_numeric(daily.loc[mask, "steps"], errors="coerce").sum()
        return int(total)

    def weekly_steps(self, today: date) -> list[DailySteps]:
        """Last seven days ending today, oldest first, missing days as 0."""
        days = [today - timedelta(days=offset) for offset in range(6, -1, -1)]
        daily = self._read_daily()
        by_day: dict[date, int] = {}
        for _, row in daily.iterrows():
            steps = row["steps"]
            by_day[row["date"]] = 0 if steps is None or pd.isna(steps) else int(steps)
        return [DailySteps(day=d, steps=by_day.get(d, 0)) for d in days]

    def subscribe(self, listener: StepsListener) -> Callable[[], None]:
        """Register a callback invoked when new samples show up."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def poll(self) -> bool:
        """Re-scan the export and notify listeners if files changed.

        Returns:
            True when new samples were detected.
        """
        try:
            files = self.daily_metrics_files()
            signature = tuple((p.name, p.stat().st_mtime) for p in files)
        except OSError as exc:
            logger.warning("Could not scan Google Fit export: %s", exc)
            return False
        with self._lock:
            if signature == self._seen:
                return False
            self._seen = signature
            listeners = list(self._listeners)
        for listener in listeners:
            listener()
        return True

    def _read_daily(self) -> pd.DataFrame:
        try:
            return self.load_daily(self.daily_metrics_files())
        except (OSError, ValueError, pd.errors.ParserError) as exc:
            raise StepSignalError(f"Google Fit export unreadable: {exc}") from exc


def _find_col(columns: list[str], patterns: list[str]) -> str | None:
    for pat in patterns:
        rx = re.compile(pat, re.IGNORECASE)
        for c in columns:
            if rx.search(c):
                return c
    return None


def _summarize_daily_file(
    df: pd.DataFrame, file_date: date
) -> dict[str, object] | None:
    if df.empty:
        return None

    df = df.rename(columns={c: c.strip() for c in df.columns})
    steps_col = _find_col(list(df.columns), [r"\bpasos\b", r"\bstep"])
    if not steps_col:
        return {"date": file_date, "steps": None}

    result = pd.to_numeric(df[steps_col], errors="coerce").sum(min_count=1)
    if pd.isna(result):
        return {"date": file_date, "steps": None}
    if hasattr(result, "item"):
        result = result.item()
    return {"date": file_date, "steps": int(cast(float, result))}


def _date_from_filename(path: Path) -> date | None:
    match = re.match(r"(\d{4}-\d{2}-\d{2})", path.stem)
    if not match:
        return None
    parsed = pd.to_datetime(match.group(1), errors="coerce")
    if pd.isna(parsed):
        return None
    return cast(date, parsed.date())
