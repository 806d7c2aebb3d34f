"""Persistencia SQLite para configuracion, estado diario y transacciones."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any

import pandas as pd

from nekolog.model import (
    DEFAULT_SLIDER_VALUES,
    Active,
    DayFlags,
    Expired,
    NoSubscription,
    PersistedState,
    SubscriptionState,
    Trial,
)

logger = logging.getLogger(__name__)

STARTER_TREATS = 7

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS app_config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS app_state (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    payload TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS credited_transactions (
    transaction_id TEXT PRIMARY KEY,
    product_id TEXT NOT NULL,
    purchase_date TEXT NOT NULL,
    amount INTEGER NOT NULL,
    credited_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS daily_scores (
    date TEXT PRIMARY KEY,
    score INTEGER NOT NULL
);
"""

# Scalar keys written by older builds before the state record existed.
_LEGACY_STATE_KEYS = (
    "churuCount",
    "yesterdayScore",
    "lastCalculationDate",
    "lastRewardDate",
    "subscriptionStartDate",
)


@dataclass(frozen=True)
class AppConfig:
    """Configuracion persistida de la app (perfil + fuentes)."""

    cat_name: str
    address: str
    step_goal: int
    fit_root: str
    timezone: str


class SQLiteStore:
    """Repositorio SQLite para la app.

    Every read-modify-write of the state record runs under one re-entrant
    lock, so two writers can never interleave on the same record.
    """

    def __init__(self, db_path: Path) -> None:
        """Create store and ensure schema exists."""
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self.lock = threading.RLock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(SCHEMA_SQL)
            self._migrate(conn)
            conn.commit()

    def _migrate(self, conn: sqlite3.Connection) -> None:
        """Fold legacy scalar keys into the state record, once."""
        if conn.execute("SELECT 1 FROM app_state WHERE id = 1").fetchone():
            return
        placeholders = ",".join("?" for _ in _LEGACY_STATE_KEYS)
        rows = conn.execute(
            f"SELECT key, value FROM app_config WHERE key IN ({placeholders})",
            _LEGACY_STATE_KEYS,
        ).fetchall()
        legacy = {row["key"]: row["value"] for row in rows}
        if not legacy:
            return

        payload: dict[str, Any] = {"treats": legacy.get("churuCount", STARTER_TREATS)}
        if "yesterdayScore" in legacy:
            payload["yesterday_score"] = legacy["yesterdayScore"]
        if "lastCalculationDate" in legacy:
            payload["last_calculation_date"] = legacy["lastCalculationDate"]
        if "lastRewardDate" in legacy:
            payload["last_reward_date"] = legacy["lastRewardDate"]
        if "subscriptionStartDate" in legacy:
            payload["subscription"] = {
                "kind": "trial",
                "start": legacy["subscriptionStartDate"],
            }
        state = _state_from_payload(payload)
        conn.execute(
            "INSERT INTO app_state(id, payload, updated_at) VALUES (1, ?, ?)",
            (json.dumps(_state_to_payload(state)), _now_iso()),
        )
        conn.execute(
            f"DELETE FROM app_config WHERE key IN ({placeholders})",
            _LEGACY_STATE_KEYS,
        )
        logger.info("Migrated %d legacy keys into the state record", len(legacy))

    def load_config(self) -> AppConfig:
        """Devuelve configuracion guardada o defaults."""
        defaults = {
            "cat_name": "",
            "address": "",
            "step_goal": "10000",
            "fit_root": "",
            "timezone": "",
        }
        try:
            with self._connect() as conn:
                rows = conn.execute("SELECT key, value FROM app_config").fetchall()
        except sqlite3.Error as exc:
            logger.warning("Could not read config, using defaults: %s", exc)
            rows = []
        values = {row["key"]: row["value"] for row in rows}
        merged = {**defaults, **values}
        return AppConfig(
            cat_name=merged["cat_name"],
            address=merged["address"],
            step_goal=_parse_int(merged["step_goal"], 10000),
            fit_root=merged["fit_root"],
            timezone=merged["timezone"],
        )

    def save_config(self, config: AppConfig) -> None:
        """Guarda la configuracion en tabla key/value."""
        payload = {
            "cat_name": config.cat_name,
            "address": config.address,
            "step_goal": str(config.step_goal),
            "fit_root": config.fit_root,
            "timezone": config.timezone,
        }
        with self.lock, self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO app_config(key, value) VALUES(?, ?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value
                """,
                payload.items(),
            )
            conn.commit()

    def load_state(self) -> PersistedState:
        """Load the state record; unreadable data falls back to defaults."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT payload FROM app_state WHERE id = 1"
                ).fetchone()
        except sqlite3.Error as exc:
            logger.warning("Could not read state, using defaults: %s", exc)
            return PersistedState(treats=STARTER_TREATS)
        if row is None:
            return PersistedState(treats=STARTER_TREATS)
        try:
            payload = json.loads(row["payload"])
        except json.JSONDecodeError as exc:
            logger.warning("State record is not valid JSON, using defaults: %s", exc)
            return PersistedState()
        if not isinstance(payload, dict):
            logger.warning("State record has unexpected shape, using defaults")
            return PersistedState()
        return _state_from_payload(payload)

    def save_state(self, state: PersistedState) -> None:
        """Write the whole state record as one unit."""
        with self.lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO app_state(id, payload, updated_at) VALUES (1, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    payload=excluded.payload, updated_at=excluded.updated_at
                """,
                (json.dumps(_state_to_payload(state)), _now_iso()),
            )
            conn.commit()

    def update_state(
        self, mutate: Callable[[PersistedState], PersistedState]
    ) -> PersistedState:
        """Atomic read-modify-write of the state record.

        Args:
            mutate: Receives the current state and returns the new one.

        Returns:
            The state that was written.
        """
        with self.lock:
            new_state = mutate(self.load_state())
            self.save_state(new_state)
            return new_state

    def credit_transaction(
        self,
        transaction_id: str,
        *,
        product_id: str,
        purchase_date: datetime,
        amount: int,
    ) -> bool:
        """Record a credited transaction. Devuelve False si ya estaba."""
        with self.lock, self._connect() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO credited_transactions(
                    transaction_id, product_id, purchase_date, amount, credited_at
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (
                    transaction_id,
                    product_id,
                    purchase_date.isoformat(),
                    amount,
                    _now_iso(),
                ),
            )
            conn.commit()
            return cur.rowcount == 1

    def is_credited(self, transaction_id: str) -> bool:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT 1 FROM credited_transactions WHERE transaction_id = ?",
                    (transaction_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            logger.warning("Could not read credited transactions: %s", exc)
            return False
        return row is not None

    def record_score(self, day: date, score: int) -> None:
        """Guarda (o reemplaza) el puntaje de un día."""
        with self.lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO daily_scores(date, score) VALUES (?, ?)
                ON CONFLICT(date) DO UPDATE SET score=excluded.score
                """,
                (day.isoformat(), score),
            )
            conn.commit()

    def load_score_history(self, days: int | None = None) -> pd.DataFrame:
        """Carga el historial de puntajes como DataFrame (date, score)."""
        query = "SELECT date, score FROM daily_scores ORDER BY date DESC"
        params: tuple[object, ...] = ()
        if days is not None:
            query += " LIMIT ?"
            params = (days,)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()

        out = pd.DataFrame([dict(row) for row in rows])
        if out.empty:
            return pd.DataFrame(columns=["date", "score"])
        out["date"] = pd.to_datetime(out["date"], errors="coerce").dt.date
        out["score"] = out["score"].astype(int)
        return out.sort_values("date").reset_index(drop=True)


def _now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


def _parse_int(raw: object, default: int) -> int:
    try:
        return int(str(raw))
    except (TypeError, ValueError):
        return default


def _parse_date(raw: object) -> date | None:
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        return date.fromisoformat(raw.strip()[:10])
    except ValueError:
        logger.warning("Ignoring malformed date %r", raw)
        return None


def _parse_datetime(raw: object) -> datetime | None:
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        return datetime.fromisoformat(raw.strip())
    except ValueError:
        logger.warning("Ignoring malformed timestamp %r", raw)
        return None


def _subscription_to_payload(sub: SubscriptionState) -> dict[str, str]:
    if isinstance(sub, Trial):
        return {"kind": "trial", "start": sub.start.isoformat()}
    if isinstance(sub, Active):
        return {"kind": "active", "start": sub.start.isoformat()}
    if isinstance(sub, Expired):
        return {
            "kind": "expired",
            "start": sub.start.isoformat(),
            "end": sub.end.isoformat(),
        }
    return {"kind": "none"}


def _subscription_from_payload(raw: object) -> SubscriptionState:
    if not isinstance(raw, dict):
        return NoSubscription()
    kind = raw.get("kind")
    start = _parse_datetime(raw.get("start"))
    if start is None:
        return NoSubscription()
    if kind == "trial":
        return Trial(start=start)
    if kind == "active":
        return Active(start=start)
    if kind == "expired":
        end = _parse_datetime(raw.get("end"))
        return Expired(start=start, end=end or start)
    return NoSubscription()


def _sliders_from_payload(raw: object) -> tuple[float, ...]:
    if not isinstance(raw, list) or len(raw) != len(DEFAULT_SLIDER_VALUES):
        return DEFAULT_SLIDER_VALUES
    try:
        values = tuple(float(v) for v in raw)
    except (TypeError, ValueError):
        return DEFAULT_SLIDER_VALUES
    if not all(0 <= v <= 100 for v in values):
        return DEFAULT_SLIDER_VALUES
    return values


def _flags_from_payload(raw: object) -> DayFlags:
    if not isinstance(raw, dict):
        return DayFlags()
    return DayFlags(
        wallpaper_set=bool(raw.get("wallpaper_set", False)),
        icon_set=bool(raw.get("icon_set", False)),
        ai_reply=str(raw.get("ai_reply", "")),
        input_visible=bool(raw.get("input_visible", True)),
    )


def _state_to_payload(state: PersistedState) -> dict[str, Any]:
    flags = state.day_flags
    return {
        "treats": state.treats,
        "today_score": state.today_score,
        "yesterday_score": state.yesterday_score,
        "last_calculation_date": (
            state.last_calculation_date.isoformat()
            if state.last_calculation_date
            else None
        ),
        "last_reward_date": (
            state.last_reward_date.isoformat() if state.last_reward_date else None
        ),
        "subscription": _subscription_to_payload(state.subscription),
        "slider_values": list(state.slider_values),
        "day_flags": {
            "wallpaper_set": flags.wallpaper_set,
            "icon_set": flags.icon_set,
            "ai_reply": flags.ai_reply,
            "input_visible": flags.input_visible,
        },
        "badge_count": state.badge_count,
    }


def _state_from_payload(payload: dict[str, Any]) -> PersistedState:
    """Missing or malformed fields fall back to neutral values."""
    return PersistedState(
        treats=max(_parse_int(payload.get("treats"), 0), 0),
        today_score=min(max(_parse_int(payload.get("today_score"), 0), 0), 100),
        yesterday_score=min(
            max(_parse_int(payload.get("yesterday_score"), 50), 0), 100
        ),
        last_calculation_date=_parse_date(payload.get("last_calculation_date")),
        last_reward_date=_parse_date(payload.get("last_reward_date")),
        subscription=_subscription_from_payload(payload.get("subscription")),
        slider_values=_sliders_from_payload(payload.get("slider_values")),
        day_flags=_flags_from_payload(payload.get("day_flags")),
        badge_count=max(_parse_int(payload.get("badge_count"), 0), 0),
    )
