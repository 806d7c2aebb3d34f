"""CLI del motor de bienestar: puntaje diario, premios y suscripción."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from collections.abc import Sequence
from dataclasses import replace
from datetime import tzinfo
from pathlib import Path

from dateutil import tz

from nekolog.engine import WellnessContext
from nekolog.model import SliderInputs
from nekolog.reward_gate import remaining_steps
from nekolog.score import encouragement_band
from nekolog.sources.google_fit import GoogleFitPaths, GoogleFitSource
from nekolog.storage import AppConfig, SQLiteStore

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
POLL_SECONDS = 60.0


def configure_logging(verbose: bool = False) -> None:
    """Configure root logging if it has not been configured yet."""
    if logging.getLogger().handlers:
        return
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT
    )
    # hide "Added job" chatter
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed argparse namespace.
    """
    parser = argparse.ArgumentParser(
        description="Puntaje de bienestar diario, premios y suscripción."
    )
    parser.add_argument(
        "--db",
        default=str(Path.home() / ".nekolog" / "nekolog.sqlite3"),
        help="Archivo SQLite (default: ~/.nekolog/nekolog.sqlite3).",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Saldo, puntaje y estado de la suscripción.")
    sub.add_parser("today", help="Catch-up diario y puntaje de hoy.")

    inputs = sub.add_parser("inputs", help="Guardar los seis sliders.")
    inputs.add_argument("values", nargs=6, type=float, metavar="VALUE")

    profile = sub.add_parser("profile", help="Actualizar el perfil.")
    profile.add_argument("--cat-name")
    profile.add_argument("--address")
    profile.add_argument("--step-goal", type=int)
    profile.add_argument("--fit-root")
    profile.add_argument("--timezone")

    sub.add_parser("steps", help="Leer pasos de Google Fit y evaluar el premio.")
    sub.add_parser("feed", help="Dar un treat al gato.")

    buy = sub.add_parser("buy", help="Comprar treats.")
    buy.add_argument("quantity", type=int)

    history = sub.add_parser("history", help="Historial de puntajes.")
    history.add_argument("--days", type=int, default=7)

    sub.add_parser("run", help="Quedar corriendo con el reinicio de medianoche.")
    return parser.parse_args(argv)


def build_context(store: SQLiteStore, config: AppConfig) -> WellnessContext:
    """Wire a context from the persisted profile."""
    fit = (
        GoogleFitSource(GoogleFitPaths(root=Path(config.fit_root).expanduser()))
        if config.fit_root
        else None
    )
    return WellnessContext(store, step_signal=fit, zone=_zone(config.timezone))


def main(argv: Sequence[str] | None = None) -> int:
    """Run the CLI.

    Returns:
        Exit code (0 on success).
    """
    ns = parse_args(argv)
    configure_logging(ns.verbose)
    store = SQLiteStore(Path(ns.db).expanduser())
    try:
        return _dispatch(ns, store)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


def _dispatch(ns: argparse.Namespace, store: SQLiteStore) -> int:
    config = store.load_config()
    if ns.command == "profile":
        return _cmd_profile(store, config, ns)

    ctx = build_context(store, config)
    if ns.command == "status":
        return _cmd_status(ctx)
    if ns.command == "today":
        ctx.on_foreground()
        score = ctx.today_score()
        print(f"OK: {score.day.isoformat()} score {score.value}")
        print(f"OK: mood {encouragement_band(score.value)}")
        return 0
    if ns.command == "inputs":
        ctx.set_inputs(SliderInputs.from_sequence(ns.values))
        print("OK: inputs saved")
        return 0
    if ns.command == "steps":
        return _cmd_steps(ctx, config)
    if ns.command == "feed":
        if not ctx.feed_cat():
            print("No treats left.")
            return 1
        print(f"OK: treats left {ctx.ledger.balance}")
        return 0
    if ns.command == "buy":
        price = ctx.ledger.buy(ns.quantity)
        print(f"OK: bought {ns.quantity} treats for {price} yen")
        return 0
    if ns.command == "history":
        df = store.load_score_history(ns.days)
        print(df.to_string(index=False) if not df.empty else "No scores yet.")
        return 0
    if ns.command == "run":
        return _cmd_run(ctx)
    return 2


def _cmd_profile(
    store: SQLiteStore, config: AppConfig, ns: argparse.Namespace
) -> int:
    updates = {
        key: value
        for key, value in (
            ("cat_name", ns.cat_name),
            ("address", ns.address),
            ("step_goal", ns.step_goal),
            ("fit_root", ns.fit_root),
            ("timezone", ns.timezone),
        )
        if value is not None
    }
    store.save_config(replace(config, **updates))
    print(f"OK: profile updated ({', '.join(sorted(updates)) or 'no changes'})")
    return 0


def _cmd_status(ctx: WellnessContext) -> int:
    state = ctx.snapshot()
    status = ctx.subscription.update_status()
    print(f"Treats: {state.treats}")
    print(f"Today: {state.today_score} (yesterday {state.yesterday_score})")
    last_calc = state.last_calculation_date
    print(f"Last calculation: {last_calc.isoformat() if last_calc else '-'}")
    last_reward = state.last_reward_date
    print(f"Last step reward: {last_reward.isoformat() if last_reward else '-'}")
    print(f"Subscription: {status.message}")
    return 0


def _cmd_steps(ctx: WellnessContext, config: AppConfig) -> int:
    if ctx.step_signal is None:
        print("No Google Fit folder configured (profile --fit-root).")
        return 1
    granted = ctx.refresh_steps()
    weekly = ctx.weekly_steps()
    for day in weekly:
        print(f"{day.day.isoformat()}  {day.steps:>7,}")
    today_steps = weekly[-1].steps if weekly else 0
    print(f"OK: {remaining_steps(today_steps, config.step_goal)} steps to goal")
    if granted:
        print("OK: goal reached, +1 treat")
    return 0


def _cmd_run(ctx: WellnessContext) -> int:
    ctx.on_foreground()
    ctx.start()
    print("OK: running, Ctrl-C to stop")
    poll = getattr(ctx.step_signal, "poll", None)
    try:
        while True:
            if poll is not None:
                poll()
            _pause(POLL_SECONDS)
    except KeyboardInterrupt:
        pass
    finally:
        ctx.stop()
    return 0


def _pause(seconds: float) -> None:
    time.sleep(seconds)


def _zone(name: str) -> tzinfo:
    if name:
        zone = tz.gettz(name)
        if zone is not None:
            return zone
        logger.warning("Unknown timezone %r, using local", name)
    return tz.tzlocal()
