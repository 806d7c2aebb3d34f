"""Tests for CLI entrypoints."""

from __future__ import annotations

from datetime import date
from pathlib import Path

import pandas as pd
import pytest

from nekolog import cli
from nekolog.scheduler import ScheduleHandle
from nekolog.sources.google_fit import METRICS_DIR_NAME


@pytest.fixture(autouse=True)
def _no_active_schedule(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(ScheduleHandle, "_active", None)


def _db(tmp_path: Path) -> list[str]:
    return ["--db", str(tmp_path / "nekolog.sqlite3")]


def test_parse_args_custom_values() -> None:
    ns = cli.parse_args(["--db", "/tmp/x.sqlite3", "history", "--days", "10"])
    assert ns.db == "/tmp/x.sqlite3"
    assert ns.command == "history"
    assert ns.days == 10


def test_parse_args_requires_six_inputs() -> None:
    with pytest.raises(SystemExit):
        cli.parse_args(["inputs", "1", "2", "3"])


def test_profile_buy_and_feed(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    assert cli.main(_db(tmp_path) + ["profile", "--cat-name", "Tama"]) == 0
    assert cli.main(_db(tmp_path) + ["buy", "3"]) == 0
    assert cli.main(_db(tmp_path) + ["feed"]) == 0
    out = capsys.readouterr().out
    assert "OK: profile updated (cat_name)" in out
    assert "OK: bought 3 treats for 300 yen" in out
    # 7 starter treats + 3 bought - 1 fed
    assert "OK: treats left 9" in out


def test_today_and_history(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    assert cli.main(_db(tmp_path) + ["inputs", "50", "50", "50", "50", "50", "50"]) == 0
    assert cli.main(_db(tmp_path) + ["today"]) == 0
    assert cli.main(_db(tmp_path) + ["history"]) == 0
    assert cli.main(_db(tmp_path) + ["status"]) == 0
    out = capsys.readouterr().out
    assert f"OK: {date.today().isoformat()} score" in out
    assert "OK: mood" in out
    assert "Subscription: Not subscribed" in out


def test_invalid_inputs_report_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    argv = _db(tmp_path) + ["inputs", "50", "50", "50", "50", "50", "150"]
    assert cli.main(argv) == 2
    err = capsys.readouterr().err
    assert err.startswith("error: ")
    assert "within" in err


@pytest.mark.parametrize("quantity", ["0", "100"])
def test_buy_out_of_range_reports_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str], quantity: str
) -> None:
    assert cli.main(_db(tmp_path) + ["buy", quantity]) == 2
    assert capsys.readouterr().err.startswith("error: ")
    assert cli.main(_db(tmp_path) + ["feed"]) == 0
    assert "OK: treats left 6" in capsys.readouterr().out


def test_steps_without_fit_root(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    assert cli.main(_db(tmp_path) + ["steps"]) == 1
    assert "No Google Fit folder configured" in capsys.readouterr().out


def test_steps_rewards_goal(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    metrics = tmp_path / "Fit" / METRICS_DIR_NAME
    metrics.mkdir(parents=True)
    pd.DataFrame({"Pasos": [6000, 6500]}).to_csv(
        metrics / f"{date.today().isoformat()}.csv", index=False
    )
    cli.main(_db(tmp_path) + ["profile", "--fit-root", str(tmp_path / "Fit")])

    assert cli.main(_db(tmp_path) + ["steps"]) == 0
    out = capsys.readouterr().out
    assert "12,500" in out
    assert "OK: 0 steps to goal" in out
    assert "OK: goal reached, +1 treat" in out


def test_run_stops_on_interrupt(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    def _interrupt(_: float) -> None:
        raise KeyboardInterrupt

    monkeypatch.setattr(cli, "_pause", _interrupt)
    assert cli.main(_db(tmp_path) + ["run"]) == 0
    assert ScheduleHandle.active() is None
