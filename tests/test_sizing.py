"""
Tests for the position sizing kernel: points, pip values, lots, P&L,
classification, ISO weeks and session windows.
"""

from __future__ import annotations

from datetime import date

import pytest

from fxjournal.journal.journal_models import Outcome
from fxjournal.risk.sizing import (
    classify_pnl,
    iso_week,
    lot_size,
    multiplier,
    pnl_currency,
    pnl_percent,
    pnl_points,
    risk_amount,
    risk_reward_ratio,
    session_for_time,
    sizing_preview,
    stop_points,
    take_points,
    to_number,
    value_per_pip,
)


class TestInstrumentFactors:

    def test_multipliers(self):
        assert multiplier("EUR/USD") == 100000
        assert multiplier("usd/jpy") == 1000
        assert multiplier("XAU/USD") == 100
        assert multiplier("") == 0

    def test_value_per_pip_by_tier(self):
        assert value_per_pip("EUR/USD", "Standard") == 10.0
        assert value_per_pip("USD/JPY", "Mini") == pytest.approx(0.68)
        assert value_per_pip("USD/CHF", "Micro") == pytest.approx(0.124)

    def test_unknown_pair_has_no_pip_value(self):
        assert value_per_pip("BTC/USD", "Standard") == 0.0


class TestSizing:

    def test_eurusd_standard_lot(self):
        pts = stop_points(1.10000, 1.09800, "long", "EUR/USD")
        assert pts == 200
        assert lot_size(1000, 2.0, "EUR/USD", "Standard", pts) == pytest.approx(0.01)

    def test_usdjpy_mini_lot(self):
        pts = stop_points(150.000, 150.300, "short", "USD/JPY")
        assert pts == 300
        assert lot_size(5000, 2.5, "USD/JPY", "Mini", pts) == pytest.approx(0.6127, abs=1e-4)

    def test_zero_stop_distance_gives_zero_lot(self):
        pts = stop_points(1.1, 1.1, "long", "EUR/USD")
        assert pts == 0
        assert lot_size(1000, 2.0, "EUR/USD", "Standard", pts) == 0.0

    def test_unknown_pair_gives_zero_lot(self):
        assert stop_points(1.1, 1.09, "long", "BTC/USD") == 0
        assert lot_size(1000, 2.0, "BTC/USD", "Standard", 100) == 0.0

    def test_invalid_input_never_raises(self):
        assert stop_points("abc", 1.0, "long", "EUR/USD") == 0
        assert lot_size(None, "x", "EUR/USD", "Standard", 200) == 0.0
        assert risk_amount(None, 1000) == 0.0
        assert to_number("nan") is None
        assert to_number(" 2.5 ") == 2.5
        assert to_number(True) is None

    def test_risk_reward_ratio(self):
        tp = take_points(1.1, 1.104, "long", "EUR/USD")
        sl = stop_points(1.1, 1.098, "long", "EUR/USD")
        assert risk_reward_ratio(tp, sl) == 2.0
        assert risk_reward_ratio(tp, 0) is None


class TestPnl:

    def test_xau_long_pnl(self):
        pts = pnl_points(2000.00, 2012.50, "long", "XAU/USD")
        assert pts == 1250
        assert pnl_currency(pts, 0.10, 10) == 1250.0

    def test_short_pnl_sign(self):
        pts = pnl_points(1.1000, 1.0980, "short", "EUR/USD")
        assert pts == 200
        assert pnl_points(1.1000, 1.1020, "short", "EUR/USD") == -200

    def test_numeric_override_wins(self):
        assert pnl_currency(200, 0.01, 10, override="55.5") == 55.5
        assert pnl_currency(200, 0.01, 10, override="") == 20.0
        assert pnl_currency(200, 0.01, 10, override="n/a") == 20.0

    def test_pnl_percent(self):
        assert pnl_percent(30, 1000) == pytest.approx(3.0)
        assert pnl_percent(30, 0) == 0.0


class TestClassification:

    def test_loss_below_zero(self):
        assert classify_pnl(-0.01, 2.0, 1000) is Outcome.LOSS

    def test_breakeven_up_to_risk_amount(self):
        assert classify_pnl(0, 2.0, 1000) is Outcome.BREAKEVEN
        assert classify_pnl(20.0, 2.0, 1000) is Outcome.BREAKEVEN

    def test_win_above_risk_amount(self):
        assert classify_pnl(20.01, 2.0, 1000) is Outcome.WIN


class TestCalendar:

    @pytest.mark.parametrize("value,week", [
        ("2025-12-31", 1),
        ("2024-12-30", 1),
        ("2025-03-10", 11),
        ("2026-12-31T10:00:00+00:00", 53),
        (date(2025, 3, 4), 10),
    ])
    def test_iso_week(self, value, week):
        assert iso_week(value) == week

    def test_iso_week_invalid(self):
        assert iso_week("not a date") is None

    @pytest.mark.parametrize("hhmm,expected", [
        ("07:00", "Tokyo & London"),
        ("16:00", "New York"),
        ("22:00", "Sydney"),
        ("23:59", "Sydney"),
        ("21:30", "Closed"),
        ("03:00", "Sydney & Tokyo"),
        ("12:30", "London & New York"),
    ])
    def test_sessions(self, hhmm, expected):
        assert session_for_time(hhmm) == expected

    @pytest.mark.parametrize("bad", ["", "25:00", "noon", None, "12"])
    def test_session_unknown(self, bad):
        assert session_for_time(bad) == "Unknown"


class TestPreview:

    def test_preview_eurusd(self):
        p = sizing_preview(1000, 2.0, "EUR/USD", "Standard", "long", 1.1, 1.098, 1.104)
        assert p["stop_points"] == 200
        assert p["take_points"] == 400
        assert p["lot_size"] == pytest.approx(0.01)
        assert p["ratio"] == 2.0
        assert p["risk_amount"] == pytest.approx(20.0)
        assert p["stop_loss_currency"] == 20.0
        assert p["take_profit_currency"] == 40.0
        assert p["stop_loss_percent"] == 2.0

    def test_preview_incomplete_draft(self):
        p = sizing_preview(1000, None, "EUR/USD", "Standard", "long", 1.1, None, None)
        assert p["lot_size"] == 0.0
        assert p["ratio"] is None
