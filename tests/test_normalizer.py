"""
Tests for the normalizer: status synonyms, legacy aliases, persisted row
shape and the camelCase export form.
"""

from __future__ import annotations

import pytest

from fxjournal.journal.journal_models import (
    AccountPlan,
    AccountTier,
    CloseReason,
    Direction,
    TradeStatus,
)
from fxjournal.journal.trade_normalizer import (
    TRADE_COLUMNS,
    account_from_row,
    account_patch_to_row,
    account_to_row,
    canonical_status,
    is_http_url,
    trade_from_export,
    trade_from_row,
    trade_to_export,
    trade_to_row,
)
from tests.conftest import make_account, make_cancelled, make_closed


class TestCanonicalStatus:

    @pytest.mark.parametrize("raw,expected", [
        ("open", TradeStatus.OPEN),
        ("OPEN", TradeStatus.OPEN),
        ("active", TradeStatus.ACTIVE),
        ("Active", TradeStatus.ACTIVE),
        ("Cancelled", TradeStatus.CANCELLED),
        ("cancel", TradeStatus.CANCELLED),
    ])
    def test_synonyms(self, raw, expected):
        assert canonical_status(raw) is expected

    def test_closed_is_resolved_from_close_reason(self):
        assert canonical_status("closed", "Cancelled") is TradeStatus.CANCELLED
        assert canonical_status("Closed", "Completed") is TradeStatus.ACTIVE

    def test_closed_without_reason_is_active(self):
        assert canonical_status("closed", None) is TradeStatus.ACTIVE

    def test_unknown_falls_back_on_exit_presence(self):
        assert canonical_status("weird", has_exit=True) is TradeStatus.ACTIVE
        assert canonical_status("weird", has_exit=False) is TradeStatus.OPEN


class TestTradeFromRow:

    def test_legacy_closed_row(self):
        row = {
            "id": "t1", "user_id": "u1", "account_id": "a1", "pair": "eur/usd",
            "type": "buy", "entry_date": "2025-03-10", "entry_price": "1.1",
            "sl": "1.098", "tp": "1.104", "risk": "2", "status": "closed",
            "close_reason": None, "exit_date": "2025-03-11", "exit_price": 1.102,
            "points": 200, "pnl_currency": 20.0, "pnl_percent": 2.0,
        }
        t = trade_from_row(row)
        assert t.status is TradeStatus.ACTIVE
        assert t.close_reason is CloseReason.COMPLETED
        assert t.pair == "EUR/USD"
        assert t.direction is Direction.LONG
        assert t.entry_date == "2025-03-10T00:00:00+00:00"
        assert t.stop_loss == 1.098
        assert t.risk_percent == 2.0
        assert t.points == 200

    def test_cancelled_row_is_zeroed(self):
        row = {"id": "t2", "status": "closed", "close_reason": "Cancelled",
               "entry_date": "2025-03-10", "entry_price": 1.1,
               "exit_date": "2025-03-10", "pnl_currency": 12.0, "points": 5}
        t = trade_from_row(row)
        assert t.status is TradeStatus.CANCELLED
        assert t.points == 0
        assert t.pnl_currency == 0.0
        assert t.exit_price == 1.1

    def test_valid_column_falls_back_to_state(self):
        t = trade_from_row({"id": "t3", "status": "Valid", "state": "open",
                            "entry_date": "2025-03-10"})
        assert t.status is TradeStatus.OPEN

    def test_closed_row_without_exit_stays_open(self):
        t = trade_from_row({"id": "t4", "status": "Active", "entry_date": "2025-03-10"})
        assert t.status is TradeStatus.OPEN
        assert t.exit_date is None

    def test_camel_and_legacy_aliases(self):
        t = trade_from_row({"id": "t5", "entryDate": "2025-03-10", "stopLoss": 1.09,
                            "takeProfit": 1.12, "riskPercent": 2.5, "beforeImage": "https://x.io/a.png",
                            "notes": "legacy note"})
        assert t.stop_loss == 1.09
        assert t.take_profit == 1.12
        assert t.risk_percent == 2.5
        assert t.before_image_url == "https://x.io/a.png"
        assert t.note == "legacy note"


class TestTradeToRow:

    def test_canonical_columns(self):
        t = make_closed(50.0, "2025-03-04", manual_pnl=True)
        row = trade_to_row(t)
        assert set(row) == set(TRADE_COLUMNS.values())
        assert row["type"] == "long"
        assert row["sl"] == 1.098
        assert row["risk"] == 2.0
        assert row["status"] == "Active"
        assert row["close_reason"] == "Completed"
        assert row["exit_date"] == "2025-03-04T00:00:00+00:00"
        assert row["manual_pnl"] == 1
        assert row["updated_at"]

    def test_scope_override(self):
        row = trade_to_row(make_closed(1.0, "2025-03-04"), user_id="u9", account_id="a9")
        assert row["user_id"] == "u9"
        assert row["account_id"] == "a9"

    def test_row_preserves_kernel_fields(self):
        t = make_cancelled("2025-03-05T00:00:00+00:00", created_at="2025-03-05T08:00:00+00:00")
        back = trade_from_row(trade_to_row(t))
        for name in ("id", "pair", "direction", "entry_date", "entry_price", "stop_loss",
                     "take_profit", "risk_percent", "lot_size", "value_per_pip", "status",
                     "close_reason", "exit_date", "exit_price", "points", "pnl_currency",
                     "pnl_percent", "manual_pnl", "created_at"):
            assert getattr(back, name) == getattr(t, name), name


class TestExport:

    def test_export_is_camel_case(self):
        d = trade_to_export(make_closed(50.0, "2025-03-04"))
        assert d["pnlCurrency"] == 50.0
        assert d["entryDate"] == "2025-03-04"
        assert d["closeReason"] == "Completed"
        assert d["status"] == "Active"
        assert "pnl_currency" not in d

    def test_export_reimports(self):
        t = make_closed(-20.0, "2025-03-05T00:00:00+00:00")
        back = trade_from_export(trade_to_export(t))
        assert back.pnl_currency == -20.0
        assert back.status is TradeStatus.ACTIVE
        assert back.exit_date == t.exit_date


class TestAccounts:

    def test_legacy_account_row(self):
        a = account_from_row({"id": "a1", "user_id": "u1", "account_name": "Funded",
                              "account_plan": "Challenge", "account_type": "mini",
                              "capital": "5000", "withdrawal_enabled": 0,
                              "target": 5500, "duration": "4", "weekly_target": 1})
        assert a.name == "Funded"
        assert a.plan is AccountPlan.TARGET
        assert a.tier is AccountTier.MINI
        assert a.capital == 5000.0
        assert a.withdraw_enabled is False
        assert a.duration_weeks == 4
        assert a.weekly_target_enabled is True
        assert a.weekly_target == 125.0

    def test_account_row_round_trip(self):
        a = make_account(drawdown=8.0)
        back = account_from_row(account_to_row(a))
        assert back.id == a.id
        assert back.capital == a.capital
        assert back.drawdown == 8.0
        assert back.created_at == a.created_at

    def test_patch_uses_columns(self):
        row = account_patch_to_row({"name": "Renamed", "plan": "target", "weeklyTargetEnabled": True})
        assert row == {"account_name": "Renamed", "account_plan": "Target", "weekly_target": 1}


class TestUrls:

    @pytest.mark.parametrize("value,ok", [
        ("https://example.com/chart.png", True),
        ("http://example.com", True),
        ("ftp://example.com/chart.png", False),
        ("/relative/path.png", False),
        ("", False),
        (None, False),
    ])
    def test_http_url(self, value, ok):
        assert is_http_url(value) is ok
