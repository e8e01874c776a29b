"""
Tests for admission control: the fixed check order, day caps, URL checks
and the derived sizing of an admitted trade.
"""

from __future__ import annotations

import pytest

from fxjournal.journal.journal_models import CloseReason, Direction, TradeStatus
from fxjournal.risk.admission import admit_trade, check_admission, day_summary, day_usage
from fxjournal.risk.policy import RiskPolicy
from fxjournal.utils.exceptions import (
    ActiveCountError,
    CancelCountError,
    DailyRiskError,
    InvalidUrlError,
    MissingFieldError,
    OutOfRangeError,
    PerTradeRiskError,
    TradeCountError,
)
from tests.conftest import make_account, make_cancelled, make_draft


def _admit_all(account, policy, *drafts):
    trades = []
    for d in drafts:
        trades.append(admit_trade(d, account, trades, policy))
    return trades


class TestAdmittedTrade:

    def test_derived_fields(self, account, policy):
        t = admit_trade(make_draft(), account, [], policy)
        assert t.status is TradeStatus.OPEN
        assert t.direction is Direction.LONG
        assert t.lot_size == pytest.approx(0.01)
        assert t.value_per_pip == 10.0
        assert t.ratio == 2.0
        assert t.entry_date == "2025-03-10T00:00:00+00:00"
        assert t.user_id == "u1" and t.account_id == "a1"
        assert t.created_at and t.updated_at
        assert t.exit_date is None and t.points is None

    def test_session_derived_from_time(self, account, policy):
        t = admit_trade(make_draft(trade_time="13:00"), account, [], policy)
        assert t.session == "London & New York"

    def test_explicit_session_kept(self, account, policy):
        t = admit_trade(make_draft(session="London"), account, [], policy)
        assert t.session == "London"

    def test_mini_usdjpy_short(self, policy):
        acc = make_account(capital=5000.0, tier="Mini")
        t = admit_trade(make_draft(pair="USD/JPY", direction="sell", entry_price=150.0,
                                   stop_loss=150.3, take_profit=149.4, risk_percent=2.5),
                        acc, [], policy)
        assert t.direction is Direction.SHORT
        assert t.lot_size == pytest.approx(0.6127, abs=1e-4)
        assert t.value_per_pip == pytest.approx(0.68)
        assert t.ratio == 2.0


class TestRequiredFields:

    @pytest.mark.parametrize("name", ["pair", "entry_price", "stop_loss", "take_profit",
                                      "entry_date", "risk_percent"])
    def test_missing(self, account, policy, name):
        with pytest.raises(MissingFieldError) as exc:
            admit_trade(make_draft(**{name: None}), account, [], policy)
        assert exc.value.field == name

    def test_required_checked_before_risk(self, account, policy):
        with pytest.raises(MissingFieldError):
            admit_trade(make_draft(pair="", risk_percent=9.0), account, [], policy)

    def test_bad_direction(self, account, policy):
        with pytest.raises(OutOfRangeError) as exc:
            admit_trade(make_draft(direction="sideways"), account, [], policy)
        assert exc.value.field == "direction"

    def test_bad_entry_date(self, account, policy):
        with pytest.raises(OutOfRangeError) as exc:
            admit_trade(make_draft(entry_date="tomorrow"), account, [], policy)
        assert exc.value.field == "entry_date"


class TestRiskCaps:

    def test_per_trade_cap(self, account, policy):
        with pytest.raises(PerTradeRiskError):
            admit_trade(make_draft(risk_percent=3.5), account, [], policy)

    def test_per_trade_cap_inclusive(self, account, policy):
        t = admit_trade(make_draft(risk_percent=3.0), account, [], policy)
        assert t.risk_percent == 3.0

    def test_zero_risk_rejected(self, account, policy):
        with pytest.raises(OutOfRangeError):
            admit_trade(make_draft(risk_percent=0), account, [], policy)

    def test_daily_risk_with_room_for_three_active(self, account):
        policy = RiskPolicy(max_active_per_day=3)
        trades = _admit_all(account, policy, make_draft(), make_draft())
        with pytest.raises(DailyRiskError) as exc:
            admit_trade(make_draft(risk_percent=1.5), account, trades, policy)
        assert "5.5" in exc.value.message

    def test_two_open_trades_hit_active_cap_first(self, account, policy):
        trades = _admit_all(account, policy, make_draft(), make_draft())
        with pytest.raises(ActiveCountError):
            admit_trade(make_draft(risk_percent=1.5), account, trades, policy)

    def test_cancelled_risk_counts_toward_daily_cap(self, account, policy):
        trades = _admit_all(account, policy, make_draft())
        trades.append(make_cancelled("2025-03-10T00:00:00+00:00", risk_percent=2.0))
        with pytest.raises(DailyRiskError):
            admit_trade(make_draft(risk_percent=1.5), account, trades, policy)

    def test_float_sum_at_cap_is_admitted(self, account):
        policy = RiskPolicy(max_active_per_day=3)
        trades = _admit_all(account, policy, make_draft(risk_percent=2.1), make_draft(risk_percent=2.1))
        t = admit_trade(make_draft(risk_percent=0.8), account, trades, policy)
        assert t.risk_percent == 0.8

    def test_other_day_not_counted(self, account, policy):
        trades = _admit_all(account, policy, make_draft(), make_draft())
        t = admit_trade(make_draft(entry_date="2025-03-11"), account, trades, policy)
        assert t.entry_day == "2025-03-11"


class TestDayCounts:

    def test_trade_count(self, account, policy):
        trades = _admit_all(account, policy, make_draft(risk_percent=1.0), make_draft(risk_percent=1.0))
        trades.append(make_cancelled("2025-03-10T00:00:00+00:00", risk_percent=1.0))
        with pytest.raises(TradeCountError):
            admit_trade(make_draft(risk_percent=1.0, cancel=True), account, trades, policy)

    def test_cancel_draft_skips_active_cap(self, account, policy):
        trades = _admit_all(account, policy, make_draft(risk_percent=1.0), make_draft(risk_percent=1.0))
        t = admit_trade(make_draft(risk_percent=1.0, cancel=True), account, trades, policy)
        assert t.status is TradeStatus.CANCELLED
        assert t.close_reason is CloseReason.CANCELLED
        assert t.exit_date == t.entry_date
        assert (t.points, t.pnl_currency, t.pnl_percent) == (0, 0.0, 0.0)

    def test_cancel_draft_never_raises_active_count(self, account, policy):
        trades = _admit_all(account, policy, make_draft(risk_percent=1.0), make_draft(risk_percent=1.0))
        trades.append(admit_trade(make_draft(risk_percent=1.0, cancel=True), account, trades, policy))
        usage = day_usage(trades, "2025-03-10")
        assert (usage.total, usage.active, usage.cancelled) == (3, 2, 1)
        assert usage.active <= policy.max_active_per_day

    def test_cancel_count(self, account, policy):
        trades = [make_cancelled("2025-03-10T00:00:00+00:00", risk_percent=1.0)]
        with pytest.raises(CancelCountError):
            admit_trade(make_draft(risk_percent=1.0, cancel=True), account, trades, policy)


class TestUrlsAndSizing:

    def test_invalid_before_url(self, account, policy):
        with pytest.raises(InvalidUrlError) as exc:
            admit_trade(make_draft(before_image_url="ftp://x/y.png"), account, [], policy)
        assert exc.value.field == "before_image_url"

    def test_policy_checked_before_url(self, account, policy):
        with pytest.raises(PerTradeRiskError):
            admit_trade(make_draft(risk_percent=4.0, before_image_url="nope"), account, [], policy)

    def test_valid_url_kept(self, account, policy):
        t = admit_trade(make_draft(before_image_url=" https://img.example.com/a.png "), account, [], policy)
        assert t.before_image_url == "https://img.example.com/a.png"

    def test_zero_stop_distance_rejected(self, account, policy):
        with pytest.raises(OutOfRangeError) as exc:
            admit_trade(make_draft(stop_loss=1.1), account, [], policy)
        assert exc.value.field == "stop_loss"

    def test_unknown_pair_rejected(self, account, policy):
        with pytest.raises(OutOfRangeError):
            admit_trade(make_draft(pair="BTC/USD"), account, [], policy)


class TestPreviewHelpers:

    def test_check_admission(self, account, policy):
        assert check_admission(make_draft(), account, [], policy) is None
        err = check_admission(make_draft(risk_percent=3.5), account, [], policy)
        assert err.kind == "PerTradeRisk"

    def test_day_usage_excludes_trade(self, account, policy):
        trades = _admit_all(account, policy, make_draft())
        usage = day_usage(trades, "2025-03-10", exclude_id=trades[0].id)
        assert usage.total == 0
        assert usage.risk_percent == 0.0

    def test_day_summary(self, account, policy):
        trades = _admit_all(account, policy, make_draft())
        assert day_summary(trades, policy) == [{
            "day": "2025-03-10", "total": 1, "active": 1, "cancelled": 0,
            "risk_percent": 2.0, "trades_left": 2, "active_left": 1,
            "cancel_left": 1, "risk_left": 3.0,
        }]
