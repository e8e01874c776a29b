"""
Admission Control — the gate every new trade passes before it is journaled.
===========================================================================

Checks run in a fixed order and stop at the first violation, so the user
always sees one error and always the same one for the same input:

  1. Required fields (pair, entry price, SL, TP, entry date, risk %)
  2. Risk per trade         0 < risk ≤ per-trade cap
  3. Trades on entry day    < max trades per day
  4. Active on entry day    < max active per day   (skipped for cancel drafts)
  5. Cancelled on entry day < max cancel per day   (cancel drafts only)
  6. Risk on entry day      Σ risk + draft risk ≤ daily cap
  7. Image URLs             absolute http(s)
  8. Derived lot size       > 0 (zero stop distance / unknown pair)

Day usage counts every trade entered on the day, open or closed.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, List, Optional, Union

from fxjournal.journal.journal_models import (
    Account,
    Trade,
    CloseReason,
    TradeDraft,
    TradeStatus,
)
from fxjournal.journal.trade_normalizer import canonical_direction, is_http_url
from fxjournal.risk.policy import RiskPolicy
from fxjournal.risk.sizing import (
    lot_size,
    risk_reward_ratio,
    session_for_time,
    stop_points,
    take_points,
    to_number,
    value_per_pip,
)
from fxjournal.utils.exceptions import (
    ActiveCountError,
    CancelCountError,
    DailyRiskError,
    InvalidUrlError,
    JournalError,
    MissingFieldError,
    OutOfRangeError,
    PerTradeRiskError,
    TradeCountError,
)
from fxjournal.utils.logger import get_logger
from fxjournal.utils.timeutils import day_key, now_iso, to_timestamp

logger = get_logger(__name__)

REQUIRED_FIELDS = ("pair", "entry_price", "stop_loss", "take_profit", "entry_date", "risk_percent")
NUMERIC_FIELDS = ("entry_price", "stop_loss", "take_profit", "risk_percent")

# Σ risk is compared after rounding so 2.1 + 2.1 + 0.8 stays within a 5% cap
_RISK_PRECISION = 6


@dataclass
class DayUsage:
    """What one entry day has already consumed of the daily limits."""
    day: str
    total: int = 0
    active: int = 0          # open + Active
    cancelled: int = 0
    risk_percent: float = 0.0

    def to_dict(self) -> dict:
        d = asdict(self)
        d["risk_percent"] = round(self.risk_percent, 2)
        return d


def day_usage(trades: Iterable[Trade], day: Optional[str],
              exclude_id: Optional[str] = None) -> DayUsage:
    usage = DayUsage(day=day or "")
    if not day:
        return usage
    for t in trades:
        if t.id == exclude_id or t.entry_day != day:
            continue
        usage.total += 1
        if t.status is TradeStatus.CANCELLED:
            usage.cancelled += 1
        else:
            usage.active += 1
        usage.risk_percent += t.risk_percent or 0.0
    return usage


def day_summary(trades: Iterable[Trade], policy: Optional[RiskPolicy] = None) -> List[dict]:
    """Per-day usage against the limits, ascending by day."""
    p = policy or RiskPolicy.from_settings()
    trades = list(trades)
    days = sorted({t.entry_day for t in trades if t.entry_day})
    out = []
    for day in days:
        u = day_usage(trades, day)
        row = u.to_dict()
        row["trades_left"] = max(p.max_trades_per_day - u.total, 0)
        row["active_left"] = max(p.max_active_per_day - u.active, 0)
        row["cancel_left"] = max(p.max_cancel_per_day - u.cancelled, 0)
        row["risk_left"] = round(max(p.daily_risk_cap - u.risk_percent, 0.0), 2)
        out.append(row)
    return out


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# CHECKS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def _as_draft(draft: Union[TradeDraft, Dict[str, Any]]) -> TradeDraft:
    if isinstance(draft, TradeDraft):
        return draft
    return TradeDraft.from_dict(draft)


def check_required(draft: TradeDraft) -> None:
    for name in REQUIRED_FIELDS:
        value = getattr(draft, name)
        if name in NUMERIC_FIELDS:
            if to_number(value) is None:
                raise MissingFieldError(name)
        elif value is None or (isinstance(value, str) and not value.strip()):
            raise MissingFieldError(name)
    if canonical_direction(draft.direction) is None:
        raise OutOfRangeError(f"direction must be long or short, got {draft.direction!r}", "direction")
    if to_timestamp(draft.entry_date) is None:
        raise OutOfRangeError(f"entry_date is not a valid date: {draft.entry_date!r}", "entry_date")


def check_risk_percent(risk: float, policy: RiskPolicy) -> None:
    if risk <= 0:
        raise OutOfRangeError("risk_percent must be greater than 0", "risk_percent")
    if round(risk, _RISK_PRECISION) > policy.per_trade_risk_cap:
        raise PerTradeRiskError(
            f"Risk {risk}% exceeds the per-trade cap of {policy.per_trade_risk_cap}%",
            "risk_percent",
        )


def check_day_caps(usage: DayUsage, risk: float, policy: RiskPolicy, cancel: bool = False) -> None:
    """Steps 3–6 against the usage of the entry day."""
    if usage.total >= policy.max_trades_per_day:
        raise TradeCountError(
            f"{usage.total} trades already entered on {usage.day} "
            f"(max {policy.max_trades_per_day})",
            "entry_date",
        )
    if not cancel and usage.active >= policy.max_active_per_day:
        raise ActiveCountError(
            f"{usage.active} active trades already on {usage.day} "
            f"(max {policy.max_active_per_day})",
            "entry_date",
        )
    if cancel and usage.cancelled >= policy.max_cancel_per_day:
        raise CancelCountError(
            f"{usage.cancelled} cancelled trades already on {usage.day} "
            f"(max {policy.max_cancel_per_day})",
            "entry_date",
        )
    total = round(usage.risk_percent + risk, _RISK_PRECISION)
    if total > policy.daily_risk_cap:
        raise DailyRiskError(
            f"Daily risk on {usage.day} would be {round(total, 2)}% "
            f"(cap {policy.daily_risk_cap}%)",
            "risk_percent",
        )


def check_image_url(value: Any, field: str) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return
    if not is_http_url(value):
        raise InvalidUrlError(field, str(value))


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# ADMISSION
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def admit_trade(
    draft: Union[TradeDraft, Dict[str, Any]],
    account: Account,
    trades: Iterable[Trade],
    policy: Optional[RiskPolicy] = None,
) -> Trade:
    """
    Validate a draft against the account's existing trades and build the
    open Trade. Raises the first ValidationError / PolicyError hit.

    Args:
        draft: Plan fields (TradeDraft or a dict with the same names)
        account: Supplies capital, tier and scope
        trades: Every trade of the account, open and closed

    Returns:
        The new Trade with derived sizing filled in; status=open, or
        Cancelled (exit at entry, zero P&L) for a cancel draft
    """
    d = _as_draft(draft)
    p = policy or RiskPolicy.from_settings()

    check_required(d)
    risk = to_number(d.risk_percent)
    check_risk_percent(risk, p)

    entry_date = to_timestamp(d.entry_date)
    usage = day_usage(trades, day_key(entry_date))
    check_day_caps(usage, risk, p, cancel=d.cancel)

    check_image_url(d.before_image_url, "before_image_url")

    direction = canonical_direction(d.direction)
    pair = d.pair.strip().upper()
    entry, stop, take = to_number(d.entry_price), to_number(d.stop_loss), to_number(d.take_profit)
    sl_pts = stop_points(entry, stop, direction, pair)
    tp_pts = take_points(entry, take, direction, pair)
    lot = lot_size(account.capital, risk, pair, account.tier, sl_pts)
    if lot <= 0:
        raise OutOfRangeError(
            f"Lot size is zero for {pair or 'unknown pair'} "
            f"(stop distance {sl_pts} points, capital {account.capital})",
            "stop_loss",
        )

    trade_time = (d.trade_time or "").strip()
    session = (d.session or "").strip() or (session_for_time(trade_time) if trade_time else "")
    stamp = now_iso()
    trade = Trade(
        user_id=account.user_id,
        account_id=account.id,
        pair=pair,
        direction=direction,
        entry_date=entry_date,
        trade_time=trade_time,
        entry_price=entry,
        stop_loss=stop,
        take_profit=take,
        risk_percent=risk,
        lot_size=lot,
        value_per_pip=value_per_pip(pair, account.tier),
        ratio=risk_reward_ratio(tp_pts, sl_pts),
        status=TradeStatus.OPEN,
        session=session,
        strategy=(d.strategy or "").strip(),
        before_image_url=(d.before_image_url or "").strip() or None,
        note=d.note or "",
        created_at=stamp,
        updated_at=stamp,
    )
    if d.cancel:
        # planned cancels enter the journal already Cancelled
        trade.status = TradeStatus.CANCELLED
        trade.close_reason = CloseReason.CANCELLED
        trade.exit_date = entry_date
        trade.exit_price = entry
        trade.points = 0
        trade.pnl_currency = 0.0
        trade.pnl_percent = 0.0
    logger.info(
        "trade_admitted",
        trade_id=trade.id,
        pair=pair,
        direction=direction.value,
        risk_percent=risk,
        lot_size=round(lot, 4),
        day=usage.day,
        status=trade.status.value,
    )
    return trade


def check_admission(
    draft: Union[TradeDraft, Dict[str, Any]],
    account: Account,
    trades: Iterable[Trade],
    policy: Optional[RiskPolicy] = None,
) -> Optional[JournalError]:
    """First violation admit_trade would raise, or None if the draft is admissible."""
    try:
        admit_trade(draft, account, trades, policy)
    except JournalError as exc:
        logger.debug("admission_preview_rejected", kind=exc.kind, field=exc.field)
        return exc
    return None
