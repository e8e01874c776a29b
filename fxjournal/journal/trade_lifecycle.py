"""
Trade Lifecycle Engine — open → closed {Active | Cancelled}
===========================================================

Pure transition functions (close_trade, edit_trade) plus JournalBook, the
in-memory open/history lists of one account. Every transition validates
first and mutates second, so a raised error leaves the book untouched.

Edit rules:
  open       plan fields + metadata; sizing re-derived, day caps re-checked
             when risk or entry date move
  Active     metadata + prices/size/dates/P&L override; outcome recomputed,
             day caps re-checked when risk or entry date move, and
             a manual P&L is never overwritten by a recomputation
  Cancelled  metadata only
"""

from __future__ import annotations

import copy
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Union

from fxjournal.journal.journal_models import (
    Account,
    CloseReason,
    CloseRequest,
    JournalSnapshot,
    Trade,
    TradeDraft,
    TradeStatus,
)
from fxjournal.journal.trade_normalizer import (
    TRADE_ALIASES,
    canonical_close_reason,
    canonical_direction,
    to_camel,
)
from fxjournal.risk.admission import (
    admit_trade,
    check_day_caps,
    check_image_url,
    check_risk_percent,
    day_usage,
)
from fxjournal.risk.policy import RiskPolicy
from fxjournal.risk.sizing import (
    lot_size,
    pnl_currency,
    pnl_percent,
    pnl_points,
    risk_reward_ratio,
    session_for_time,
    stop_points,
    take_points,
    to_number,
    value_per_pip,
)
from fxjournal.utils.exceptions import (
    MissingFieldError,
    NotFoundError,
    NotOpenError,
    OutOfRangeError,
)
from fxjournal.utils.logger import get_logger
from fxjournal.utils.timeutils import day_key, now_iso, parse_timestamp, to_timestamp

logger = get_logger(__name__)


IMMUTABLE_FIELDS = {"id", "user_id", "account_id", "created_at", "status", "close_reason"}
METADATA_FIELDS = {"note", "strategy", "session", "trade_time", "before_image_url", "after_image_url"}
PLAN_FIELDS = {"pair", "direction", "entry_date", "entry_price", "stop_loss", "take_profit", "risk_percent"}
OUTCOME_FIELDS = {"exit_date", "exit_price", "lot_size", "pnl_currency"}

NUMERIC_FIELDS = {"entry_price", "stop_loss", "take_profit", "risk_percent", "exit_price", "lot_size"}
DATE_FIELDS = {"entry_date", "exit_date"}

# alias / camelCase / canonical → canonical attribute
_PATCH_KEYS: Dict[str, str] = {"status": "status", "state": "status"}
for _attr, _aliases in TRADE_ALIASES.items():
    _PATCH_KEYS[_attr] = _attr
    _PATCH_KEYS[to_camel(_attr)] = _attr
    for _alias in _aliases:
        _PATCH_KEYS[_alias] = _attr


def _check_exit_after_entry(entry_date: Optional[str], exit_date: Optional[str]) -> None:
    entry, exit_ = parse_timestamp(entry_date), parse_timestamp(exit_date)
    if entry and exit_ and exit_ < entry:
        raise OutOfRangeError(
            f"exit_date {exit_date} is before entry_date {entry_date}", "exit_date"
        )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# CLOSE
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def close_trade(trade: Trade, close: Union[CloseRequest, Dict[str, Any]], capital: float) -> Trade:
    """
    Close an open trade. Returns a new Trade; the input is not modified.

    Cancelled closes at the entry price with zero points and zero P&L.
    Completed needs an exit price; a numeric ``pnl_override`` replaces the
    computed P&L and marks the trade as manual-P&L.
    """
    req = close if isinstance(close, CloseRequest) else CloseRequest.from_dict(close)
    if not trade.is_open:
        raise NotOpenError(f"Trade {trade.id} is {trade.status.value}, not open", "status")

    reason = canonical_close_reason(req.close_reason)
    if reason is None:
        raise OutOfRangeError(
            f"close_reason must be Completed or Cancelled, got {req.close_reason!r}", "close_reason"
        )
    check_image_url(req.after_image_url, "after_image_url")

    if req.exit_date in (None, ""):
        exit_date = now_iso()
    else:
        exit_date = to_timestamp(req.exit_date)
        if exit_date is None:
            raise OutOfRangeError(f"exit_date is not a valid date: {req.exit_date!r}", "exit_date")
    _check_exit_after_entry(trade.entry_date, exit_date)

    closed = replace(
        trade,
        close_reason=reason,
        exit_date=exit_date,
        after_image_url=(req.after_image_url or "").strip() or trade.after_image_url,
        note=req.note if req.note is not None else trade.note,
        updated_at=now_iso(),
    )

    if reason is CloseReason.CANCELLED:
        closed.status = TradeStatus.CANCELLED
        closed.exit_price = trade.entry_price
        closed.points = 0
        closed.pnl_currency = 0.0
        closed.pnl_percent = 0.0
        closed.manual_pnl = False
    else:
        exit_price = to_number(req.exit_price)
        if exit_price is None:
            raise MissingFieldError("exit_price")
        manual = to_number(req.pnl_override)
        closed.status = TradeStatus.ACTIVE
        closed.exit_price = exit_price
        closed.points = pnl_points(trade.entry_price, exit_price, trade.direction, trade.pair)
        closed.pnl_currency = pnl_currency(closed.points, trade.lot_size, trade.value_per_pip, manual)
        closed.pnl_percent = pnl_percent(closed.pnl_currency, capital)
        closed.manual_pnl = manual is not None

    logger.info(
        "trade_closed",
        trade_id=trade.id,
        status=closed.status.value,
        points=closed.points,
        pnl=closed.pnl_currency,
        manual_pnl=closed.manual_pnl,
    )
    return closed


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# EDIT
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def _normalize_patch(trade: Trade, patch: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in patch.items():
        attr = _PATCH_KEYS.get(key)
        if attr is None:
            raise OutOfRangeError(f"Unknown trade field {key!r}", key)
        if attr in IMMUTABLE_FIELDS:
            current = getattr(trade, attr)
            current = getattr(current, "value", current)
            if value != current:
                raise OutOfRangeError(f"{attr} cannot be changed", attr)
            continue
        if attr in NUMERIC_FIELDS:
            num = to_number(value)
            if num is None:
                raise OutOfRangeError(f"{attr} must be a number, got {value!r}", attr)
            value = num
        elif attr in DATE_FIELDS:
            ts = to_timestamp(value)
            if ts is None:
                raise OutOfRangeError(f"{attr} is not a valid date: {value!r}", attr)
            value = ts
        elif attr == "direction":
            value = canonical_direction(value)
            if value is None:
                raise OutOfRangeError("direction must be long or short", "direction")
        elif attr == "pair":
            value = str(value or "").strip().upper()
            if not value:
                raise MissingFieldError("pair")
        elif attr == "pnl_currency":
            if value is not None and to_number(value) is None:
                raise OutOfRangeError(f"pnl_currency must be a number, got {value!r}", attr)
            value = to_number(value)
        elif attr in ("before_image_url", "after_image_url"):
            check_image_url(value, attr)
            value = (value or "").strip() or None
        elif attr in METADATA_FIELDS:
            value = "" if value is None else str(value)
        elif attr not in PLAN_FIELDS | OUTCOME_FIELDS:
            raise OutOfRangeError(f"{attr} is derived and cannot be edited", attr)
        out[attr] = value
    return out


def _allowed_fields(trade: Trade) -> set:
    if trade.status is TradeStatus.CANCELLED:
        return METADATA_FIELDS
    if trade.status is TradeStatus.ACTIVE:
        return METADATA_FIELDS | PLAN_FIELDS | OUTCOME_FIELDS
    return METADATA_FIELDS | PLAN_FIELDS


def edit_trade(
    trade: Trade,
    patch: Dict[str, Any],
    account: Account,
    trades: Iterable[Trade],
    policy: Optional[RiskPolicy] = None,
) -> Trade:
    """
    Apply a partial update. Returns a new Trade; raises before any change on
    an illegal field for the trade's state or a violated cap.
    """
    changes = _normalize_patch(trade, patch)
    allowed = _allowed_fields(trade)
    for attr in changes:
        if attr not in allowed:
            raise OutOfRangeError(
                f"{attr} cannot be edited on a {trade.status.value} trade", attr
            )

    edited = replace(trade, **{k: v for k, v in changes.items() if k != "pnl_currency"})
    if "trade_time" in changes and "session" not in changes:
        edited.session = session_for_time(edited.trade_time) if edited.trade_time else ""

    if trade.is_open:
        _rederive_open(trade, edited, changes, account, trades, policy)
    elif trade.status is TradeStatus.ACTIVE:
        _check_risk_edit(trade, edited, changes, trades, policy or RiskPolicy.from_settings())
        _recompute_active(edited, changes, account)

    edited.updated_at = now_iso()
    logger.info("trade_edited", trade_id=trade.id, fields=sorted(changes))
    return edited


def _rederive_open(original: Trade, edited: Trade, changes: Dict[str, Any],
                   account: Account, trades: Iterable[Trade],
                   policy: Optional[RiskPolicy]) -> None:
    if not set(changes) & PLAN_FIELDS:
        return
    _check_risk_edit(original, edited, changes, trades, policy or RiskPolicy.from_settings())

    sl_pts = stop_points(edited.entry_price, edited.stop_loss, edited.direction, edited.pair)
    tp_pts = take_points(edited.entry_price, edited.take_profit, edited.direction, edited.pair)
    lot = lot_size(account.capital, edited.risk_percent, edited.pair, account.tier, sl_pts)
    if lot <= 0:
        raise OutOfRangeError(
            f"Lot size is zero for {edited.pair} (stop distance {sl_pts} points)", "stop_loss"
        )
    edited.lot_size = lot
    edited.value_per_pip = value_per_pip(edited.pair, account.tier)
    edited.ratio = risk_reward_ratio(tp_pts, sl_pts)


def _check_risk_edit(original: Trade, edited: Trade, changes: Dict[str, Any],
                     trades: Iterable[Trade], policy: RiskPolicy) -> None:
    """Per-trade and per-day caps for a trade whose risk or entry day moves."""
    if "risk_percent" in changes:
        check_risk_percent(edited.risk_percent, policy)
    if "risk_percent" in changes or "entry_date" in changes:
        usage = day_usage(trades, day_key(edited.entry_date), exclude_id=original.id)
        check_day_caps(usage, edited.risk_percent, policy)


def _recompute_active(edited: Trade, changes: Dict[str, Any], account: Account) -> None:
    _check_exit_after_entry(edited.entry_date, edited.exit_date)

    if "pair" in changes:
        edited.value_per_pip = value_per_pip(edited.pair, account.tier)
    if set(changes) & {"pair", "entry_price", "stop_loss", "take_profit"}:
        edited.ratio = risk_reward_ratio(
            take_points(edited.entry_price, edited.take_profit, edited.direction, edited.pair),
            stop_points(edited.entry_price, edited.stop_loss, edited.direction, edited.pair),
        )

    edited.points = pnl_points(edited.entry_price, edited.exit_price, edited.direction, edited.pair)
    if "pnl_currency" in changes:
        manual = changes["pnl_currency"]
        edited.manual_pnl = manual is not None
        edited.pnl_currency = pnl_currency(edited.points, edited.lot_size, edited.value_per_pip, manual)
    elif not edited.manual_pnl:
        edited.pnl_currency = pnl_currency(edited.points, edited.lot_size, edited.value_per_pip)
    edited.pnl_percent = pnl_percent(edited.pnl_currency, account.capital)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# BOOK
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class JournalBook:
    """
    Open and history lists of one account.

    Each operation returns the Trade it produced; the lists are only
    touched once every check has passed.
    """

    def __init__(
        self,
        account: Account,
        open_trades: Optional[List[Trade]] = None,
        history: Optional[List[Trade]] = None,
        policy: Optional[RiskPolicy] = None,
    ):
        self.account = account
        self.open: List[Trade] = list(open_trades or [])
        self.history: List[Trade] = list(history or [])
        self.policy = policy or RiskPolicy.from_settings()

    @classmethod
    def from_snapshot(cls, account: Account, snapshot: JournalSnapshot,
                      policy: Optional[RiskPolicy] = None) -> "JournalBook":
        return cls(account, snapshot.open, snapshot.history, policy)

    @property
    def trades(self) -> List[Trade]:
        return self.open + self.history

    def snapshot(self) -> JournalSnapshot:
        return JournalSnapshot(open=copy.deepcopy(self.open), history=copy.deepcopy(self.history))

    def find(self, trade_id: str) -> Optional[Trade]:
        for t in self.trades:
            if t.id == trade_id:
                return t
        return None

    def get(self, trade_id: str) -> Trade:
        trade = self.find(trade_id)
        if trade is None:
            raise NotFoundError(f"Trade {trade_id} not found", "id")
        return trade

    # ── Transitions ──

    def admit(self, draft: Union[TradeDraft, Dict[str, Any]]) -> Trade:
        trade = admit_trade(draft, self.account, self.trades, self.policy)
        (self.open if trade.is_open else self.history).append(trade)
        return trade

    def close(self, trade_id: str, close: Union[CloseRequest, Dict[str, Any]]) -> Trade:
        trade = self.get(trade_id)
        closed = close_trade(trade, close, self.account.capital)
        self.open = [t for t in self.open if t.id != trade_id]
        self.history.append(closed)
        return closed

    def edit(self, trade_id: str, patch: Dict[str, Any]) -> Trade:
        trade = self.get(trade_id)
        edited = edit_trade(trade, patch, self.account, self.trades, self.policy)
        self._swap(edited)
        return edited

    def delete(self, trade_id: str) -> JournalSnapshot:
        self.get(trade_id)
        self.open = [t for t in self.open if t.id != trade_id]
        self.history = [t for t in self.history if t.id != trade_id]
        logger.info("trade_deleted", trade_id=trade_id)
        return self.snapshot()

    # ── Bulk ──

    def replace_all(self, open_trades: List[Trade], history: List[Trade]) -> None:
        self.open = list(open_trades)
        self.history = list(history)

    def clear(self) -> None:
        self.open = []
        self.history = []

    def _swap(self, trade: Trade) -> None:
        for bucket in (self.open, self.history):
            for i, t in enumerate(bucket):
                if t.id == trade.id:
                    bucket[i] = trade
                    return
