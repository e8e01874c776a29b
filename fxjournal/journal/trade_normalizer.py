"""
Trade Normalizer — in-memory models ⇄ persisted rows ⇄ export JSON
==================================================================

The persisted ``status`` column has carried several synonyms over time
(open, active, Active, closed, Closed, cancel, plus the old Valid/Invalid
column). Everything is canonicalized to {open, Active, Cancelled} here;
nothing downstream ever sees a raw status string.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from pydantic import AnyHttpUrl, TypeAdapter, ValidationError as PydanticValidationError

from fxjournal.journal.journal_models import (
    Account,
    AccountPlan,
    AccountTier,
    CloseReason,
    Direction,
    Trade,
    TradeStatus,
)
from fxjournal.risk.sizing import round_half_up, to_number
from fxjournal.utils.timeutils import now_iso, to_timestamp

_HTTP_URL = TypeAdapter(AnyHttpUrl)


# Canonical attribute → accepted source keys, in priority order
TRADE_ALIASES: Dict[str, Tuple[str, ...]] = {
    "id": ("id",),
    "user_id": ("user_id", "userId"),
    "account_id": ("account_id", "accountId"),
    "pair": ("pair", "symbol"),
    "direction": ("type", "direction"),
    "entry_date": ("entry_date", "entryDate"),
    "trade_time": ("trade_time", "tradeTime", "time"),
    "entry_price": ("entry_price", "entryPrice", "price"),
    "stop_loss": ("sl", "stopLoss", "stop_loss"),
    "take_profit": ("tp", "takeProfit", "take_profit"),
    "risk_percent": ("risk", "riskPercent", "risk_percent"),
    "lot_size": ("lot_size", "lotSize", "lotsize"),
    "value_per_pip": ("value_per_pip", "valuePerPip"),
    "ratio": ("ratio",),
    "close_reason": ("close_reason", "closeReason"),
    "before_image_url": ("beforeimage", "beforeImage", "before_image", "beforeImageUrl", "before_image_url"),
    "after_image_url": ("afterimage", "afterImage", "after_image", "afterImageUrl", "after_image_url"),
    "exit_date": ("exit_date", "exitDate"),
    "exit_price": ("exit_price", "exitPrice"),
    "points": ("points",),
    "pnl_currency": ("pnl_currency", "pnlCurrency", "pnlcurrency", "actualPnL"),
    "pnl_percent": ("pnl_percent", "pnlPercent", "pnlpercent", "percentagePnL"),
    "manual_pnl": ("manual_pnl", "manualPnl"),
    "session": ("session",),
    "strategy": ("strategy",),
    "note": ("note", "notes"),
    "created_at": ("created_at", "createdAt"),
    "updated_at": ("updated_at", "updatedAt"),
}

# Canonical attribute → persisted column
TRADE_COLUMNS: Dict[str, str] = {
    "id": "id",
    "user_id": "user_id",
    "account_id": "account_id",
    "pair": "pair",
    "direction": "type",
    "entry_date": "entry_date",
    "trade_time": "trade_time",
    "entry_price": "entry_price",
    "stop_loss": "sl",
    "take_profit": "tp",
    "risk_percent": "risk",
    "lot_size": "lot_size",
    "value_per_pip": "value_per_pip",
    "status": "status",
    "close_reason": "close_reason",
    "ratio": "ratio",
    "before_image_url": "beforeimage",
    "after_image_url": "afterimage",
    "exit_date": "exit_date",
    "exit_price": "exit_price",
    "points": "points",
    "pnl_currency": "pnl_currency",
    "pnl_percent": "pnl_percent",
    "manual_pnl": "manual_pnl",
    "session": "session",
    "strategy": "strategy",
    "note": "note",
    "created_at": "created_at",
    "updated_at": "updated_at",
}

ACCOUNT_ALIASES: Dict[str, Tuple[str, ...]] = {
    "id": ("id",),
    "user_id": ("user_id", "userId"),
    "name": ("account_name", "name", "accountName"),
    "plan": ("account_plan", "plan", "accountPlan"),
    "tier": ("account_type", "tier", "accountType"),
    "capital": ("capital",),
    "drawdown": ("drawdown",),
    "deposit_enabled": ("deposit_enabled", "depositEnabled"),
    "withdraw_enabled": ("withdrawal_enabled", "withdraw_enabled", "withdrawEnabled"),
    "currency": ("currency",),
    "target_equity": ("target", "target_equity", "targetEquity"),
    "duration_weeks": ("duration", "duration_weeks", "durationWeeks"),
    "weekly_target_enabled": ("weekly_target", "weekly_target_enabled", "weeklyTargetEnabled"),
    "created_at": ("created_at", "createdAt"),
    "updated_at": ("updated_at", "updatedAt"),
}

ACCOUNT_COLUMNS: Dict[str, str] = {
    "id": "id",
    "user_id": "user_id",
    "name": "account_name",
    "plan": "account_plan",
    "tier": "account_type",
    "capital": "capital",
    "drawdown": "drawdown",
    "deposit_enabled": "deposit_enabled",
    "withdraw_enabled": "withdrawal_enabled",
    "currency": "currency",
    "target_equity": "target",
    "duration_weeks": "duration",
    "weekly_target_enabled": "weekly_target",
    "created_at": "created_at",
    "updated_at": "updated_at",
}


# ── Helpers ──────────────────────────────────────────────────

def _pick(d: Dict[str, Any], keys: Tuple[str, ...], default: Any = None) -> Any:
    for k in keys:
        if k in d and d[k] is not None:
            return d[k]
    return default


def _to_int(value: Any) -> Optional[int]:
    num = to_number(value)
    return None if num is None else round_half_up(num)


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _clean_str(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _clean_url(value: Any) -> Optional[str]:
    text = _clean_str(value)
    return text or None


def to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(p.capitalize() for p in rest)


def is_http_url(value: Any) -> bool:
    """True for absolute http/https URLs."""
    if not isinstance(value, str) or not value.strip():
        return False
    try:
        _HTTP_URL.validate_python(value.strip())
    except PydanticValidationError:
        return False
    return True


# ── Canonical enums ──────────────────────────────────────────

def canonical_close_reason(raw: Any) -> Optional[CloseReason]:
    text = _clean_str(getattr(raw, "value", raw)).lower()
    if text in ("completed", "complete", "closed"):
        return CloseReason.COMPLETED
    if text in ("cancelled", "canceled", "cancel"):
        return CloseReason.CANCELLED
    return None


def canonical_status(raw: Any, close_reason: Any = None, has_exit: bool = False) -> TradeStatus:
    """
    Resolve any stored status synonym to {open, Active, Cancelled}.

    ``closed`` is transient: it becomes Cancelled when the close reason says
    so and Active otherwise (including legacy rows with no close reason).
    Unrecognized values fall back on whether exit fields are present.
    """
    text = _clean_str(getattr(raw, "value", raw)).lower()
    if text == "open":
        return TradeStatus.OPEN
    if text == "active":
        return TradeStatus.ACTIVE
    if text in ("cancelled", "canceled", "cancel"):
        return TradeStatus.CANCELLED
    if text == "closed":
        if canonical_close_reason(close_reason) is CloseReason.CANCELLED:
            return TradeStatus.CANCELLED
        return TradeStatus.ACTIVE
    return TradeStatus.ACTIVE if has_exit else TradeStatus.OPEN


def canonical_direction(raw: Any) -> Optional[Direction]:
    text = _clean_str(getattr(raw, "value", raw)).lower()
    if text in ("long", "buy"):
        return Direction.LONG
    if text in ("short", "sell"):
        return Direction.SHORT
    return None


def canonical_plan(raw: Any) -> AccountPlan:
    text = _clean_str(getattr(raw, "value", raw)).lower()
    if text in ("target", "challenge"):
        return AccountPlan.TARGET
    return AccountPlan.NORMAL


def canonical_tier(raw: Any) -> AccountTier:
    text = _clean_str(getattr(raw, "value", raw)).lower()
    if text == "mini":
        return AccountTier.MINI
    if text == "micro":
        return AccountTier.MICRO
    return AccountTier.STANDARD


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# TRADES
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def trade_from_row(row: Dict[str, Any]) -> Trade:
    """Build a canonical Trade from a stored row, export record or legacy dict."""
    v = {attr: _pick(row, keys) for attr, keys in TRADE_ALIASES.items()}

    raw_status = _pick(row, ("status",))
    if _clean_str(raw_status).lower() in ("", "valid", "invalid"):
        raw_status = _pick(row, ("state",), raw_status)

    exit_date = to_timestamp(v["exit_date"])
    status = canonical_status(raw_status, v["close_reason"], has_exit=exit_date is not None)
    close_reason = canonical_close_reason(v["close_reason"])
    entry_date = to_timestamp(v["entry_date"]) or ""

    # A "closed" row without exit data was still an open position
    if status is TradeStatus.ACTIVE and exit_date is None:
        status = TradeStatus.OPEN

    trade = Trade(
        id=_clean_str(v["id"]) or Trade().id,
        user_id=_clean_str(v["user_id"]),
        account_id=_clean_str(v["account_id"]),
        pair=_clean_str(v["pair"]).upper(),
        direction=canonical_direction(v["direction"]) or Direction.LONG,
        entry_date=entry_date,
        trade_time=_clean_str(v["trade_time"]),
        entry_price=to_number(v["entry_price"]),
        stop_loss=to_number(v["stop_loss"]),
        take_profit=to_number(v["take_profit"]),
        risk_percent=to_number(v["risk_percent"]) or 0.0,
        lot_size=to_number(v["lot_size"]) or 0.0,
        value_per_pip=to_number(v["value_per_pip"]) or 0.0,
        ratio=to_number(v["ratio"]),
        status=status,
        session=_clean_str(v["session"]),
        strategy=_clean_str(v["strategy"]),
        before_image_url=_clean_url(v["before_image_url"]),
        after_image_url=_clean_url(v["after_image_url"]),
        note=_clean_str(v["note"]),
        created_at=to_timestamp(v["created_at"]) or "",
        updated_at=to_timestamp(v["updated_at"]) or "",
    )

    if status is TradeStatus.OPEN:
        return trade

    trade.exit_date = exit_date or entry_date
    trade.exit_price = to_number(v["exit_price"])
    if status is TradeStatus.CANCELLED:
        trade.close_reason = CloseReason.CANCELLED
        trade.exit_price = trade.exit_price if trade.exit_price is not None else trade.entry_price
        trade.points = 0
        trade.pnl_currency = 0.0
        trade.pnl_percent = 0.0
    else:
        trade.close_reason = CloseReason.COMPLETED
        trade.points = _to_int(v["points"])
        trade.pnl_currency = to_number(v["pnl_currency"])
        trade.pnl_percent = to_number(v["pnl_percent"])
        trade.manual_pnl = _to_bool(v["manual_pnl"])
    return trade


def trade_to_row(trade: Trade, user_id: Optional[str] = None,
                 account_id: Optional[str] = None) -> Dict[str, Any]:
    """Persisted row with canonical column names and RFC3339 timestamps."""
    d = trade.to_dict()
    d["user_id"] = user_id or trade.user_id
    d["account_id"] = account_id or trade.account_id
    d["direction"] = trade.direction.value
    d["status"] = canonical_status(trade.status, trade.close_reason,
                                   has_exit=trade.exit_date is not None).value
    d["close_reason"] = trade.close_reason.value if trade.close_reason else None
    d["entry_date"] = to_timestamp(trade.entry_date)
    d["exit_date"] = to_timestamp(trade.exit_date)
    d["manual_pnl"] = 1 if trade.manual_pnl else 0
    d["created_at"] = trade.created_at or now_iso()
    d["updated_at"] = now_iso()
    return {col: d[attr] for attr, col in TRADE_COLUMNS.items()}


def trade_to_export(trade: Trade) -> Dict[str, Any]:
    """In-memory field names (camelCase) used by the JSON export."""
    d = trade.to_dict()
    d["direction"] = trade.direction.value
    d["status"] = trade.status.value
    d["close_reason"] = trade.close_reason.value if trade.close_reason else None
    return {to_camel(k): v for k, v in d.items()}


trade_from_export = trade_from_row


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# ACCOUNTS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def account_from_row(row: Dict[str, Any]) -> Account:
    v = {attr: _pick(row, keys) for attr, keys in ACCOUNT_ALIASES.items()}
    return Account(
        id=_clean_str(v["id"]) or Account().id,
        user_id=_clean_str(v["user_id"]),
        name=_clean_str(v["name"]),
        plan=canonical_plan(v["plan"]),
        tier=canonical_tier(v["tier"]),
        capital=max(to_number(v["capital"]) or 0.0, 0.0),
        drawdown=to_number(v["drawdown"]),
        deposit_enabled=_to_bool(v["deposit_enabled"]) if v["deposit_enabled"] is not None else True,
        withdraw_enabled=_to_bool(v["withdraw_enabled"]) if v["withdraw_enabled"] is not None else True,
        currency=_clean_str(v["currency"]) or "USD",
        target_equity=to_number(v["target_equity"]),
        duration_weeks=_to_int(v["duration_weeks"]),
        weekly_target_enabled=_to_bool(v["weekly_target_enabled"]),
        created_at=to_timestamp(v["created_at"]) or now_iso(),
        updated_at=to_timestamp(v["updated_at"]) or "",
    )


def account_to_row(account: Account) -> Dict[str, Any]:
    d = account.to_dict()
    d["plan"] = account.plan.value
    d["tier"] = account.tier.value
    d["deposit_enabled"] = 1 if account.deposit_enabled else 0
    d["withdraw_enabled"] = 1 if account.withdraw_enabled else 0
    d["weekly_target_enabled"] = 1 if account.weekly_target_enabled else 0
    d["updated_at"] = now_iso()
    return {col: d[attr] for attr, col in ACCOUNT_COLUMNS.items()}


def account_patch_to_row(patch: Dict[str, Any]) -> Dict[str, Any]:
    """Translate a partial account update (any alias) to persisted columns."""
    out: Dict[str, Any] = {}
    for attr, keys in ACCOUNT_ALIASES.items():
        if attr in ("id", "user_id", "created_at", "updated_at"):
            continue
        present = [k for k in keys if k in patch]
        if not present:
            continue
        value = patch[present[0]]
        if attr == "plan":
            value = canonical_plan(value).value
        elif attr == "tier":
            value = canonical_tier(value).value
        elif attr in ("deposit_enabled", "withdraw_enabled", "weekly_target_enabled"):
            value = 1 if _to_bool(value) else 0
        elif attr == "capital":
            value = max(to_number(value) or 0.0, 0.0)
        elif attr in ("drawdown", "target_equity"):
            value = to_number(value)
        elif attr == "duration_weeks":
            value = _to_int(value)
        out[ACCOUNT_COLUMNS[attr]] = value
    return out
