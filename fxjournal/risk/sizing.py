"""
Position Sizing Kernel — points, pip values, lots, P&L, classification
=======================================================================

Pure functions feeding live form previews and the lifecycle engine.
None of them raise: invalid input yields 0 (or None where a value is
genuinely undefined, e.g. the R-ratio with no stop distance).
"""

from __future__ import annotations

import math
from datetime import date, datetime
from typing import Any, Optional

from fxjournal.journal.journal_models import Direction, Outcome
from fxjournal.risk.policy import (
    FX_MULTIPLIER,
    JPY_MULTIPLIER,
    METAL_MULTIPLIER,
    PIP_VALUES,
    SESSION_RANGES,
    TIER_DIVISORS,
)
from fxjournal.utils.timeutils import parse_timestamp


def to_number(value: Any) -> Optional[float]:
    """Coerce user/legacy input to a finite float, or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        num = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            num = float(text)
        except ValueError:
            return None
    else:
        return None
    return num if math.isfinite(num) else None


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _normalize_pair(pair: Any) -> str:
    if not isinstance(pair, str):
        return ""
    return pair.strip().upper()


def _is_short(direction: Any) -> bool:
    if isinstance(direction, Direction):
        return direction is Direction.SHORT
    return str(direction or "").strip().lower() in ("short", "sell")


def is_known_pair(pair: Any) -> bool:
    return _normalize_pair(pair) in PIP_VALUES


# ── Instrument factors ───────────────────────────────────────

def multiplier(pair: Any) -> int:
    """Price-units-to-points factor for an instrument."""
    p = _normalize_pair(pair)
    if not p:
        return 0
    if p == "XAU/USD":
        return METAL_MULTIPLIER
    if p.endswith("/JPY"):
        return JPY_MULTIPLIER
    return FX_MULTIPLIER


def base_value_per_pip(pair: Any) -> float:
    return PIP_VALUES.get(_normalize_pair(pair), 0.0)


def tier_divisor(tier: Any) -> int:
    name = str(getattr(tier, "value", tier) or "Standard").strip().capitalize()
    return TIER_DIVISORS.get(name, 1)


def value_per_pip(pair: Any, tier: Any = "Standard") -> float:
    base = base_value_per_pip(pair)
    if not base:
        return 0.0
    return base / tier_divisor(tier)


# ── Distances ────────────────────────────────────────────────

def _distance_points(entry: Any, level: Any, pair: Any) -> int:
    e, lvl = to_number(entry), to_number(level)
    if e is None or lvl is None or not is_known_pair(pair):
        return 0
    return round_half_up(abs(e - lvl) * multiplier(pair))


def stop_points(entry: Any, stop: Any, direction: Any = "long", pair: Any = "") -> int:
    """Unsigned stop distance in points; the sign is implied by direction."""
    return _distance_points(entry, stop, pair)


def take_points(entry: Any, target: Any, direction: Any = "long", pair: Any = "") -> int:
    return _distance_points(entry, target, pair)


def risk_reward_ratio(take_pts: Any, stop_pts: Any) -> Optional[float]:
    tp, sl = to_number(take_pts), to_number(stop_pts)
    if tp is None or sl is None or sl <= 0:
        return None
    return round(abs(tp) / sl, 2)


# ── Sizing ───────────────────────────────────────────────────

def risk_amount(risk_pct: Any, capital: Any) -> float:
    r, c = to_number(risk_pct), to_number(capital)
    if r is None or c is None:
        return 0.0
    return r / 100 * c


def lot_size(capital: Any, risk_pct: Any, pair: Any, tier: Any, stop_pts: Any) -> float:
    """(risk% × capital) / (value-per-pip × stop points); 0 when undefined."""
    amount = risk_amount(risk_pct, capital)
    vpp = value_per_pip(pair, tier)
    sl = to_number(stop_pts)
    if not amount or not vpp or not sl or amount < 0 or sl < 0:
        return 0.0
    return amount / (vpp * sl)


# ── Outcome ──────────────────────────────────────────────────

def pnl_points(entry: Any, exit_price: Any, direction: Any = "long", pair: Any = "") -> int:
    e, x = to_number(entry), to_number(exit_price)
    mult = multiplier(pair)
    if e is None or x is None or not mult:
        return 0
    raw = (x - e) * mult
    return round_half_up(-raw if _is_short(direction) else raw)


def pnl_currency(points: Any, lot: Any, vpp: Any, override: Any = None) -> float:
    """Realized P&L; a numeric manual override replaces the computed value."""
    manual = to_number(override)
    if manual is not None:
        return manual
    pts, size, value = to_number(points), to_number(lot), to_number(vpp)
    if pts is None or size is None or value is None:
        return 0.0
    return round(pts * size * value, 2)


def pnl_percent(pnl: Any, capital: Any) -> float:
    p, c = to_number(pnl), to_number(capital)
    if p is None or not c:
        return 0.0
    return p / c * 100


def classify_pnl(pnl: Any, risk_pct: Any, capital: Any) -> Outcome:
    value = to_number(pnl) or 0.0
    if value < 0:
        return Outcome.LOSS
    if value <= risk_amount(risk_pct, capital):
        return Outcome.BREAKEVEN
    return Outcome.WIN


def classify(trade: Any, capital: Any) -> Outcome:
    """Win / loss / breakeven relative to the risk declared at entry."""
    return classify_pnl(
        getattr(trade, "pnl_currency", None),
        getattr(trade, "risk_percent", None),
        capital,
    )


# ── Calendar ─────────────────────────────────────────────────

def iso_week(value: Any) -> Optional[int]:
    """ISO-8601 week number (weeks start Monday, week 1 holds the first Thursday)."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value.isocalendar()[1]
    dt = parse_timestamp(value)
    if dt is None:
        return None
    return dt.date().isocalendar()[1]


def _minutes(hhmm: str) -> int:
    h, m = hhmm.split(":")
    return int(h) * 60 + int(m)


def _within(total: int, start: int, end: int) -> bool:
    if start < end:
        return start <= total < end
    return total >= start or total < end


def session_for_time(value: Any) -> str:
    """Active trading sessions for a local HH:MM time, e.g. "London & New York"."""
    if not isinstance(value, str) or ":" not in value:
        return "Unknown"
    parts = value.strip().split(":")
    try:
        hours, minutes = int(parts[0]), int(parts[1])
    except (ValueError, IndexError):
        return "Unknown"
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        return "Unknown"
    total = hours * 60 + minutes
    active = [
        name for name, start, end in SESSION_RANGES
        if _within(total, _minutes(start), _minutes(end))
    ]
    return " & ".join(active) if active else "Closed"


# ── Live preview ─────────────────────────────────────────────

def sizing_preview(
    capital: Any,
    risk_pct: Any,
    pair: Any,
    tier: Any,
    direction: Any,
    entry: Any,
    stop: Any,
    target: Any,
) -> dict:
    """Everything the lot-size calculator shows while a draft is typed in."""
    sl_pts = stop_points(entry, stop, direction, pair)
    tp_pts = take_points(entry, target, direction, pair)
    vpp = value_per_pip(pair, tier)
    lot = lot_size(capital, risk_pct, pair, tier, sl_pts)
    stop_cash = lot * vpp * sl_pts
    take_cash = lot * vpp * tp_pts
    cap = to_number(capital) or 0.0
    return {
        "stop_points": sl_pts,
        "take_points": tp_pts,
        "value_per_pip": vpp,
        "lot_size": lot,
        "ratio": risk_reward_ratio(tp_pts, sl_pts),
        "risk_amount": risk_amount(risk_pct, capital),
        "stop_loss_currency": round(stop_cash, 2),
        "take_profit_currency": round(take_cash, 2),
        "stop_loss_percent": round(stop_cash / cap * 100, 2) if cap else 0.0,
        "take_profit_percent": round(take_cash / cap * 100, 2) if cap else 0.0,
    }
