"""
Risk policy tables — limits, instruments, pip values, tiers, sessions.

The module-level constants are the house defaults; ``RiskPolicy`` carries the
limits actually enforced and can be built from settings.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Tuple

from fxjournal.utils.config import Settings, get_settings


# ── Limits (percent of capital / trades per entry day) ───────

PER_TRADE_RISK_CAP = 3.0
DAILY_RISK_CAP = 5.0
MAX_TRADES_PER_DAY = 3
MAX_ACTIVE_PER_DAY = 2
MAX_CANCEL_PER_DAY = 1

# Risk selector: 2.0 … 3.0 in 0.1 steps
RISK_PERCENT_CHOICES: List[float] = [round(2.0 + i * 0.1, 1) for i in range(11)]


# ── Instruments ──────────────────────────────────────────────

# Value of one point for one standard lot, in account currency
PIP_VALUES: Dict[str, float] = {
    "EUR/USD": 10.0,
    "GBP/USD": 10.0,
    "XAU/USD": 10.0,
    "AUD/USD": 10.0,
    "USD/JPY": 6.8,
    "USD/CAD": 7.3,
    "USD/CHF": 12.4,
}

INSTRUMENTS: List[str] = list(PIP_VALUES)

METAL_MULTIPLIER = 100
JPY_MULTIPLIER = 1000
FX_MULTIPLIER = 100000


# ── Account tiers ────────────────────────────────────────────

TIER_DIVISORS: Dict[str, int] = {
    "Standard": 1,
    "Mini": 10,
    "Micro": 100,
}


# ── Trading sessions (local HH:MM, start inclusive / end exclusive) ──

SESSION_RANGES: List[Tuple[str, str, str]] = [
    ("Sydney", "22:00", "07:00"),   # wraps midnight
    ("Tokyo", "00:00", "09:00"),
    ("London", "07:00", "16:00"),
    ("New York", "12:00", "21:00"),
]


@dataclass(frozen=True)
class RiskPolicy:
    """Limits enforced by admission control."""
    per_trade_risk_cap: float = PER_TRADE_RISK_CAP
    daily_risk_cap: float = DAILY_RISK_CAP
    max_trades_per_day: int = MAX_TRADES_PER_DAY
    max_active_per_day: int = MAX_ACTIVE_PER_DAY
    max_cancel_per_day: int = MAX_CANCEL_PER_DAY

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RiskPolicy":
        s = settings or get_settings()
        return cls(
            per_trade_risk_cap=s.per_trade_risk_cap,
            daily_risk_cap=s.daily_risk_cap,
            max_trades_per_day=s.max_trades_per_day,
            max_active_per_day=s.max_active_per_day,
            max_cancel_per_day=s.max_cancel_per_day,
        )

    def to_dict(self) -> dict:
        return asdict(self)


def policy_table(policy: Optional[RiskPolicy] = None) -> dict:
    """Everything a form needs to render selectors and limit hints."""
    p = policy or RiskPolicy()
    return {
        "limits": p.to_dict(),
        "instruments": INSTRUMENTS,
        "pip_values": PIP_VALUES,
        "tiers": TIER_DIVISORS,
        "sessions": [{"name": n, "start": s, "end": e} for n, s, e in SESSION_RANGES],
        "risk_percent_choices": RISK_PERCENT_CHOICES,
    }
