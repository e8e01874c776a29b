"""
Journal Data Models — trades, accounts, transactions, user settings
===================================================================

Trade lifecycle:  draft → open → closed {Active | Cancelled}

All models are dataclasses with to_dict()/from_dict(). Timestamps are
ISO-8601 strings. Enum members are ``str`` subclasses so they serialize
to their plain values.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, Dict, Any, List

from fxjournal.utils.timeutils import day_key, now_iso


# ── Enums ────────────────────────────────────────────────────

class TradeStatus(str, Enum):
    OPEN = "open"
    ACTIVE = "Active"          # closed, completed
    CANCELLED = "Cancelled"    # closed, cancelled


class CloseReason(str, Enum):
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class Direction(str, Enum):
    LONG = "long"
    SHORT = "short"


class AccountPlan(str, Enum):
    NORMAL = "Normal"
    TARGET = "Target"


class AccountTier(str, Enum):
    STANDARD = "Standard"
    MINI = "Mini"
    MICRO = "Micro"


class TransactionType(str, Enum):
    STARTING_CAPITAL = "StartingCapital"
    DEPOSIT = "Deposit"
    WITHDRAWAL = "Withdrawal"
    DAILY_PROFIT = "DailyProfit"
    DAILY_LOSS = "DailyLoss"


class Outcome(str, Enum):
    WIN = "win"
    LOSS = "loss"
    BREAKEVEN = "breakeven"


CLOSED_STATUSES = (TradeStatus.ACTIVE, TradeStatus.CANCELLED)


def new_id() -> str:
    return str(uuid.uuid4())


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# TRADES
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass
class TradeDraft:
    """Plan fields submitted for admission. ``cancel`` marks a planned cancel."""
    pair: str = ""
    direction: str = Direction.LONG.value
    entry_date: Any = None
    trade_time: str = ""
    entry_price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    risk_percent: Optional[float] = None
    session: str = ""
    strategy: str = ""
    before_image_url: Optional[str] = None
    note: str = ""
    cancel: bool = False

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "TradeDraft":
        return cls(**{k: v for k, v in d.items() if k in cls.__dataclass_fields__})


@dataclass
class CloseRequest:
    """Exit details for closing an open trade."""
    close_reason: str = CloseReason.COMPLETED.value
    exit_date: Any = None
    exit_price: Optional[float] = None
    pnl_override: Any = None          # manual P&L in account currency
    after_image_url: Optional[str] = None
    note: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "CloseRequest":
        return cls(**{k: v for k, v in d.items() if k in cls.__dataclass_fields__})


@dataclass
class Trade:
    """
    One journaled trade, open or closed.

    ``open`` carries no exit fields; ``Active``/``Cancelled`` carry all of them.
    A Cancelled trade always has zero points and zero P&L.
    """
    # ── Identity & scope ──
    id: str = field(default_factory=new_id)
    user_id: str = ""
    account_id: str = ""

    # ── Plan ──
    pair: str = ""
    direction: Direction = Direction.LONG
    entry_date: str = ""             # RFC3339 timestamp
    trade_time: str = ""             # local HH:MM
    entry_price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    risk_percent: float = 0.0

    # ── Derived at admission ──
    lot_size: float = 0.0
    value_per_pip: float = 0.0
    ratio: Optional[float] = None

    # ── Execution ──
    status: TradeStatus = TradeStatus.OPEN
    close_reason: Optional[CloseReason] = None
    exit_date: Optional[str] = None
    exit_price: Optional[float] = None
    points: Optional[int] = None
    pnl_currency: Optional[float] = None
    pnl_percent: Optional[float] = None
    manual_pnl: bool = False

    # ── Metadata ──
    session: str = ""
    strategy: str = ""
    before_image_url: Optional[str] = None
    after_image_url: Optional[str] = None
    note: str = ""
    created_at: str = ""
    updated_at: str = ""

    def __post_init__(self):
        if self.direction is not None and not isinstance(self.direction, Direction):
            self.direction = Direction(self.direction)
        if self.status is not None and not isinstance(self.status, TradeStatus):
            self.status = TradeStatus(self.status)
        if self.close_reason is not None and not isinstance(self.close_reason, CloseReason):
            self.close_reason = CloseReason(self.close_reason)

    @property
    def is_open(self) -> bool:
        return self.status is TradeStatus.OPEN

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_STATUSES

    @property
    def entry_day(self) -> Optional[str]:
        return day_key(self.entry_date)

    @property
    def exit_day(self) -> Optional[str]:
        return day_key(self.exit_date)

    @property
    def pnl(self) -> float:
        return float(self.pnl_currency or 0.0)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "Trade":
        return cls(**{k: v for k, v in d.items() if k in cls.__dataclass_fields__})


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# ACCOUNTS & MONEY MOVEMENTS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass
class Account:
    """A trading account. ``capital`` changes only through deposits/withdrawals."""
    id: str = field(default_factory=new_id)
    user_id: str = ""
    name: str = ""
    plan: AccountPlan = AccountPlan.NORMAL
    tier: AccountTier = AccountTier.STANDARD
    capital: float = 0.0
    drawdown: Optional[float] = None      # max drawdown, % of capital
    deposit_enabled: bool = True
    withdraw_enabled: bool = True
    currency: str = "USD"

    # ── Target plan ──
    target_equity: Optional[float] = None
    duration_weeks: Optional[int] = None
    weekly_target_enabled: bool = False

    created_at: str = field(default_factory=now_iso)
    updated_at: str = ""

    def __post_init__(self):
        if not isinstance(self.plan, AccountPlan):
            self.plan = AccountPlan(self.plan)
        if not isinstance(self.tier, AccountTier):
            self.tier = AccountTier(self.tier)

    @classmethod
    def create(cls, user_id: str, name: str, plan: Any = AccountPlan.NORMAL,
               tier: Any = AccountTier.STANDARD, **kwargs) -> "Account":
        """New account with the plan's deposit/withdraw defaults."""
        plan = plan if isinstance(plan, AccountPlan) else AccountPlan(plan)
        kwargs.setdefault("deposit_enabled", True)
        kwargs.setdefault("withdraw_enabled", plan is AccountPlan.NORMAL)
        return cls(user_id=user_id, name=name, plan=plan, tier=tier, **kwargs)

    @property
    def weekly_target(self) -> Optional[float]:
        """Equity growth needed per week to reach the target on schedule."""
        if (self.plan is not AccountPlan.TARGET or not self.weekly_target_enabled
                or not self.target_equity or not self.duration_weeks):
            return None
        return (self.target_equity - self.capital) / self.duration_weeks

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "Account":
        return cls(**{k: v for k, v in d.items() if k in cls.__dataclass_fields__})


@dataclass
class Transaction:
    """A money movement on the account timeline. ``amount`` is always positive."""
    date: str = ""
    type: TransactionType = TransactionType.DEPOSIT
    amount: float = 0.0
    description: str = ""
    id: str = field(default_factory=new_id)
    account_id: str = ""
    user_id: str = ""
    created_at: str = field(default_factory=now_iso)

    def __post_init__(self):
        if not isinstance(self.type, TransactionType):
            self.type = TransactionType(self.type)

    @property
    def signed_amount(self) -> float:
        if self.type in (TransactionType.WITHDRAWAL, TransactionType.DAILY_LOSS):
            return -abs(self.amount)
        return abs(self.amount)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "Transaction":
        return cls(**{k: v for k, v in d.items() if k in cls.__dataclass_fields__})


@dataclass
class UserSettings:
    """Per-user preferences used to seed new accounts and draft forms."""
    user_id: str = ""
    default_plan: AccountPlan = AccountPlan.NORMAL
    default_tier: AccountTier = AccountTier.STANDARD
    default_risk_percent: float = 2.0
    currency: str = "USD"
    theme: str = "dark"
    updated_at: str = ""

    def __post_init__(self):
        if not isinstance(self.default_plan, AccountPlan):
            self.default_plan = AccountPlan(self.default_plan)
        if not isinstance(self.default_tier, AccountTier):
            self.default_tier = AccountTier(self.default_tier)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "UserSettings":
        return cls(**{k: v for k, v in d.items() if k in cls.__dataclass_fields__})


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# SNAPSHOT
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass
class JournalSnapshot:
    """Open and closed trades of one account, each list in creation order."""
    open: List[Trade] = field(default_factory=list)
    history: List[Trade] = field(default_factory=list)

    @property
    def all_trades(self) -> List[Trade]:
        return self.open + self.history

    def find(self, trade_id: str) -> Optional[Trade]:
        for t in self.all_trades:
            if t.id == trade_id:
                return t
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "open": [t.to_dict() for t in self.open],
            "history": [t.to_dict() for t in self.history],
        }
