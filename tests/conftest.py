"""
Shared fixtures and builders for journal testing.

Accounts, drafts and already-closed trades are built with plain factories
so each test states only the fields it cares about.
"""

from __future__ import annotations

from typing import Any

import pytest

from fxjournal.journal.journal_models import (
    Account,
    AccountPlan,
    AccountTier,
    CloseReason,
    Trade,
    TradeStatus,
)
from fxjournal.journal.journal_store import JournalStore
from fxjournal.journal.trade_lifecycle import JournalBook
from fxjournal.risk.policy import RiskPolicy


# ─────────────────────────────────────────────────────────
# Builders
# ─────────────────────────────────────────────────────────

def make_account(**overrides: Any) -> Account:
    fields = dict(
        id="a1",
        user_id="u1",
        name="Main",
        plan=AccountPlan.NORMAL,
        tier=AccountTier.STANDARD,
        capital=1000.0,
        created_at="2025-01-01T00:00:00+00:00",
    )
    fields.update(overrides)
    return Account(**fields)


def make_draft(**overrides: Any) -> dict:
    """Long EUR/USD, 200-point stop, 400-point target, 2% risk on 2025-03-10."""
    draft = dict(
        pair="EUR/USD",
        direction="long",
        entry_date="2025-03-10",
        trade_time="09:30",
        entry_price=1.10000,
        stop_loss=1.09800,
        take_profit=1.10400,
        risk_percent=2.0,
    )
    draft.update(overrides)
    return draft


def make_closed(pnl: float, exit_date: str, **overrides: Any) -> Trade:
    """An Active (completed) trade with the given P&L, as history holds it."""
    capital = overrides.pop("capital", 1000.0)
    fields = dict(
        user_id="u1",
        account_id="a1",
        pair="EUR/USD",
        direction="long",
        entry_date=exit_date,
        entry_price=1.1,
        stop_loss=1.098,
        take_profit=1.104,
        risk_percent=2.0,
        lot_size=0.01,
        value_per_pip=10.0,
        status=TradeStatus.ACTIVE,
        close_reason=CloseReason.COMPLETED,
        exit_date=exit_date,
        exit_price=1.1,
        points=0,
        pnl_currency=pnl,
        pnl_percent=pnl / capital * 100,
        session="London",
    )
    fields.update(overrides)
    return Trade(**fields)


def make_open(entry_date: str, **overrides: Any) -> Trade:
    """An admitted trade that is still open, so it carries no exit fields."""
    fields = dict(
        user_id="u1",
        account_id="a1",
        pair="EUR/USD",
        direction="long",
        entry_date=entry_date,
        entry_price=1.1,
        stop_loss=1.098,
        take_profit=1.104,
        risk_percent=2.0,
        lot_size=0.01,
        value_per_pip=10.0,
        status=TradeStatus.OPEN,
    )
    fields.update(overrides)
    return Trade(**fields)


def make_cancelled(entry_date: str, **overrides: Any) -> Trade:
    return make_closed(
        0.0,
        entry_date,
        status=TradeStatus.CANCELLED,
        close_reason=CloseReason.CANCELLED,
        **overrides,
    )


# ─────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────

@pytest.fixture
def policy() -> RiskPolicy:
    return RiskPolicy()


@pytest.fixture
def account() -> Account:
    return make_account()


@pytest.fixture
def book(account, policy) -> JournalBook:
    return JournalBook(account, policy=policy)


@pytest.fixture
def store(tmp_path):
    s = JournalStore(str(tmp_path / "journal.db"))
    yield s
    s.close()
