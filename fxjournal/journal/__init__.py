"""
Trade Journal — lifecycle, storage and analytics of one trader's accounts
=========================================================================

Architecture:
  journal_models.py     — Trade, Account, Transaction, UserSettings dataclasses
  trade_normalizer.py   — model ⇄ row ⇄ export mapping, status canonicalization
  trade_lifecycle.py    — close / edit transitions and the in-memory JournalBook
  journal_analytics.py  — dashboard, equity curves, weekly review, distributions
  journal_store.py      — SQLite-backed storage engine
  journal_export.py     — JSON export/import, CSV history
  journal_session.py    — active account, optimistic write-through, retries
"""

from fxjournal.journal.journal_models import (
    TradeStatus,
    CloseReason,
    Direction,
    AccountPlan,
    AccountTier,
    TransactionType,
    Outcome,
    TradeDraft,
    CloseRequest,
    Trade,
    Account,
    Transaction,
    UserSettings,
    JournalSnapshot,
)

__all__ = [
    # Enums
    "TradeStatus", "CloseReason", "Direction", "AccountPlan", "AccountTier",
    "TransactionType", "Outcome",
    # Models
    "TradeDraft", "CloseRequest", "Trade", "Account", "Transaction",
    "UserSettings", "JournalSnapshot",
]
