"""
Journal Session — the active account and its write-through cache
================================================================

One session serves one process. The active (user, account) pair lives in
a process-wide ScopeAtom; every account switch bumps its version, and a
load whose version is no longer current is discarded.

Mutations are optimistic: the in-memory book changes first, then the
store write is queued behind an asyncio.Lock (program order per account).
A failed write leaves the row as updated, flags it pending and reports
``durable=False``; retry_pending() replays whatever is still flagged.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from fxjournal.journal.journal_analytics import JournalAnalytics
from fxjournal.journal.journal_export import export_csv, export_payload, parse_import
from fxjournal.journal.journal_models import (
    Account,
    CloseRequest,
    JournalSnapshot,
    Trade,
    TradeDraft,
    Transaction,
    TransactionType,
    UserSettings,
)
from fxjournal.journal.journal_store import JournalStore
from fxjournal.journal.trade_lifecycle import JournalBook
from fxjournal.journal.trade_normalizer import (
    account_from_row,
    account_patch_to_row,
    account_to_row,
    canonical_plan,
    canonical_tier,
)
from fxjournal.risk.admission import check_admission, day_summary
from fxjournal.risk.policy import RiskPolicy
from fxjournal.risk.sizing import sizing_preview, to_number
from fxjournal.utils.exceptions import (
    NotFoundError,
    OutOfRangeError,
    StateError,
    StoreError,
)
from fxjournal.utils.logger import bind_scope, clear_scope, get_logger
from fxjournal.utils.timeutils import now_iso, to_timestamp

logger = get_logger(__name__)

Scope = Tuple[str, str]


class ScopeAtom:
    """Process-wide holder of the active (user_id, account_id)."""

    def __init__(self):
        self._lock = threading.Lock()
        self._scope: Optional[Scope] = None
        self._version = 0

    def get(self) -> Optional[Scope]:
        return self._scope

    @property
    def version(self) -> int:
        return self._version

    def set(self, scope: Optional[Scope]) -> int:
        with self._lock:
            self._scope = scope
            self._version += 1
            return self._version


ACTIVE_SCOPE = ScopeAtom()


@dataclass
class WriteOutcome:
    """Result of an optimistic mutation: applied locally, durable if the store confirmed."""
    value: Any = None
    durable: bool = True
    error: Optional[StoreError] = None

    def to_dict(self) -> dict:
        value = self.value
        if hasattr(value, "to_dict"):
            value = value.to_dict()
        return {
            "value": value,
            "durable": self.durable,
            "error": self.error.to_dict() if self.error else None,
        }


class JournalSession:

    def __init__(self, store: JournalStore, policy: Optional[RiskPolicy] = None,
                 atom: Optional[ScopeAtom] = None):
        self._store = store
        self._policy = policy or RiskPolicy.from_settings()
        self._atom = atom or ACTIVE_SCOPE
        self._account: Optional[Account] = None
        self._book: Optional[JournalBook] = None
        self._movements: List[Transaction] = []
        self._load_task: Optional[asyncio.Task] = None
        self._write_lock = asyncio.Lock()
        # key → writes in flight; key → (op, payload) of the last failed write
        self._inflight: Dict[str, int] = {}
        self._failed: Dict[str, Tuple[str, Any]] = {}

    # ── State ────────────────────────────────────────────────

    @property
    def store(self) -> JournalStore:
        return self._store

    @property
    def policy(self) -> RiskPolicy:
        return self._policy

    @property
    def scope(self) -> Optional[Scope]:
        return self._atom.get()

    @property
    def account(self) -> Account:
        if self._account is None or self._book is None:
            raise StateError("No account selected", "account_id")
        return self._account

    @property
    def book(self) -> JournalBook:
        if self._book is None:
            raise StateError("No account selected", "account_id")
        return self._book

    @property
    def pending_keys(self) -> List[str]:
        return sorted(self._failed)

    def is_pending(self, key: str) -> bool:
        return key in self._failed or key in self._inflight

    def snapshot(self) -> JournalSnapshot:
        return self.book.snapshot()

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # ACCOUNTS
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def create_account(self, user_id: str, name: str, capital: Any = 0.0,
                             plan: Any = None, tier: Any = None, **extra) -> Account:
        prefs = await asyncio.to_thread(self._store.get_user_settings, user_id)
        capital_value = to_number(capital)
        if capital_value is None or capital_value < 0:
            raise OutOfRangeError("capital must be a non-negative number", "capital")
        if not (name or "").strip():
            raise OutOfRangeError("account name is required", "name")
        account = Account.create(
            user_id=user_id,
            name=name.strip(),
            plan=canonical_plan(plan) if plan else prefs.default_plan,
            tier=canonical_tier(tier) if tier else prefs.default_tier,
            capital=capital_value,
            currency=extra.pop("currency", None) or prefs.currency,
            **{k: v for k, v in extra.items() if k in Account.__dataclass_fields__},
        )
        created = await asyncio.to_thread(self._store.create_account, account)
        logger.info("account_created", account_id=created.id, plan=created.plan.value,
                    tier=created.tier.value, capital=created.capital)
        return created

    async def list_accounts(self, user_id: str) -> List[Account]:
        return await asyncio.to_thread(self._store.list_accounts, user_id)

    async def delete_account(self, user_id: str, account_id: str) -> bool:
        removed = await asyncio.to_thread(self._store.delete_account, account_id, user_id)
        if removed and self.scope == (user_id, account_id):
            self._atom.set(None)
            self._account, self._book, self._movements = None, None, []
            clear_scope()
        return removed

    async def switch_account(self, user_id: str, account_id: str) -> Optional[JournalSnapshot]:
        """
        Make (user_id, account_id) active and load its journal.

        Returns None when a later switch superseded this one before the
        load finished.
        """
        version = self._atom.set((user_id, account_id))
        bind_scope(user_id, account_id)
        if self._load_task and not self._load_task.done():
            self._load_task.cancel()
            logger.info("account_load_cancelled")
        self._account, self._book = None, None

        task = asyncio.create_task(self._load(user_id, account_id, version))
        self._load_task = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task.cancelled():
            return None
        return task.result()

    async def _load(self, user_id: str, account_id: str, version: int) -> Optional[JournalSnapshot]:
        account = await asyncio.to_thread(self._store.get_account, account_id, user_id)
        if account is None:
            raise NotFoundError(f"Account {account_id} not found", "account_id")
        snapshot = await asyncio.to_thread(self._store.load_journal, user_id, account_id)
        movements = await asyncio.to_thread(self._store.list_transactions, user_id, account_id)

        if self._atom.version != version:
            logger.info("stale_account_load_dropped", account_id=account_id)
            return None
        self._account = account
        self._book = JournalBook.from_snapshot(account, snapshot, self._policy)
        self._movements = movements
        self._failed.clear()
        logger.info("account_loaded", open=len(snapshot.open), history=len(snapshot.history))
        return self._book.snapshot()

    async def update_account(self, patch: Dict[str, Any]) -> WriteOutcome:
        """Edit account metadata. Capital moves only through deposit/withdraw/reset."""
        account = self.account
        if any(k in patch for k in ("capital", "id", "user_id", "userId")):
            raise OutOfRangeError("capital and identity cannot be edited directly", "capital")
        row = account_to_row(account)
        row.update(account_patch_to_row(patch))
        updated = account_from_row(row)
        self._set_account(updated)
        error = await self._persist_account(updated)
        return WriteOutcome(updated, error is None, error)

    def _set_account(self, account: Account) -> None:
        self._account = account
        self._book.account = account

    # ── Money movements ──

    async def deposit(self, amount: Any, date: Any = None, description: str = "") -> WriteOutcome:
        account = self.account
        if not account.deposit_enabled:
            raise OutOfRangeError("Deposits are disabled for this account", "amount")
        value = self._positive_amount(amount)
        return await self._move(TransactionType.DEPOSIT, value, account.capital + value, date, description)

    async def withdraw(self, amount: Any, date: Any = None, description: str = "") -> WriteOutcome:
        account = self.account
        if not account.withdraw_enabled:
            raise OutOfRangeError("Withdrawals are disabled for this account", "amount")
        value = self._positive_amount(amount)
        if value > account.capital:
            raise OutOfRangeError(
                f"Cannot withdraw {value} with capital {account.capital}", "amount"
            )
        return await self._move(TransactionType.WITHDRAWAL, value, account.capital - value, date, description)

    @staticmethod
    def _positive_amount(amount: Any) -> float:
        value = to_number(amount)
        if value is None or value <= 0:
            raise OutOfRangeError("amount must be a positive number", "amount")
        return value

    async def _move(self, kind: TransactionType, amount: float, new_capital: float,
                    date: Any, description: str) -> WriteOutcome:
        account = self.account
        txn = Transaction(
            date=to_timestamp(date) or now_iso(),
            type=kind,
            amount=amount,
            description=description or kind.value,
            account_id=account.id,
            user_id=account.user_id,
        )
        updated = Account.from_dict({**account.to_dict(), "capital": round(new_capital, 2)})
        self._set_account(updated)
        self._movements.append(txn)
        logger.info("capital_moved", kind=kind.value, amount=amount, capital=updated.capital)

        error = await self._persist(f"txn:{txn.id}", "transaction", txn)
        account_error = await self._persist_account(updated)
        error = error or account_error
        return WriteOutcome(updated, error is None, error)

    async def transactions(self) -> List[Dict[str, Any]]:
        return self.analytics().transactions(self._movements)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # TRADES
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def admit(self, draft: Union[TradeDraft, Dict[str, Any]]) -> WriteOutcome:
        trade = self.book.admit(draft)
        error = await self._persist_trade(trade)
        return WriteOutcome(trade, error is None, error)

    async def close(self, trade_id: str, close: Union[CloseRequest, Dict[str, Any]]) -> WriteOutcome:
        trade = self.book.close(trade_id, close)
        error = await self._persist_trade(trade)
        return WriteOutcome(trade, error is None, error)

    async def edit(self, trade_id: str, patch: Dict[str, Any]) -> WriteOutcome:
        trade = self.book.edit(trade_id, patch)
        error = await self._persist_trade(trade)
        return WriteOutcome(trade, error is None, error)

    async def delete(self, trade_id: str) -> WriteOutcome:
        user_id = self.account.user_id
        snapshot = self.book.delete(trade_id)
        self._failed.pop(f"trade:{trade_id}", None)
        error = await self._persist(f"trade:{trade_id}", "delete", (trade_id, user_id))
        return WriteOutcome(snapshot, error is None, error)

    # ── Previews ──

    def preview(self, draft: Union[TradeDraft, Dict[str, Any]]) -> Dict[str, Any]:
        """Live sizing plus the admission verdict for a draft being typed in."""
        d = draft if isinstance(draft, TradeDraft) else TradeDraft.from_dict(draft)
        account = self.account
        verdict = check_admission(d, account, self.book.trades, self._policy)
        result = sizing_preview(account.capital, d.risk_percent, d.pair, account.tier,
                                d.direction, d.entry_price, d.stop_loss, d.take_profit)
        result["admissible"] = verdict is None
        result["violation"] = verdict.to_dict() if verdict else None
        return result

    def day_summary(self) -> List[dict]:
        return day_summary(self.book.trades, self._policy)

    def analytics(self) -> JournalAnalytics:
        book = self.book
        return JournalAnalytics(self.account, book.history, book.open, self._policy)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # BULK: EXPORT / IMPORT / RESET
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def export_json(self) -> Dict[str, Any]:
        return export_payload(self.book.snapshot())

    async def export_csv(self, path: Optional[str] = None) -> str:
        return await asyncio.to_thread(export_csv, list(self.book.history), path)

    async def import_json(self, payload: Union[str, bytes, Dict[str, Any]]) -> WriteOutcome:
        """
        Replace both lists with the payload and upsert every trade.
        Rows already stored but absent from the payload are kept in the store.
        """
        account = self.account
        open_trades, history = parse_import(payload, account.user_id, account.id)
        self.book.replace_all(open_trades, history)
        logger.info("journal_imported", open=len(open_trades), history=len(history))

        trades = open_trades + history
        keys = [f"trade:{t.id}" for t in trades]
        error = await self._persist_many(keys, "upsert", trades,
                                         lambda: self._store.upsert_trades(trades))
        return WriteOutcome(self.book.snapshot(), error is None, error)

    async def reset(self) -> WriteOutcome:
        """Clear both lists, their rows and transactions, and set capital to 0."""
        account = self.account
        self.book.clear()
        self._movements = []
        self._failed.clear()
        updated = Account.from_dict({**account.to_dict(), "capital": 0.0})
        self._set_account(updated)
        logger.info("journal_reset")

        error = await self._persist(
            f"reset:{account.id}", "reset", (account.user_id, account.id)
        )
        account_error = await self._persist_account(updated)
        error = error or account_error
        return WriteOutcome(self.book.snapshot(), error is None, error)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # PERSISTENCE
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def _writer(self, op: str, payload: Any) -> Callable[[], Any]:
        store = self._store
        if op == "upsert":
            return lambda: store.update_trade(payload)
        if op == "delete":
            trade_id, user_id = payload
            return lambda: store.delete_trade(trade_id, user_id)
        if op == "transaction":
            return lambda: store.add_transaction(payload)
        if op == "account":
            return lambda: store.update_account(payload.id, account_to_row(payload), payload.user_id)
        if op == "reset":
            user_id, account_id = payload
            return lambda: store.clear_journal(user_id, account_id, transactions=True)
        raise ValueError(f"Unknown write op: {op}")

    async def _persist(self, key: str, op: str, payload: Any) -> Optional[StoreError]:
        """Queue one write behind the account lock; flag the key until it lands."""
        return await self._persist_many([key], op, [payload])

    async def _persist_many(self, keys: List[str], op: str, payloads: List[Any],
                            write: Optional[Callable[[], Any]] = None) -> Optional[StoreError]:
        for key in keys:
            self._inflight[key] = self._inflight.get(key, 0) + 1
        error = None
        try:
            async with self._write_lock:
                try:
                    await asyncio.to_thread(write or self._writer(op, payloads[0]))
                except StoreError as exc:
                    error = exc
                    logger.warning("write_failed", keys=len(keys), first=keys[0] if keys else None, op=op,
                                   kind=exc.kind, retryable=exc.retryable, error=exc.message)
        finally:
            for key in keys:
                left = self._inflight.get(key, 1) - 1
                if left > 0:
                    self._inflight[key] = left
                else:
                    self._inflight.pop(key, None)
        for key, payload in zip(keys, payloads):
            if error is None:
                self._failed.pop(key, None)
            else:
                self._failed[key] = (op, payload)
        return error

    async def _persist_trade(self, trade: Trade) -> Optional[StoreError]:
        return await self._persist(f"trade:{trade.id}", "upsert", trade)

    async def _persist_account(self, account: Account) -> Optional[StoreError]:
        return await self._persist(f"account:{account.id}", "account", account)

    async def retry_pending(self) -> WriteOutcome:
        """Replay every failed write in its original order; value = keys still failing."""
        for key, (op, payload) in list(self._failed.items()):
            if op == "account":
                payload = self._account
            await self._persist(key, op, payload)
        still = self.pending_keys
        if still:
            logger.warning("pending_writes_remain", count=len(still))
        return WriteOutcome(still, not still, None)

    # ── User settings ──

    async def get_user_settings(self, user_id: str) -> UserSettings:
        return await asyncio.to_thread(self._store.get_user_settings, user_id)

    async def save_user_settings(self, user_id: str, patch: Dict[str, Any]) -> UserSettings:
        prefs = await asyncio.to_thread(self._store.get_user_settings, user_id)
        merged = {**prefs.to_dict(), **{k: v for k, v in patch.items()
                                        if k in UserSettings.__dataclass_fields__}}
        merged["user_id"] = user_id
        merged["default_plan"] = canonical_plan(merged["default_plan"])
        merged["default_tier"] = canonical_tier(merged["default_tier"])
        risk = to_number(merged.get("default_risk_percent"))
        if risk is None or risk <= 0 or risk > self._policy.per_trade_risk_cap:
            raise OutOfRangeError(
                f"default_risk_percent must be within (0, {self._policy.per_trade_risk_cap}]",
                "default_risk_percent",
            )
        merged["default_risk_percent"] = risk
        return await asyncio.to_thread(self._store.save_user_settings, UserSettings.from_dict(merged))
