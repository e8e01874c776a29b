"""
Journal Storage Engine — SQLite-backed trade / account store
============================================================

Rows are keyed by client-chosen stable ids. Trade writes are idempotent
upserts with last-writer-wins on ``updated_at``; nothing is ever deleted
implicitly.

Tables:
  trades        — one row per trade, canonical status {open, Active, Cancelled}
  accounts      — account metadata (capital changes via transactions only)
  transactions  — deposits / withdrawals
  user_settings — per-user preferences

Indexes:
  By (user, account), created_at, entry_date, status
"""

from __future__ import annotations
import json
import os
import sqlite3
import threading
import logging
from contextlib import contextmanager
from typing import Optional, List, Dict, Any, Iterable, Iterator, Union

from fxjournal.journal.journal_models import (
    Account, JournalSnapshot, Trade, TradeStatus, Transaction, UserSettings,
)
from fxjournal.journal.trade_normalizer import (
    ACCOUNT_COLUMNS, TRADE_COLUMNS,
    account_from_row, account_patch_to_row, account_to_row,
    trade_from_row, trade_to_row,
)
from fxjournal.utils.config import get_settings
from fxjournal.utils.exceptions import (
    ConflictStoreError, FatalStoreError, TransientStoreError,
)
from fxjournal.utils.timeutils import now_iso

logger = logging.getLogger("journal_store")

_TRADE_COLS = list(TRADE_COLUMNS.values())
_ACCOUNT_COLS = list(ACCOUNT_COLUMNS.values())


class JournalStore:
    """
    SQLite journal store.
    Thread-safe through one connection per thread (calls arrive via
    asyncio.to_thread from the session).
    """

    def __init__(self, db_path: Optional[str] = None, timeout: Optional[float] = None):
        settings = get_settings()
        self._db_path = db_path or settings.journal_db_path
        self._timeout = timeout if timeout is not None else settings.store_timeout
        os.makedirs(os.path.dirname(self._db_path) or ".", exist_ok=True)
        self._local = threading.local()
        self._conns: List[sqlite3.Connection] = []
        self._conns_lock = threading.Lock()
        self._init_db()
        logger.info("JournalStore initialized: %s", self._db_path)

    @property
    def db_path(self) -> str:
        return self._db_path

    def _get_conn(self) -> sqlite3.Connection:
        if not hasattr(self._local, "conn") or self._local.conn is None:
            conn = sqlite3.connect(self._db_path, timeout=self._timeout, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            self._local.conn = conn
            with self._conns_lock:
                self._conns.append(conn)
        return self._local.conn

    def close(self):
        with self._conns_lock:
            for conn in self._conns:
                conn.close()
            self._conns.clear()
        self._local = threading.local()

    @contextmanager
    def _tx(self, op: str) -> Iterator[sqlite3.Connection]:
        """Run one unit of work; commit on success, translate sqlite errors."""
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise self._translate(op, e) from e

    @staticmethod
    def _translate(op: str, exc: sqlite3.Error):
        msg = f"{op} failed: {exc}"
        if isinstance(exc, sqlite3.OperationalError):
            text = str(exc).lower()
            if "locked" in text or "busy" in text:
                logger.warning("Transient store error in %s: %s", op, exc)
                return TransientStoreError(msg)
        if isinstance(exc, sqlite3.IntegrityError):
            logger.warning("Conflict in %s: %s", op, exc)
            return ConflictStoreError(msg)
        logger.error("Fatal store error in %s: %s", op, exc)
        return FatalStoreError(msg)

    def _init_db(self):
        with self._tx("init_db") as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS trades (
                    id              TEXT PRIMARY KEY,
                    user_id         TEXT NOT NULL,
                    account_id      TEXT NOT NULL,
                    pair            TEXT DEFAULT '',
                    type            TEXT DEFAULT 'long',
                    entry_date      TEXT,
                    trade_time      TEXT DEFAULT '',
                    entry_price     REAL,
                    sl              REAL,
                    tp              REAL,
                    risk            REAL DEFAULT 0,
                    lot_size        REAL DEFAULT 0,
                    value_per_pip   REAL DEFAULT 0,
                    status          TEXT DEFAULT 'open',
                    close_reason    TEXT,
                    ratio           REAL,
                    beforeimage     TEXT,
                    afterimage      TEXT,
                    exit_date       TEXT,
                    exit_price      REAL,
                    points          INTEGER,
                    pnl_currency    REAL,
                    pnl_percent     REAL,
                    manual_pnl      INTEGER DEFAULT 0,
                    session         TEXT DEFAULT '',
                    strategy        TEXT DEFAULT '',
                    note            TEXT DEFAULT '',
                    created_at      TEXT DEFAULT '',
                    updated_at      TEXT DEFAULT ''
                );

                CREATE TABLE IF NOT EXISTS accounts (
                    id                  TEXT PRIMARY KEY,
                    user_id             TEXT NOT NULL,
                    account_name        TEXT DEFAULT '',
                    account_plan        TEXT DEFAULT 'Normal',
                    account_type        TEXT DEFAULT 'Standard',
                    capital             REAL DEFAULT 0,
                    drawdown            REAL,
                    deposit_enabled     INTEGER DEFAULT 1,
                    withdrawal_enabled  INTEGER DEFAULT 1,
                    currency            TEXT DEFAULT 'USD',
                    target              REAL,
                    duration            INTEGER,
                    weekly_target       INTEGER DEFAULT 0,
                    created_at          TEXT DEFAULT '',
                    updated_at          TEXT DEFAULT ''
                );

                CREATE TABLE IF NOT EXISTS transactions (
                    id          TEXT PRIMARY KEY,
                    user_id     TEXT NOT NULL,
                    account_id  TEXT NOT NULL,
                    date        TEXT DEFAULT '',
                    type        TEXT DEFAULT '',
                    amount      REAL DEFAULT 0,
                    description TEXT DEFAULT '',
                    created_at  TEXT DEFAULT ''
                );

                CREATE TABLE IF NOT EXISTS user_settings (
                    user_id     TEXT PRIMARY KEY,
                    data        TEXT DEFAULT '{}',
                    updated_at  TEXT DEFAULT ''
                );

                CREATE INDEX IF NOT EXISTS idx_tr_scope ON trades(user_id, account_id);
                CREATE INDEX IF NOT EXISTS idx_tr_created ON trades(created_at);
                CREATE INDEX IF NOT EXISTS idx_tr_entry ON trades(entry_date);
                CREATE INDEX IF NOT EXISTS idx_tr_status ON trades(status);
                CREATE INDEX IF NOT EXISTS idx_ac_user ON accounts(user_id);
                CREATE INDEX IF NOT EXISTS idx_tx_scope ON transactions(user_id, account_id);
            """)

    # ─── TRADES ─────────────────────────────────────────────────

    def load_journal(self, user_id: str, account_id: str) -> JournalSnapshot:
        """All trades of one account in creation order, split open / closed."""
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM trades WHERE user_id = ? AND account_id = ? "
                "ORDER BY created_at ASC, rowid ASC",
                (user_id, account_id),
            ).fetchall()
        except sqlite3.Error as e:
            raise self._translate("load_journal", e) from e

        snapshot = JournalSnapshot()
        for row in rows:
            trade = trade_from_row(dict(row))
            if trade.status is TradeStatus.OPEN:
                snapshot.open.append(trade)
            else:
                snapshot.history.append(trade)
        logger.debug("Loaded %d open / %d closed trades for %s/%s",
                     len(snapshot.open), len(snapshot.history), user_id, account_id)
        return snapshot

    def get_trade(self, trade_id: str, user_id: str) -> Optional[Trade]:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM trades WHERE id = ? AND user_id = ?",
                               (trade_id, user_id)).fetchone()
        except sqlite3.Error as e:
            raise self._translate("get_trade", e) from e
        return trade_from_row(dict(row)) if row else None

    def _trade_row(self, item: Union[Trade, Dict[str, Any]]) -> Dict[str, Any]:
        if isinstance(item, Trade):
            return trade_to_row(item)
        # Re-normalize raw dicts so only canonical values reach the table
        return trade_to_row(trade_from_row(item))

    def upsert_trades(self, items: Iterable[Union[Trade, Dict[str, Any]]]) -> int:
        """
        Idempotent by id. An existing row is only replaced by a write at least
        as recent (``updated_at``) from the same owner. Returns rows written.
        """
        rows = [self._trade_row(item) for item in items]
        if not rows:
            return 0
        cols = ", ".join(_TRADE_COLS)
        marks = ", ".join("?" for _ in _TRADE_COLS)
        updates = ", ".join(f"{c} = excluded.{c}" for c in _TRADE_COLS if c != "id")
        sql = (
            f"INSERT INTO trades ({cols}) VALUES ({marks}) "
            f"ON CONFLICT(id) DO UPDATE SET {updates} "
            f"WHERE excluded.updated_at >= trades.updated_at "
            f"AND excluded.user_id = trades.user_id"
        )
        written = 0
        with self._tx("upsert_trades") as conn:
            for row in rows:
                cur = conn.execute(sql, [row[c] for c in _TRADE_COLS])
                written += cur.rowcount
        logger.debug("Upserted %d/%d trade rows", written, len(rows))
        return written

    def update_trade(self, item: Union[Trade, Dict[str, Any]]) -> bool:
        """Single-row upsert for the edit/close hot path."""
        return self.upsert_trades([item]) > 0

    def delete_trade(self, trade_id: str, user_id: str) -> bool:
        with self._tx("delete_trade") as conn:
            cur = conn.execute("DELETE FROM trades WHERE id = ? AND user_id = ?",
                               (trade_id, user_id))
        if cur.rowcount:
            logger.info("Deleted trade %s", trade_id)
        return cur.rowcount > 0

    def clear_journal(self, user_id: str, account_id: str, transactions: bool = False) -> int:
        """Delete every trade (and optionally every transaction) of one account."""
        with self._tx("clear_journal") as conn:
            cur = conn.execute("DELETE FROM trades WHERE user_id = ? AND account_id = ?",
                               (user_id, account_id))
            if transactions:
                conn.execute("DELETE FROM transactions WHERE user_id = ? AND account_id = ?",
                             (user_id, account_id))
        logger.info("Cleared %d trades for %s/%s", cur.rowcount, user_id, account_id)
        return cur.rowcount

    # ─── ACCOUNTS ───────────────────────────────────────────────

    def create_account(self, account: Account) -> Account:
        row = account_to_row(account)
        cols = ", ".join(_ACCOUNT_COLS)
        marks = ", ".join("?" for _ in _ACCOUNT_COLS)
        with self._tx("create_account") as conn:
            conn.execute(f"INSERT INTO accounts ({cols}) VALUES ({marks})",
                         [row[c] for c in _ACCOUNT_COLS])
        logger.info("Created account %s (%s) for %s", account.id, account.name, account.user_id)
        return account_from_row(row)

    def get_account(self, account_id: str, user_id: Optional[str] = None) -> Optional[Account]:
        conn = self._get_conn()
        sql, params = "SELECT * FROM accounts WHERE id = ?", [account_id]
        if user_id:
            sql += " AND user_id = ?"
            params.append(user_id)
        try:
            row = conn.execute(sql, params).fetchone()
        except sqlite3.Error as e:
            raise self._translate("get_account", e) from e
        return account_from_row(dict(row)) if row else None

    def list_accounts(self, user_id: str) -> List[Account]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM accounts WHERE user_id = ? ORDER BY created_at ASC, rowid ASC",
                (user_id,),
            ).fetchall()
        except sqlite3.Error as e:
            raise self._translate("list_accounts", e) from e
        return [account_from_row(dict(r)) for r in rows]

    def update_account(self, account_id: str, patch: Dict[str, Any],
                       user_id: Optional[str] = None) -> Optional[Account]:
        """Partial update of account metadata; returns the updated account or None."""
        values = account_patch_to_row(patch)
        values["updated_at"] = now_iso()
        assignments = ", ".join(f"{c} = ?" for c in values)
        sql = f"UPDATE accounts SET {assignments} WHERE id = ?"
        params = list(values.values()) + [account_id]
        if user_id:
            sql += " AND user_id = ?"
            params.append(user_id)
        with self._tx("update_account") as conn:
            cur = conn.execute(sql, params)
        if not cur.rowcount:
            return None
        return self.get_account(account_id, user_id)

    def delete_account(self, account_id: str, user_id: str) -> bool:
        """Remove an account together with its trades and transactions."""
        with self._tx("delete_account") as conn:
            cur = conn.execute("DELETE FROM accounts WHERE id = ? AND user_id = ?",
                               (account_id, user_id))
            if cur.rowcount:
                conn.execute("DELETE FROM trades WHERE account_id = ? AND user_id = ?",
                             (account_id, user_id))
                conn.execute("DELETE FROM transactions WHERE account_id = ? AND user_id = ?",
                             (account_id, user_id))
        return cur.rowcount > 0

    # ─── TRANSACTIONS ───────────────────────────────────────────

    def add_transaction(self, txn: Transaction) -> str:
        d = txn.to_dict()
        with self._tx("add_transaction") as conn:
            conn.execute("""
                INSERT OR REPLACE INTO transactions
                (id, user_id, account_id, date, type, amount, description, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (d["id"], d["user_id"], d["account_id"], d["date"], txn.type.value,
                  abs(d["amount"]), d["description"], d["created_at"]))
        return txn.id

    def list_transactions(self, user_id: str, account_id: str) -> List[Transaction]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM transactions WHERE user_id = ? AND account_id = ? "
                "ORDER BY date ASC, rowid ASC",
                (user_id, account_id),
            ).fetchall()
        except sqlite3.Error as e:
            raise self._translate("list_transactions", e) from e
        return [Transaction.from_dict(dict(r)) for r in rows]

    # ─── USER SETTINGS ──────────────────────────────────────────

    def get_user_settings(self, user_id: str) -> UserSettings:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT data FROM user_settings WHERE user_id = ?",
                               (user_id,)).fetchone()
        except sqlite3.Error as e:
            raise self._translate("get_user_settings", e) from e
        if not row:
            return UserSettings(user_id=user_id, default_risk_percent=get_settings().default_risk_percent)
        data = json.loads(row["data"] or "{}")
        data["user_id"] = user_id
        return UserSettings.from_dict(data)

    def save_user_settings(self, prefs: UserSettings) -> UserSettings:
        prefs.updated_at = now_iso()
        data_json = json.dumps(prefs.to_dict(), default=str)
        with self._tx("save_user_settings") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO user_settings (user_id, data, updated_at) VALUES (?, ?, ?)",
                (prefs.user_id, data_json, prefs.updated_at),
            )
        return prefs

    # ─── UTILITY ────────────────────────────────────────────────

    def get_db_stats(self) -> Dict:
        conn = self._get_conn()
        stats = {}
        for table in ("trades", "accounts", "transactions", "user_settings"):
            stats[table] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        stats["db_path"] = self._db_path
        stats["db_size_kb"] = round(os.path.getsize(self._db_path) / 1024, 1) if os.path.exists(self._db_path) else 0
        return stats
