"""
Tests for JournalSession: account switching and stale loads, optimistic
writes with pending/retry, money movements, import/export and reset.
"""

from __future__ import annotations

import asyncio
import time

import pytest

from fxjournal.journal.journal_models import TradeStatus, TransactionType
from fxjournal.journal.journal_session import JournalSession, ScopeAtom
from fxjournal.utils.exceptions import (
    NotFoundError,
    OutOfRangeError,
    PerTradeRiskError,
    StateError,
    TransientStoreError,
)
from tests.conftest import make_draft


@pytest.fixture
def session(store, policy):
    return JournalSession(store, policy, atom=ScopeAtom())


async def _open_account(session, name="Main", **kwargs):
    kwargs.setdefault("capital", 1000)
    account = await session.create_account("u1", name, **kwargs)
    await session.switch_account("u1", account.id)
    return account


def _failing(*args, **kwargs):
    raise TransientStoreError("upsert_trades failed: database is locked")


class TestAccountScope:

    @pytest.mark.asyncio
    async def test_switch_loads_journal(self, session, store, policy):
        account = await _open_account(session)
        outcome = await session.admit(make_draft())
        assert outcome.durable

        fresh = JournalSession(store, policy, atom=ScopeAtom())
        snap = await fresh.switch_account("u1", account.id)
        assert [t.id for t in snap.open] == [outcome.value.id]
        assert fresh.scope == ("u1", account.id)

    @pytest.mark.asyncio
    async def test_no_account_selected(self, session):
        with pytest.raises(StateError):
            await session.admit(make_draft())

    @pytest.mark.asyncio
    async def test_unknown_account(self, session):
        with pytest.raises(NotFoundError):
            await session.switch_account("u1", "missing")

    @pytest.mark.asyncio
    async def test_later_switch_cancels_pending_load(self, session, store, monkeypatch):
        first = await session.create_account("u1", "First", capital=1000)
        second = await session.create_account("u1", "Second", capital=2000)
        original = store.get_account

        def slow_get_account(account_id, user_id=None):
            if account_id == first.id:
                time.sleep(0.1)
            return original(account_id, user_id)

        monkeypatch.setattr(store, "get_account", slow_get_account)
        pending = asyncio.create_task(session.switch_account("u1", first.id))
        await asyncio.sleep(0)
        snap = await session.switch_account("u1", second.id)

        assert await pending is None
        assert snap is not None
        assert session.account.id == second.id
        assert session.scope == ("u1", second.id)
        await asyncio.sleep(0.2)

    @pytest.mark.asyncio
    async def test_stale_load_is_dropped(self, session):
        first = await _open_account(session, "First")
        stale_version = session._atom.version
        second = await session.create_account("u1", "Second", capital=2000)
        await session.switch_account("u1", second.id)

        assert await session._load("u1", first.id, stale_version) is None
        assert session.account.id == second.id

    @pytest.mark.asyncio
    async def test_delete_active_account_clears_scope(self, session, store):
        account = await _open_account(session)
        assert await session.delete_account("u1", account.id)
        assert session.scope is None
        with pytest.raises(StateError):
            session.account
        assert store.get_account(account.id) is None

    @pytest.mark.asyncio
    async def test_update_account(self, session, store):
        account = await _open_account(session)
        outcome = await session.update_account({"name": "Renamed", "drawdown": 5})
        assert outcome.durable
        assert session.account.name == "Renamed"
        assert store.get_account(account.id).drawdown == 5.0
        with pytest.raises(OutOfRangeError):
            await session.update_account({"capital": 99999})

    @pytest.mark.asyncio
    async def test_create_account_validation(self, session):
        with pytest.raises(OutOfRangeError):
            await session.create_account("u1", "Main", capital=-5)
        with pytest.raises(OutOfRangeError):
            await session.create_account("u1", "  ", capital=5)


class TestTrades:

    @pytest.mark.asyncio
    async def test_close_and_edit_persist(self, session, store):
        await _open_account(session)
        trade = (await session.admit(make_draft())).value
        await session.close(trade.id, {"close_reason": "Completed", "exit_date": "2025-03-11",
                                       "exit_price": 1.102})
        await session.edit(trade.id, {"note": "clean breakout"})
        stored = store.get_trade(trade.id, "u1")
        assert stored.status is TradeStatus.ACTIVE
        assert stored.pnl_currency == 20.0
        assert stored.note == "clean breakout"

    @pytest.mark.asyncio
    async def test_rejected_draft_writes_nothing(self, session, store):
        await _open_account(session)
        with pytest.raises(PerTradeRiskError):
            await session.admit(make_draft(risk_percent=3.5))
        assert session.snapshot().open == []
        assert store.get_db_stats()["trades"] == 0

    @pytest.mark.asyncio
    async def test_failed_write_stays_pending_until_retried(self, session, store, monkeypatch):
        account = await _open_account(session)
        original = store.update_trade
        monkeypatch.setattr(store, "update_trade", _failing)

        outcome = await session.admit(make_draft())
        trade = outcome.value
        key = f"trade:{trade.id}"
        assert outcome.durable is False
        assert outcome.error.kind == "Transient"
        assert [t.id for t in session.snapshot().open] == [trade.id]
        assert session.is_pending(key)
        assert session.pending_keys == [key]

        monkeypatch.setattr(store, "update_trade", original)
        retried = await session.retry_pending()
        assert retried.durable is True
        assert retried.value == []
        assert not session.is_pending(key)
        assert [t.id for t in store.load_journal("u1", account.id).open] == [trade.id]

    @pytest.mark.asyncio
    async def test_queued_write_survives_account_switch(self, session, store):
        first = await _open_account(session, "First")
        second = await session.create_account("u1", "Second", capital=2000)

        await session._write_lock.acquire()
        try:
            queued = asyncio.create_task(session.admit(make_draft()))
            await asyncio.sleep(0)
            await session.switch_account("u1", second.id)
        finally:
            session._write_lock.release()
        outcome = await queued

        assert outcome.durable is True
        assert [t.id for t in store.load_journal("u1", first.id).open] == [outcome.value.id]
        assert store.load_journal("u1", second.id).open == []
        assert session.snapshot().open == []

    @pytest.mark.asyncio
    async def test_delete(self, session, store):
        await _open_account(session)
        trade = (await session.admit(make_draft())).value
        outcome = await session.delete(trade.id)
        assert outcome.durable
        assert outcome.value.open == []
        assert store.get_trade(trade.id, "u1") is None

    @pytest.mark.asyncio
    async def test_preview(self, session):
        await _open_account(session)
        ok = session.preview(make_draft())
        assert ok["admissible"] is True
        assert ok["lot_size"] == pytest.approx(0.01)
        bad = session.preview(make_draft(risk_percent=3.5))
        assert bad["admissible"] is False
        assert bad["violation"]["kind"] == "PerTradeRisk"

    @pytest.mark.asyncio
    async def test_day_summary_and_analytics(self, session):
        await _open_account(session)
        await session.admit(make_draft())
        assert session.day_summary()[0]["risk_left"] == 3.0
        assert session.analytics().dashboard()["openTrades"] == 1


class TestMoney:

    @pytest.mark.asyncio
    async def test_deposit_and_withdraw(self, session, store):
        account = await _open_account(session)
        outcome = await session.deposit(500, "2025-02-01")
        assert outcome.durable
        assert session.account.capital == 1500.0
        assert store.get_account(account.id).capital == 1500.0

        with pytest.raises(OutOfRangeError):
            await session.withdraw(2000)
        with pytest.raises(OutOfRangeError):
            await session.deposit(0)

        await session.withdraw(200, "2025-03-01")
        assert session.account.capital == 1300.0

        rows = await session.transactions()
        assert [r["type"] for r in rows] == ["StartingCapital", "Deposit", "Withdrawal"]
        assert rows[0]["amount"] == 1000.0
        assert rows[-1]["balance"] == 1300.0
        stored = store.list_transactions("u1", account.id)
        assert [t.type for t in stored] == [TransactionType.DEPOSIT, TransactionType.WITHDRAWAL]

    @pytest.mark.asyncio
    async def test_target_plan_blocks_withdrawal(self, session):
        await _open_account(session, plan="Target", target_equity=1200)
        with pytest.raises(OutOfRangeError):
            await session.withdraw(10)


class TestBulk:

    @pytest.mark.asyncio
    async def test_import_keeps_absent_rows_in_store(self, session, store):
        account = await _open_account(session)
        kept = (await session.admit(make_draft())).value
        dropped = (await session.admit(make_draft(entry_date="2025-03-11"))).value
        payload = session.export_json()
        payload["tradesOpen"] = [t for t in payload["tradesOpen"] if t["id"] == kept.id]

        outcome = await session.import_json(payload)
        assert outcome.durable
        assert [t.id for t in session.snapshot().open] == [kept.id]
        stored = {t.id for t in store.load_journal("u1", account.id).open}
        assert stored == {kept.id, dropped.id}

    @pytest.mark.asyncio
    async def test_import_rejects_garbage(self, session):
        await _open_account(session)
        with pytest.raises(OutOfRangeError):
            await session.import_json(b"not json")
        with pytest.raises(OutOfRangeError):
            await session.import_json({"trades": []})

    @pytest.mark.asyncio
    async def test_export_csv(self, session, tmp_path):
        await _open_account(session)
        trade = (await session.admit(make_draft())).value
        await session.close(trade.id, {"close_reason": "Completed", "exit_date": "2025-03-11",
                                       "exit_price": 1.102})
        path = tmp_path / "out" / "journal.csv"
        text = await session.export_csv(str(path))
        header = text.splitlines()[0].split(",")
        assert header[0] == "id" and "cumulativePnl" in header
        assert trade.id in text
        assert path.read_text(encoding="utf-8") == text

    @pytest.mark.asyncio
    async def test_reset(self, session, store):
        account = await _open_account(session)
        await session.admit(make_draft())
        await session.deposit(100)
        outcome = await session.reset()
        assert outcome.durable
        assert session.account.capital == 0.0
        assert session.snapshot().all_trades == []
        assert store.load_journal("u1", account.id).all_trades == []
        assert store.list_transactions("u1", account.id) == []
        assert store.get_account(account.id).capital == 0.0


class TestUserSettings:

    @pytest.mark.asyncio
    async def test_defaults_seed_new_accounts(self, session):
        prefs = await session.save_user_settings("u1", {"default_tier": "Mini",
                                                        "default_risk_percent": 2.5})
        assert prefs.default_risk_percent == 2.5
        account = await session.create_account("u1", "Mini account", capital=500)
        assert account.tier.value == "Mini"

    @pytest.mark.asyncio
    async def test_risk_default_within_cap(self, session):
        with pytest.raises(OutOfRangeError):
            await session.save_user_settings("u1", {"default_risk_percent": 4})
