from __future__ import annotations

from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from fxjournal.journal.journal_models import JournalSnapshot, Trade
from fxjournal.journal.journal_session import JournalSession, WriteOutcome
from fxjournal.journal.journal_store import JournalStore
from fxjournal.journal.trade_normalizer import trade_to_export
from fxjournal.risk.policy import policy_table
from fxjournal.utils.exceptions import ErrorCategory, JournalError, NotFoundError, StateError
from fxjournal.utils.logger import get_logger

logger = get_logger(__name__)

app = FastAPI(title="FX Trading Journal", version="1.0")

USER_HEADER = "X-User-Id"


# ── Request bodies ───────────────────────────────────────────

class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class DraftBody(_Body):
    pair: str = ""
    direction: str = "long"
    entry_date: Optional[str] = None
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


class CloseBody(_Body):
    close_reason: str = "Completed"
    exit_date: Optional[str] = None
    exit_price: Optional[float] = None
    pnl_override: Optional[float] = None
    after_image_url: Optional[str] = None
    note: Optional[str] = None


class AccountBody(_Body):
    name: str
    capital: float = 0.0
    plan: Optional[str] = None
    tier: Optional[str] = None
    drawdown: Optional[float] = None
    currency: Optional[str] = None
    target_equity: Optional[float] = None
    duration_weeks: Optional[int] = None
    weekly_target_enabled: bool = False


class AmountBody(_Body):
    amount: float
    date: Optional[str] = None
    description: str = ""


# ── Dependencies ─────────────────────────────────────────────

_session: Optional[JournalSession] = None


def get_session() -> JournalSession:
    global _session
    if _session is None:
        _session = JournalSession(JournalStore())
    return _session


def get_user_id(request: Request) -> str:
    user_id = request.headers.get(USER_HEADER, "").strip()
    if not user_id:
        raise HTTPException(401, f"Missing {USER_HEADER} header")
    return user_id


def get_active(session: JournalSession = Depends(get_session),
               user_id: str = Depends(get_user_id)) -> JournalSession:
    """The session, provided its active account belongs to the caller."""
    scope = session.scope
    if not scope or scope[0] != user_id:
        raise StateError("No account selected", "account_id")
    return session


# ── Errors ───────────────────────────────────────────────────

def _status_for(exc: JournalError) -> int:
    if exc.category is ErrorCategory.VALIDATION:
        return 422
    if exc.category is ErrorCategory.POLICY:
        return 409
    if exc.category is ErrorCategory.STATE:
        return 404 if isinstance(exc, NotFoundError) else 409
    return 503


@app.exception_handler(JournalError)
async def journal_error_handler(request: Request, exc: JournalError) -> JSONResponse:
    status = _status_for(exc)
    if status >= 500:
        logger.error("journal_store_error", path=request.url.path, kind=exc.kind, error=exc.message)
    else:
        logger.info("journal_request_rejected", path=request.url.path, kind=exc.kind, field=exc.field)
    return JSONResponse(exc.to_dict(), status_code=status)


# ── Rendering ────────────────────────────────────────────────

def _render(value: Any) -> Any:
    if isinstance(value, Trade):
        return trade_to_export(value)
    if isinstance(value, JournalSnapshot):
        return {
            "tradesOpen": [trade_to_export(t) for t in value.open],
            "tradesHistory": [trade_to_export(t) for t in value.history],
        }
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


def _outcome(outcome: WriteOutcome) -> dict[str, Any]:
    return {
        "value": _render(outcome.value),
        "durable": outcome.durable,
        "error": outcome.error.to_dict() if outcome.error else None,
    }


# ────────────────────────────────────────────────────────────
# Policy
# ────────────────────────────────────────────────────────────

@app.get("/api/policy")
async def get_policy(session: JournalSession = Depends(get_session)) -> dict[str, Any]:
    return policy_table(session.policy)


# ────────────────────────────────────────────────────────────
# Accounts
# ────────────────────────────────────────────────────────────

@app.get("/api/accounts")
async def list_accounts(session: JournalSession = Depends(get_session),
                        user_id: str = Depends(get_user_id)) -> dict[str, Any]:
    accounts = await session.list_accounts(user_id)
    active = session.scope
    return {
        "accounts": [a.to_dict() for a in accounts],
        "active": active[1] if active and active[0] == user_id else None,
    }


@app.post("/api/accounts")
async def create_account(body: AccountBody,
                         session: JournalSession = Depends(get_session),
                         user_id: str = Depends(get_user_id)) -> dict[str, Any]:
    data = body.model_dump()
    account = await session.create_account(
        user_id,
        data.pop("name"),
        capital=data.pop("capital"),
        plan=data.pop("plan"),
        tier=data.pop("tier"),
        **{k: v for k, v in data.items() if v is not None},
    )
    return account.to_dict()


@app.delete("/api/accounts/{account_id}")
async def delete_account(account_id: str,
                         session: JournalSession = Depends(get_session),
                         user_id: str = Depends(get_user_id)) -> dict[str, Any]:
    if not await session.delete_account(user_id, account_id):
        raise NotFoundError(f"Account {account_id} not found", "account_id")
    return {"deleted": account_id}


@app.post("/api/accounts/{account_id}/select")
async def select_account(account_id: str,
                         session: JournalSession = Depends(get_session),
                         user_id: str = Depends(get_user_id)) -> dict[str, Any]:
    snapshot = await session.switch_account(user_id, account_id)
    if snapshot is None:
        return {"account": None, "superseded": True}
    logger.info("account_selected", account_id=account_id)
    return {"account": session.account.to_dict(), **_render(snapshot)}


@app.get("/api/account")
async def get_account(session: JournalSession = Depends(get_active)) -> dict[str, Any]:
    return session.account.to_dict()


@app.patch("/api/account")
async def update_account(request: Request,
                         session: JournalSession = Depends(get_active)) -> dict[str, Any]:
    body = await request.json()
    return _outcome(await session.update_account(body))


@app.post("/api/account/deposit")
async def deposit(body: AmountBody, session: JournalSession = Depends(get_active)) -> dict[str, Any]:
    return _outcome(await session.deposit(body.amount, body.date, body.description))


@app.post("/api/account/withdraw")
async def withdraw(body: AmountBody, session: JournalSession = Depends(get_active)) -> dict[str, Any]:
    return _outcome(await session.withdraw(body.amount, body.date, body.description))


@app.get("/api/account/transactions")
async def get_transactions(session: JournalSession = Depends(get_active)) -> dict[str, Any]:
    return {"transactions": await session.transactions()}


# ────────────────────────────────────────────────────────────
# Trades
# ────────────────────────────────────────────────────────────

@app.get("/api/trades")
async def get_trades(session: JournalSession = Depends(get_active)) -> dict[str, Any]:
    return _render(session.snapshot())


@app.post("/api/trades")
async def admit_trade(body: DraftBody, session: JournalSession = Depends(get_active)) -> dict[str, Any]:
    return _outcome(await session.admit(body.model_dump()))


@app.post("/api/trades/preview")
async def preview_trade(body: DraftBody, session: JournalSession = Depends(get_active)) -> dict[str, Any]:
    return session.preview(body.model_dump())


@app.post("/api/trades/{trade_id}/close")
async def close_trade(trade_id: str, body: CloseBody,
                      session: JournalSession = Depends(get_active)) -> dict[str, Any]:
    return _outcome(await session.close(trade_id, body.model_dump()))


@app.patch("/api/trades/{trade_id}")
async def edit_trade(trade_id: str, request: Request,
                     session: JournalSession = Depends(get_active)) -> dict[str, Any]:
    body = await request.json()
    if not isinstance(body, dict):
        raise HTTPException(400, "Patch body must be a JSON object")
    return _outcome(await session.edit(trade_id, body))


@app.delete("/api/trades/{trade_id}")
async def delete_trade(trade_id: str, session: JournalSession = Depends(get_active)) -> dict[str, Any]:
    return _outcome(await session.delete(trade_id))


# ────────────────────────────────────────────────────────────
# Analytics
# ────────────────────────────────────────────────────────────

@app.get("/api/analytics/dashboard")
async def get_dashboard(session: JournalSession = Depends(get_active)) -> dict[str, Any]:
    return session.analytics().dashboard()


@app.get("/api/analytics/equity-curve")
async def get_equity_curve(per_trade: bool = False,
                           session: JournalSession = Depends(get_active)) -> dict[str, Any]:
    analytics = session.analytics()
    points = analytics.trade_equity_curve() if per_trade else analytics.equity_curve()
    return {"points": points}


@app.get("/api/analytics/weekly-review")
async def get_weekly_review(year: Optional[int] = None,
                            session: JournalSession = Depends(get_active)) -> dict[str, Any]:
    return {"weeks": session.analytics().weekly_review(year)}


@app.get("/api/analytics/daily-risk")
async def get_daily_risk(week: Optional[int] = None, year: Optional[int] = None,
                         session: JournalSession = Depends(get_active)) -> dict[str, Any]:
    return session.analytics().daily_risk(week=week, year=year)


@app.get("/api/analytics/distributions")
async def get_distributions(session: JournalSession = Depends(get_active)) -> dict[str, Any]:
    return session.analytics().distributions()


@app.get("/api/analytics/day-summary")
async def get_day_summary(session: JournalSession = Depends(get_active)) -> dict[str, Any]:
    return {"days": session.day_summary()}


# ────────────────────────────────────────────────────────────
# Export / Import / Reset
# ────────────────────────────────────────────────────────────

@app.get("/api/export")
async def export_json(session: JournalSession = Depends(get_active)) -> dict[str, Any]:
    return session.export_json()


@app.get("/api/export/csv", response_class=PlainTextResponse)
async def export_csv(session: JournalSession = Depends(get_active)) -> PlainTextResponse:
    text = await session.export_csv()
    return PlainTextResponse(text, media_type="text/csv",
                             headers={"Content-Disposition": "attachment; filename=journal.csv"})


@app.post("/api/import")
async def import_json(request: Request, session: JournalSession = Depends(get_active)) -> dict[str, Any]:
    body = await request.body()
    return _outcome(await session.import_json(body))


@app.post("/api/reset")
async def reset(session: JournalSession = Depends(get_active)) -> dict[str, Any]:
    logger.warning("journal_reset_requested")
    return _outcome(await session.reset())


@app.post("/api/retry")
async def retry_pending(session: JournalSession = Depends(get_active)) -> dict[str, Any]:
    return _outcome(await session.retry_pending())


# ────────────────────────────────────────────────────────────
# User settings
# ────────────────────────────────────────────────────────────

@app.get("/api/settings")
async def get_user_settings(session: JournalSession = Depends(get_session),
                            user_id: str = Depends(get_user_id)) -> dict[str, Any]:
    return (await session.get_user_settings(user_id)).to_dict()


@app.put("/api/settings")
async def save_user_settings(request: Request,
                             session: JournalSession = Depends(get_session),
                             user_id: str = Depends(get_user_id)) -> dict[str, Any]:
    body = await request.json()
    return (await session.save_user_settings(user_id, body)).to_dict()
