"""
Journal Analytics Engine — dashboard, equity curves, weekly review
==================================================================

Every output is a deterministic function of (account, history, open):
  - Dashboard stats & pair highlights
  - Equity curve, weekly and per trade
  - Weekly review (ISO weeks 1..52/53) with per-pair and session rollups
  - Daily risk used against the daily cap
  - Pair / session / weekday distributions
  - Transaction timeline (starting capital, deposits, withdrawals, daily P&L)

Rankings are stable: on a tie the pair seen first in the history wins.
Equity is accumulated unrounded and rounded to 2 decimals on output.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from fxjournal.journal.journal_models import (
    Account,
    AccountPlan,
    Outcome,
    Trade,
    TradeStatus,
    Transaction,
    TransactionType,
)
from fxjournal.risk.policy import RiskPolicy
from fxjournal.risk.sizing import classify, iso_week
from fxjournal.utils.timeutils import day_key, parse_day, parse_timestamp

logger = logging.getLogger("journal_analytics")

EMPTY = "—"
WEEKDAYS = ["Mon", "Tue", "Wed", "Thu", "Fri"]
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _exit_time(t: Trade) -> datetime:
    return parse_timestamp(t.exit_date or t.entry_date) or _EPOCH


def _iso_key(t: Trade) -> Optional[Tuple[int, int]]:
    d = parse_day(t.exit_date or t.entry_date)
    if d is None:
        return None
    year, week, _ = d.isocalendar()
    return year, week


def _best(stats: Dict[str, Dict[str, Any]], key: Callable[[Dict[str, Any]], float],
          keep: Callable[[Dict[str, Any]], bool] = lambda s: True,
          lowest: bool = False) -> Optional[str]:
    """First name with the extreme key among entries passing ``keep``."""
    best_name, best_val = None, None
    for name, s in stats.items():
        if not keep(s):
            continue
        val = key(s)
        if best_val is None or (val < best_val if lowest else val > best_val):
            best_name, best_val = name, val
    return best_name


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


class JournalAnalytics:
    """
    Read models over one account's trades.
    Pure: nothing here touches the store or mutates a trade.
    """

    def __init__(
        self,
        account: Account,
        history: Iterable[Trade],
        open_trades: Iterable[Trade] = (),
        policy: Optional[RiskPolicy] = None,
    ):
        self.account = account
        self.capital = float(account.capital or 0.0)
        self.history = [t for t in history if t.status in (TradeStatus.ACTIVE, TradeStatus.CANCELLED)]
        self.open = list(open_trades)
        self.policy = policy or RiskPolicy.from_settings()

    def _sorted_history(self) -> List[Trade]:
        return sorted(self.history, key=_exit_time)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # DASHBOARD
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def dashboard(self) -> Dict[str, Any]:
        closed = self.history
        total = len(closed)
        total_pnl = sum(t.pnl for t in closed)

        counts = {o: 0 for o in Outcome}
        pairs: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        for t in closed:
            outcome = classify(t, self.capital)
            counts[outcome] += 1
            s = pairs.setdefault(t.pair, {"count": 0, "pnl": 0.0, "breakeven": 0})
            s["count"] += 1
            s["pnl"] += t.pnl
            if outcome is Outcome.BREAKEVEN:
                s["breakeven"] += 1

        equity = self.capital + total_pnl
        result = {
            "totalTrades": total,
            "openTrades": len(self.open),
            "totalPnLCurrency": round(total_pnl, 2),
            "totalPnLPercent": round(total_pnl / self.capital * 100, 2) if self.capital else 0.0,
            "currentEquity": round(equity, 2),
            "totalWins": counts[Outcome.WIN],
            "totalLosses": counts[Outcome.LOSS],
            "totalBreakeven": counts[Outcome.BREAKEVEN],
            "winRate": _rate(counts[Outcome.WIN], total),
            "lossRate": _rate(counts[Outcome.LOSS], total),
            "breakevenRate": _rate(counts[Outcome.BREAKEVEN], total),
            "mostProfitablePair": _best(pairs, lambda s: s["pnl"], lambda s: s["pnl"] > 0),
            "mostLosingPair": _best(pairs, lambda s: s["pnl"], lambda s: s["pnl"] < 0, lowest=True),
            "mostTradedPair": _best(pairs, lambda s: s["count"]),
            "highestBreakevenPair": _best(pairs, lambda s: s["breakeven"], lambda s: s["breakeven"] > 0),
        }
        result.update(self._target_progress(equity))
        result.update(self._drawdown())
        return result

    def _target_progress(self, equity: float) -> Dict[str, Any]:
        acc = self.account
        if acc.plan is not AccountPlan.TARGET or not acc.target_equity:
            return {"targetEquity": None, "targetProgressPercent": None, "targetReached": None}
        span = acc.target_equity - self.capital
        progress = (equity - self.capital) / span * 100 if span > 0 else 100.0
        return {
            "targetEquity": acc.target_equity,
            "targetProgressPercent": round(progress, 2),
            "targetReached": equity >= acc.target_equity,
        }

    def _drawdown(self) -> Dict[str, Any]:
        """Largest peak-to-trough fall of the per-trade equity, in % of capital."""
        peak = equity = self.capital
        worst = 0.0
        for t in self._sorted_history():
            equity += t.pnl
            peak = max(peak, equity)
            worst = max(worst, peak - equity)
        pct = round(worst / self.capital * 100, 2) if self.capital else 0.0
        limit = self.account.drawdown
        return {
            "maxDrawdownPercent": pct,
            "drawdownLimitPercent": limit,
            "drawdownBreached": bool(limit) and pct >= limit,
        }

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # EQUITY CURVES
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def equity_curve(self) -> List[Dict[str, Any]]:
        """Start point, then cumulative equity at the end of each ISO week with exits."""
        weekly: "OrderedDict[Tuple[int, int], float]" = OrderedDict()
        for t in self._sorted_history():
            key = _iso_key(t)
            if key is None:
                continue
            weekly[key] = weekly.get(key, 0.0) + t.pnl

        running = self.capital
        points = [{"label": "Start", "equity": round(running, 2)}]
        for (year, week) in sorted(weekly):
            running += weekly[(year, week)]
            points.append({"label": f"Week {week}", "year": year, "week": week, "equity": round(running, 2)})
        return points

    def trade_equity_curve(self) -> List[Dict[str, Any]]:
        running = self.capital
        points = [{"index": 0, "label": "Start", "tradeId": None, "pnl": 0.0, "equity": round(running, 2)}]
        for i, t in enumerate(self._sorted_history(), start=1):
            running += t.pnl
            points.append({
                "index": i,
                "label": t.exit_day or f"Trade {i}",
                "tradeId": t.id,
                "pair": t.pair,
                "pnl": round(t.pnl, 2),
                "equity": round(running, 2),
            })
        return points

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # WEEKLY REVIEW
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def weekly_review(self, year: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        One row per ISO week 1..52 (53 when a trade falls in week 53).

        Trades are bucketed by exit week. Without ``year`` all years share
        the week numbers; pass a year to review a single ISO year.
        """
        buckets: Dict[int, List[Trade]] = {}
        for t in self._sorted_history():
            key = _iso_key(t)
            if key is None or (year is not None and key[0] != year):
                continue
            buckets.setdefault(key[1], []).append(t)

        last_week = max([52] + list(buckets))
        weekly_target = self.account.weekly_target
        running = self.capital
        rows = []
        for week in range(1, last_week + 1):
            trades = buckets.get(week, [])
            start = running
            total = sum(t.pnl for t in trades)
            running += total
            row = self._week_row(week, trades, start, running, total)
            row["weeklyTarget"] = round(weekly_target, 2) if weekly_target is not None else None
            row["targetMet"] = (total >= weekly_target) if weekly_target is not None and trades else None
            rows.append(row)
        return rows

    def _week_row(self, week: int, trades: List[Trade], start: float,
                  end: float, total: float) -> Dict[str, Any]:
        outcomes = [classify(t, self.capital) for t in trades]

        pairs: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        sessions: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        daily: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        for t, outcome in zip(trades, outcomes):
            ret = t.pnl_percent or 0.0
            risk = t.risk_percent or 0.0
            p = pairs.setdefault(t.pair or "Unknown", {
                "count": 0, "net": 0.0,
                "profitable": 0.0, "profitableCount": 0,
                "loss": 0.0, "lossCount": 0,
                "breakeven": 0.0, "breakevenCount": 0,
            })
            p["count"] += 1
            p["net"] += ret
            if ret > risk:
                p["profitable"] += ret
                p["profitableCount"] += 1
            elif ret < 0:
                p["loss"] += ret
                p["lossCount"] += 1
            else:
                p["breakeven"] += ret
                p["breakevenCount"] += 1

            s = sessions.setdefault(t.session or "Unknown", {"count": 0, "pnl": 0.0})
            s["count"] += 1
            s["pnl"] += t.pnl

            d = daily.setdefault(t.exit_day or "", {
                "date": t.exit_day, "trades": 0, "pnl": 0.0, "wins": 0, "losses": 0, "breakeven": 0,
            })
            d["trades"] += 1
            d["pnl"] += t.pnl
            d[{Outcome.WIN: "wins", Outcome.LOSS: "losses", Outcome.BREAKEVEN: "breakeven"}[outcome]] += 1

        for p in pairs.values():
            for k in ("net", "profitable", "loss", "breakeven"):
                p[k] = round(p[k], 2)
        for d in daily.values():
            d["pnl"] = round(d["pnl"], 2)

        return {
            "week": week,
            "label": f"Week {week}",
            "trades": len(trades),
            "startEquity": round(start, 2),
            "endEquity": round(end, 2),
            "totalPnL": round(total, 2),
            "weeklyPnLPercent": round(total / self.capital * 100, 2) if self.capital else 0.0,
            "wins": outcomes.count(Outcome.WIN),
            "losses": outcomes.count(Outcome.LOSS),
            "breakeven": outcomes.count(Outcome.BREAKEVEN),
            "pairs": dict(pairs),
            "mostTradedPair": _best(pairs, lambda s: s["count"]) or EMPTY,
            "mostProfitablePair": _best(pairs, lambda s: s["profitable"],
                                        lambda s: s["profitableCount"] > 0) or EMPTY,
            "mostLosingPair": _best(pairs, lambda s: s["loss"],
                                    lambda s: s["lossCount"] > 0, lowest=True) or EMPTY,
            "highestBreakevenPair": _best(pairs, lambda s: s["breakeven"],
                                          lambda s: s["breakevenCount"] > 0) or EMPTY,
            "mostProfitableSession": _best(sessions, lambda s: s["pnl"], lambda s: s["pnl"] > 0) or EMPTY,
            "daily": list(daily.values()),
        }

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # RISK & DISTRIBUTIONS
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def daily_risk(self, week: Optional[int] = None, year: Optional[int] = None) -> Dict[str, Any]:
        """
        Σ risk % of open + Active trades per entry day, ascending.
        Days holding only cancelled trades are listed with 0.
        """
        used: Dict[str, float] = {}
        for t in self.open + self.history:
            day = t.entry_day
            if not day:
                continue
            if week is not None and iso_week(day) != week:
                continue
            if year is not None and parse_day(day).isocalendar()[0] != year:
                continue
            used.setdefault(day, 0.0)
            if t.status is not TradeStatus.CANCELLED:
                used[day] += t.risk_percent or 0.0

        cap = self.policy.daily_risk_cap
        days = [
            {
                "date": day,
                "dayName": parse_day(day).strftime("%a"),
                "riskPercent": round(used[day], 2),
                "remainingPercent": round(max(cap - used[day], 0.0), 2),
            }
            for day in sorted(used)
        ]
        return {"cap": cap, "days": days}

    def distributions(self) -> Dict[str, List[Dict[str, Any]]]:
        pairs: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        sessions: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        weekdays = OrderedDict((d, {"day": d, "count": 0, "pnl": 0.0}) for d in WEEKDAYS)

        for t in self.history:
            p = pairs.setdefault(t.pair or "Unknown", {"pair": t.pair or "Unknown", "count": 0, "pnl": 0.0})
            p["count"] += 1
            p["pnl"] += t.pnl
            name = t.session or "Unknown"
            s = sessions.setdefault(name, {"session": name, "count": 0, "pnl": 0.0})
            s["count"] += 1
            s["pnl"] += t.pnl
            entry = parse_day(t.entry_date)
            if entry is not None and entry.weekday() < 5:
                w = weekdays[WEEKDAYS[entry.weekday()]]
                w["count"] += 1
                w["pnl"] += t.pnl

        def finalize(rows):
            out = list(rows.values())
            for r in out:
                r["pnl"] = round(r["pnl"], 2)
            return out

        return {
            "pairs": finalize(pairs),
            "sessions": finalize(sessions),
            "weekdays": finalize(weekdays),
        }

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # TRANSACTIONS
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def transactions(self, movements: Iterable[Transaction] = ()) -> List[Dict[str, Any]]:
        """
        Money timeline: StartingCapital first, then deposits, withdrawals and
        per-exit-day DailyProfit/DailyLoss, stable-sorted by date, each row
        carrying the running balance.
        """
        movements = [m for m in movements
                     if m.type in (TransactionType.DEPOSIT, TransactionType.WITHDRAWAL)]
        deposits = sum(abs(m.amount) for m in movements if m.type is TransactionType.DEPOSIT)
        withdrawals = sum(abs(m.amount) for m in movements if m.type is TransactionType.WITHDRAWAL)

        history = self._sorted_history()
        first_exit = history[0].exit_day if history else None
        starting = Transaction(
            date=self.account.created_at or first_exit or "",
            type=TransactionType.STARTING_CAPITAL,
            amount=round(self.capital - deposits + withdrawals, 2),
            description="Starting capital",
            account_id=self.account.id,
            user_id=self.account.user_id,
        )

        daily: "OrderedDict[str, float]" = OrderedDict()
        for t in history:
            if t.exit_day:
                daily[t.exit_day] = daily.get(t.exit_day, 0.0) + t.pnl

        rest: List[Transaction] = list(movements)
        for day, pnl in daily.items():
            pnl = round(pnl, 2)
            if pnl == 0:
                continue
            rest.append(Transaction(
                date=day,
                type=TransactionType.DAILY_PROFIT if pnl > 0 else TransactionType.DAILY_LOSS,
                amount=abs(pnl),
                description=f"Trading {'profit' if pnl > 0 else 'loss'} {day}",
                account_id=self.account.id,
                user_id=self.account.user_id,
            ))
        rest.sort(key=lambda m: parse_timestamp(m.date) or _EPOCH)

        balance = 0.0
        rows = []
        for m in [starting] + rest:
            balance += m.signed_amount
            row = m.to_dict()
            row["type"] = m.type.value
            row["amount"] = round(abs(m.amount), 2)
            row["balance"] = round(balance, 2)
            rows.append(row)
        logger.debug("Transaction timeline built: %d rows", len(rows))
        return rows

    # ── Everything at once ──

    def summary(self, year: Optional[int] = None) -> Dict[str, Any]:
        return {
            "dashboard": self.dashboard(),
            "equityCurve": self.equity_curve(),
            "tradeEquityCurve": self.trade_equity_curve(),
            "weeklyReview": self.weekly_review(year),
            "dailyRisk": self.daily_risk(),
            "distributions": self.distributions(),
        }
