"""
Journal export / import.

JSON carries both lists with in-memory (camelCase) field names:
    {"tradesOpen": [...], "tradesHistory": [...]}
CSV is a flat table of the history for spreadsheets.
"""

from __future__ import annotations

import json
import os
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import pandas as pd

from fxjournal.journal.journal_models import JournalSnapshot, Trade, TradeStatus
from fxjournal.journal.trade_normalizer import trade_from_export, trade_to_export
from fxjournal.utils.exceptions import OutOfRangeError

CSV_COLUMNS = [
    "id", "pair", "direction", "entryDate", "tradeTime", "entryPrice", "stopLoss",
    "takeProfit", "riskPercent", "lotSize", "valuePerPip", "ratio", "status",
    "closeReason", "exitDate", "exitPrice", "points", "pnlCurrency", "pnlPercent",
    "manualPnl", "session", "strategy", "note",
]


def export_payload(snapshot: JournalSnapshot) -> Dict[str, List[Dict[str, Any]]]:
    return {
        "tradesOpen": [trade_to_export(t) for t in snapshot.open],
        "tradesHistory": [trade_to_export(t) for t in snapshot.history],
    }


def parse_import(
    payload: Union[str, bytes, Dict[str, Any]],
    user_id: str,
    account_id: str,
) -> Tuple[List[Trade], List[Trade]]:
    """
    Decode an export payload into (open, history) for the given scope.

    Each record is re-canonicalized, so a closed trade found under
    ``tradesOpen`` lands in history and vice versa.
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError as e:
            raise OutOfRangeError(f"Import is not valid JSON: {e}", "payload") from e
    if not isinstance(payload, dict) or not ({"tradesOpen", "tradesHistory"} & set(payload)):
        raise OutOfRangeError("Import must contain tradesOpen and/or tradesHistory", "payload")

    records = []
    for key in ("tradesOpen", "tradesHistory"):
        items = payload.get(key) or []
        if not isinstance(items, list):
            raise OutOfRangeError(f"{key} must be a list", key)
        for item in items:
            if not isinstance(item, dict):
                raise OutOfRangeError(f"{key} entries must be objects", key)
            records.append(item)

    open_trades, history = [], []
    for record in records:
        trade = trade_from_export(record)
        trade.user_id = user_id
        trade.account_id = account_id
        (open_trades if trade.status is TradeStatus.OPEN else history).append(trade)
    return open_trades, history


def history_frame(trades: Iterable[Trade]) -> pd.DataFrame:
    rows = [trade_to_export(t) for t in trades]
    df = pd.DataFrame(rows, columns=CSV_COLUMNS)
    if not df.empty:
        df["exitDate"] = pd.to_datetime(df["exitDate"], utc=True, errors="coerce")
        df = df.sort_values("exitDate", kind="stable")
        df["exitDate"] = df["exitDate"].dt.strftime("%Y-%m-%dT%H:%M:%S%z")
        df["cumulativePnl"] = df["pnlCurrency"].fillna(0).cumsum().round(2)
    return df


def export_csv(trades: Iterable[Trade], path: Optional[str] = None) -> str:
    """History as CSV text; also written to ``path`` when given."""
    csv_text = history_frame(trades).to_csv(index=False)
    if path:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(csv_text)
    return csv_text
