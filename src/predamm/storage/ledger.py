"""Trade ledger persistence (append-only)."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

from predamm.models import TradeAction, TradeResult

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

_COLUMNS = [
    "id",
    "market_id",
    "outcome_id",
    "user_id",
    "action",
    "amount",
    "shares",
    "effective_price",
    "price_impact",
    "total_cost",
    "fees",
    "market_version",
    "created_at",
]


def append_trade(
    conn: DuckDBPyConnection,
    market_id: str,
    outcome_id: str,
    action: TradeAction,
    amount: float,
    result: TradeResult,
    market_version: int,
    user_id: str | None = None,
) -> int:
    """Append one settled trade. Returns the ledger id."""
    row = conn.execute(
        """
        INSERT INTO trade_ledger (market_id, outcome_id, user_id, action, amount, shares, effective_price, price_impact, total_cost, fees, market_version, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        RETURNING id
        """,
        [
            market_id,
            outcome_id,
            user_id,
            TradeAction(action).value,
            amount,
            result.shares_received,
            result.effective_price,
            result.price_impact,
            result.total_cost,
            result.fees,
            market_version,
            int(time.time() * 1000),
        ],
    ).fetchone()
    return row[0]


def list_trades(conn: DuckDBPyConnection, market_id: str, limit: int = 100) -> list[dict[str, Any]]:
    """Most recent trades for a market, newest first."""
    rows = conn.execute(
        f"SELECT {', '.join(_COLUMNS)} FROM trade_ledger WHERE market_id = ? ORDER BY id DESC LIMIT ?",
        [market_id, limit],
    ).fetchall()
    return [dict(zip(_COLUMNS, r)) for r in rows]


def ledger_totals(conn: DuckDBPyConnection, market_id: str) -> dict[str, Any]:
    """Trade count, fees collected and dollar volume per side for a market."""
    row = conn.execute(
        """
        SELECT COUNT(*),
               COALESCE(SUM(fees), 0),
               COALESCE(SUM(CASE WHEN action = 'buy' THEN total_cost ELSE 0 END), 0),
               COALESCE(SUM(CASE WHEN action = 'sell' THEN total_cost ELSE 0 END), 0)
        FROM trade_ledger WHERE market_id = ?
        """,
        [market_id],
    ).fetchone()
    return {
        "trade_count": row[0],
        "fees": row[1],
        "buy_volume": row[2],
        "sell_payouts": row[3],
    }


def user_position(conn: DuckDBPyConnection, market_id: str, outcome_id: str, user_id: str | None) -> float:
    """Net shares a user holds on one outcome (bought minus sold). user_id None is the anonymous book."""
    row = conn.execute(
        """
        SELECT COALESCE(SUM(CASE WHEN action = 'buy' THEN shares ELSE -shares END), 0)
        FROM trade_ledger
        WHERE market_id = ? AND outcome_id = ? AND user_id IS NOT DISTINCT FROM ?::VARCHAR
        """,
        [market_id, outcome_id, user_id],
    ).fetchone()
    return float(row[0])
