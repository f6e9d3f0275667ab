"""AMM market snapshot persistence (amm_markets + amm_outcomes)."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from predamm.models import MarketState, OutcomeState
from predamm.trading.errors import MarketExists, StaleMarketState

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

MARKET_OPEN = "open"
MARKET_CLOSED = "closed"


@dataclass
class StoredMarket:
    """Persisted market row plus its pool snapshot."""

    market_id: str
    title: str | None
    status: str
    fee_rate: float
    version: int
    created_at: int
    updated_at: int
    state: MarketState

    @property
    def is_open(self) -> bool:
        return self.status == MARKET_OPEN


def _now_ms() -> int:
    return int(time.time() * 1000)


def insert_market(
    conn: DuckDBPyConnection,
    market_id: str,
    state: MarketState,
    fee_rate: float,
    title: str | None = None,
) -> StoredMarket:
    """Insert a freshly initialized market at version 1."""
    exists = conn.execute("SELECT 1 FROM amm_markets WHERE market_id = ?", [market_id]).fetchone()
    if exists:
        raise MarketExists(f"Market already exists: {market_id}")
    now_ms = _now_ms()
    conn.execute(
        """
        INSERT INTO amm_markets (market_id, title, status, fee_rate, total_liquidity, k_constant, version, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?)
        """,
        [market_id, title, MARKET_OPEN, fee_rate, state.total_liquidity, state.k_constant, now_ms, now_ms],
    )
    for position, (outcome_id, outcome) in enumerate(state.outcomes.items()):
        conn.execute(
            """
            INSERT INTO amm_outcomes (market_id, outcome_id, position, shares, reserve, current_price)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [market_id, outcome_id, position, outcome.shares, outcome.reserve, outcome.current_price],
        )
    return StoredMarket(
        market_id=market_id,
        title=title,
        status=MARKET_OPEN,
        fee_rate=fee_rate,
        version=1,
        created_at=now_ms,
        updated_at=now_ms,
        state=state,
    )


def get_market(conn: DuckDBPyConnection, market_id: str) -> StoredMarket | None:
    """Load market row and pool snapshot. None if not found."""
    row = conn.execute(
        """
        SELECT market_id, title, status, fee_rate, total_liquidity, k_constant, version, created_at, updated_at
        FROM amm_markets WHERE market_id = ?
        """,
        [market_id],
    ).fetchone()
    if not row:
        return None
    outcome_rows = conn.execute(
        "SELECT outcome_id, shares, reserve, current_price FROM amm_outcomes WHERE market_id = ? ORDER BY position",
        [market_id],
    ).fetchall()
    state = MarketState(
        outcomes={
            r[0]: OutcomeState(shares=r[1], reserve=r[2], current_price=r[3]) for r in outcome_rows
        },
        total_liquidity=row[4],
        k_constant=row[5],
    )
    return StoredMarket(
        market_id=row[0],
        title=row[1],
        status=row[2],
        fee_rate=row[3],
        version=row[6],
        created_at=row[7],
        updated_at=row[8],
        state=state,
    )


def save_market_state(
    conn: DuckDBPyConnection, market_id: str, state: MarketState, expected_version: int
) -> int:
    """Replace the pool snapshot if the row is still at expected_version. Returns the new version.

    Run inside the caller's transaction together with the ledger entry.
    """
    now_ms = _now_ms()
    updated = conn.execute(
        """
        UPDATE amm_markets
        SET total_liquidity = ?, k_constant = ?, version = version + 1, updated_at = ?
        WHERE market_id = ? AND version = ?
        """,
        [state.total_liquidity, state.k_constant, now_ms, market_id, expected_version],
    ).fetchone()
    if not updated or updated[0] == 0:
        raise StaleMarketState(f"Market {market_id} changed since version {expected_version}")
    for outcome_id, outcome in state.outcomes.items():
        conn.execute(
            """
            UPDATE amm_outcomes SET shares = ?, reserve = ?, current_price = ?
            WHERE market_id = ? AND outcome_id = ?
            """,
            [outcome.shares, outcome.reserve, outcome.current_price, market_id, outcome_id],
        )
    return expected_version + 1


def set_market_status(conn: DuckDBPyConnection, market_id: str, status: str) -> bool:
    """Set open/closed status. Returns False if the market does not exist."""
    updated = conn.execute(
        "UPDATE amm_markets SET status = ?, updated_at = ? WHERE market_id = ?",
        [status, _now_ms(), market_id],
    ).fetchone()
    return bool(updated and updated[0])


def list_markets(conn: DuckDBPyConnection, status: str | None = None) -> list[dict]:
    """List markets (optionally by status) as list of dicts, newest first."""
    sql = """
        SELECT m.market_id, m.title, m.status, m.fee_rate, m.total_liquidity, m.k_constant, m.version,
               m.created_at, m.updated_at, COUNT(o.outcome_id) AS outcome_count
        FROM amm_markets m
        LEFT JOIN amm_outcomes o ON m.market_id = o.market_id
    """
    params: list = []
    if status:
        sql += " WHERE m.status = ?"
        params.append(status)
    sql += " GROUP BY ALL ORDER BY m.created_at DESC, m.market_id"
    rows = conn.execute(sql, params).fetchall()
    columns = [
        "market_id",
        "title",
        "status",
        "fee_rate",
        "total_liquidity",
        "k_constant",
        "version",
        "created_at",
        "updated_at",
        "outcome_count",
    ]
    return [dict(zip(columns, r)) for r in rows]
