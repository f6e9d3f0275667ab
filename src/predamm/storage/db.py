"""DuckDB connection and schema init."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import duckdb

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

SCHEMA_SQL = """
-- Sequences for auto-increment IDs
CREATE SEQUENCE IF NOT EXISTS ledger_seq START 1;

-- One row per AMM market, the version column guards read-modify-write of the pool
CREATE TABLE IF NOT EXISTS amm_markets (
    market_id       VARCHAR PRIMARY KEY,
    title           VARCHAR,
    status          VARCHAR NOT NULL,
    fee_rate        DOUBLE NOT NULL,
    total_liquidity DOUBLE NOT NULL,
    k_constant      DOUBLE NOT NULL,
    version         BIGINT NOT NULL,
    created_at      BIGINT NOT NULL,
    updated_at      BIGINT NOT NULL
);

-- Pool position per outcome (position keeps outcome order stable)
CREATE TABLE IF NOT EXISTS amm_outcomes (
    market_id       VARCHAR NOT NULL,
    outcome_id      VARCHAR NOT NULL,
    position        INTEGER NOT NULL,
    shares          DOUBLE NOT NULL,
    reserve         DOUBLE NOT NULL,
    current_price   DOUBLE NOT NULL
);

-- Settled trades (append-only)
CREATE TABLE IF NOT EXISTS trade_ledger (
    id              BIGINT PRIMARY KEY DEFAULT nextval('ledger_seq'),
    market_id       VARCHAR NOT NULL,
    outcome_id      VARCHAR NOT NULL,
    user_id         VARCHAR,
    action          VARCHAR NOT NULL,
    amount          DOUBLE NOT NULL,
    shares          DOUBLE NOT NULL,
    effective_price DOUBLE NOT NULL,
    price_impact    DOUBLE NOT NULL,
    total_cost      DOUBLE NOT NULL,
    fees            DOUBLE NOT NULL,
    market_version  BIGINT NOT NULL,
    created_at      BIGINT NOT NULL
);
"""


def get_connection(db_path: str | Path, read_only: bool = False) -> DuckDBPyConnection:
    """Return a DuckDB connection. Caller must close or use as context manager."""
    path = Path(db_path)
    if not read_only:
        path.parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(str(path), read_only=read_only)


def init_schema(conn: DuckDBPyConnection) -> None:
    """Create tables and sequences if they do not exist."""
    for stmt in SCHEMA_SQL.split(";"):
        stmt = stmt.strip()
        if stmt:
            try:
                conn.execute(stmt)
            except duckdb.Error as e:
                if "already exists" not in str(e).lower():
                    raise
