"""Shared fixtures: temp DuckDB file and settings pointing at it."""

import tempfile
from pathlib import Path

import pytest

from predamm.config import Settings
from predamm.storage.db import get_connection, init_schema


@pytest.fixture
def db_path():
    tmp = tempfile.mkdtemp()
    path = Path(tmp) / "test.duckdb"
    yield path
    path.unlink(missing_ok=True)
    for leftover in Path(tmp).iterdir():
        leftover.unlink()
    Path(tmp).rmdir()


@pytest.fixture
def settings(db_path):
    return Settings(amm={"fee_rate": 0.0}, storage={"db_path": str(db_path)}, logging={"level": "ERROR"})


@pytest.fixture
def temp_db(db_path):
    conn = get_connection(db_path)
    init_schema(conn)
    yield conn
    conn.close()
