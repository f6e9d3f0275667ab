"""CLI tests via typer's CliRunner."""

import pytest
from typer.testing import CliRunner

from predamm.cli import app as app_module
from predamm.cli.app import app

runner = CliRunner()


@pytest.fixture
def config_dir(tmp_path, db_path, monkeypatch):
    # Keep structlog at its defaults so cached loggers never bind to the runner's stdout
    monkeypatch.setattr(app_module, "configure_logging", lambda settings: None)
    (tmp_path / "default.toml").write_text(
        f'[amm]\nfee_rate = 0.0\n\n[storage]\ndb_path = "{db_path.as_posix()}"\n\n[logging]\nlevel = "ERROR"\n',
        encoding="utf-8",
    )
    return tmp_path


def _invoke(config_dir, *args):
    return runner.invoke(app, ["--config-dir", str(config_dir), *args])


def test_market_create_and_show(config_dir):
    result = _invoke(config_dir, "market", "create", "derby", "-o", "home", "-o", "away", "--liquidity", "1000")
    assert result.exit_code == 0, result.output
    assert "home" in result.output
    assert "0.5000" in result.output

    result = _invoke(config_dir, "market", "show", "derby")
    assert result.exit_code == 0, result.output
    assert "Valid: yes" in result.output

    result = _invoke(config_dir, "market", "list")
    assert "Total: 1 markets" in result.output


def test_market_create_needs_two_outcomes(config_dir):
    result = _invoke(config_dir, "market", "create", "solo", "-o", "yes")
    assert result.exit_code == 1
    assert "Error" in result.output


def test_quote_execute_ledger(config_dir):
    _invoke(config_dir, "market", "create", "derby", "-o", "home", "-o", "away")

    result = _invoke(config_dir, "trade", "quote", "derby", "home", "--amount", "100")
    assert result.exit_code == 0, result.output
    assert "Shares: 83.3333" in result.output

    result = _invoke(config_dir, "trade", "execute", "derby", "home", "--amount", "100", "--user", "alice")
    assert result.exit_code == 0, result.output
    assert "Trade #" in result.output
    assert "market version 2" in result.output

    result = _invoke(config_dir, "trade", "execute", "derby", "home", "--action", "sell", "--amount", "5000")
    assert result.exit_code == 1
    assert "Error" in result.output

    result = _invoke(config_dir, "trade", "ledger", "derby")
    assert result.exit_code == 0, result.output
    assert "Trades: 1" in result.output


def test_closed_market_rejects_trades(config_dir):
    _invoke(config_dir, "market", "create", "derby", "-o", "home", "-o", "away")
    result = _invoke(config_dir, "market", "close", "derby")
    assert result.exit_code == 0, result.output

    result = _invoke(config_dir, "trade", "execute", "derby", "home", "--amount", "10")
    assert result.exit_code == 1
    assert "not open" in result.output


def test_rebalance_command(config_dir):
    _invoke(config_dir, "market", "create", "derby", "-o", "home", "-o", "away")
    _invoke(config_dir, "trade", "execute", "derby", "away", "--amount", "200")
    result = _invoke(config_dir, "market", "rebalance", "derby")
    assert result.exit_code == 0, result.output
    assert "Rebalanced." in result.output
    assert "Version: 3" in result.output


def test_sim_run(config_dir):
    result = _invoke(config_dir, "sim", "run", "--trades", "50", "--seed", "1")
    assert result.exit_code == 0, result.output
    assert "Buys:" in result.output
    assert "Min reserve:" in result.output
