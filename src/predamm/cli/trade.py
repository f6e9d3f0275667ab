"""Trade subcommand: quote, execute, ledger."""

from __future__ import annotations

import typer

from predamm.amm import AMMError
from predamm.models import TradeAction
from predamm.storage.db import get_connection, init_schema
from predamm.storage.ledger import ledger_totals, list_trades
from predamm.trading.errors import SettlementError
from predamm.trading.settlement import TradeSettler

app = typer.Typer(help="Quote and execute trades against AMM markets")


@app.command("quote")
def quote(
    ctx: typer.Context,
    market_id: str = typer.Argument(..., help="Market ID"),
    outcome_id: str = typer.Argument(..., help="Outcome ID"),
    action: TradeAction = typer.Option(TradeAction.BUY, "--action", "-a", help="buy or sell"),
    amount: float = typer.Option(..., "--amount", "-n", help="Dollars (buy) or shares (sell)"),
) -> None:
    """Preview a trade without executing it."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        est = TradeSettler(conn, settings).estimate(market_id, outcome_id, action, amount)
        label = "Cost" if action is TradeAction.BUY else "Payout"
        typer.echo(f"Shares: {est.shares_received:.4f}  Effective price: {est.effective_price:.4f}")
        typer.echo(f"{label}: {est.total_cost:.2f}  Fees: {est.fees:.2f}  Impact: {est.price_impact:+.2f}%")
    except (AMMError, SettlementError) as e:
        typer.echo(f"Error: {e}")
        raise typer.Exit(1)
    finally:
        conn.close()


@app.command("execute")
def execute(
    ctx: typer.Context,
    market_id: str = typer.Argument(..., help="Market ID"),
    outcome_id: str = typer.Argument(..., help="Outcome ID"),
    action: TradeAction = typer.Option(TradeAction.BUY, "--action", "-a", help="buy or sell"),
    amount: float = typer.Option(..., "--amount", "-n", help="Dollars (buy) or shares (sell)"),
    user_id: str | None = typer.Option(None, "--user", "-u", help="User ID recorded in the ledger"),
) -> None:
    """Execute a market order and record it in the ledger."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        s = TradeSettler(conn, settings).execute(market_id, outcome_id, action, amount, user_id=user_id)
        r = s.result
        typer.echo(f"Trade #{s.ledger_id}  market version {s.version}")
        typer.echo(f"Shares: {r.shares_received:.4f}  Effective price: {r.effective_price:.4f}")
        typer.echo(f"Total: {r.total_cost:.2f}  Fees: {r.fees:.2f}  Impact: {r.price_impact:+.2f}%")
        for oid, price in r.new_prices.items():
            typer.echo(f"  {oid:<16} {price:.4f}")
    except (AMMError, SettlementError) as e:
        typer.echo(f"Error: {e}")
        raise typer.Exit(1)
    finally:
        conn.close()


@app.command("ledger")
def ledger(
    ctx: typer.Context,
    market_id: str = typer.Argument(..., help="Market ID"),
    limit: int = typer.Option(20, "--limit", "-n", help="Max trades to show"),
) -> None:
    """Show recent trades and fee totals for a market."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        for t in list_trades(conn, market_id, limit=limit):
            typer.echo(
                f"  #{t['id']:<5} {t['action']:<4} {t['outcome_id']:<16} amount {t['amount']:.4f}  "
                f"shares {t['shares']:.4f}  total {t['total_cost']:.2f}  fees {t['fees']:.2f}"
            )
        totals = ledger_totals(conn, market_id)
        typer.echo(
            f"Trades: {totals['trade_count']}  Fees: {totals['fees']:.2f}  "
            f"Buy volume: {totals['buy_volume']:.2f}  Sell payouts: {totals['sell_payouts']:.2f}"
        )
    finally:
        conn.close()
