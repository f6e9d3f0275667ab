"""Market subcommand: create, list, show, rebalance, close."""

from __future__ import annotations

import typer

from predamm.amm import AMMError
from predamm.storage.amm_markets import list_markets as storage_list_markets
from predamm.storage.db import get_connection, init_schema
from predamm.trading.errors import SettlementError
from predamm.trading.settlement import TradeSettler

app = typer.Typer(help="AMM market lifecycle and maintenance")


def _echo_pool(settler: TradeSettler, market_id: str) -> None:
    market = settler.load(market_id)
    calculator = settler.calculator_for(market)
    prices = calculator.calculate_current_prices(market.state)
    typer.echo(f"Market: {market.market_id}  {market.title or ''}".rstrip())
    typer.echo(
        f"Status: {market.status}  Fee: {market.fee_rate:.2%}  Version: {market.version}  "
        f"Liquidity: {market.state.total_liquidity:.2f}  k: {market.state.k_constant:.6g}"
    )
    for outcome_id, outcome in market.state.outcomes.items():
        typer.echo(
            f"  {outcome_id:<16} price {prices[outcome_id]:.4f}  "
            f"reserve {outcome.reserve:.4f}  shares {outcome.shares:.4f}"
        )


@app.command("create")
def create(
    ctx: typer.Context,
    market_id: str = typer.Argument(..., help="Market ID"),
    outcome: list[str] = typer.Option(..., "--outcome", "-o", help="Outcome ID (repeat, at least two)"),
    liquidity: float | None = typer.Option(None, "--liquidity", "-l", help="Seed liquidity (default from config)"),
    fee_rate: float | None = typer.Option(None, "--fee-rate", help="Fee rate (default from config)"),
    title: str | None = typer.Option(None, "--title", "-t", help="Market title"),
) -> None:
    """Create a market with equal reserves across outcomes."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        settler = TradeSettler(conn, settings)
        settler.create_market(market_id, outcome, total_liquidity=liquidity, fee_rate=fee_rate, title=title)
        _echo_pool(settler, market_id)
    except (AMMError, SettlementError, ValueError) as e:
        typer.echo(f"Error: {e}")
        raise typer.Exit(1)
    finally:
        conn.close()


@app.command("list")
def list_markets(
    ctx: typer.Context,
    status: str | None = typer.Option(None, "--status", help="Filter by status (open, closed)"),
) -> None:
    """List markets in the local database."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        rows = storage_list_markets(conn, status=status)
        for r in rows:
            title = (r.get("title") or "")[:40]
            typer.echo(
                f"  {r['market_id'][:24]:<24}  {r['status']:<6}  {r['outcome_count']} outcomes  "
                f"{r['total_liquidity']:.0f}  {title}"
            )
        typer.echo(f"Total: {len(rows)} markets")
    finally:
        conn.close()


@app.command("show")
def show(
    ctx: typer.Context,
    market_id: str = typer.Argument(..., help="Market ID"),
) -> None:
    """Show pool state and validation status."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        settler = TradeSettler(conn, settings)
        _echo_pool(settler, market_id)
        market = settler.load(market_id)
        state = market.state
        valid = settler.calculator_for(market).validate_market_state(state)
        typer.echo(f"Valid: {'yes' if valid else 'no'}")
        if state.k_constant > 0:
            typer.echo(f"k drift: {state.reserve_product() / state.k_constant - 1:+.4%}")
    except (AMMError, SettlementError) as e:
        typer.echo(f"Error: {e}")
        raise typer.Exit(1)
    finally:
        conn.close()


@app.command("rebalance")
def rebalance(
    ctx: typer.Context,
    market_id: str = typer.Argument(..., help="Market ID"),
) -> None:
    """Snap reserves back onto total liquidity (prices unchanged)."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        settler = TradeSettler(conn, settings)
        settler.rebalance(market_id)
        typer.echo("Rebalanced.")
        _echo_pool(settler, market_id)
    except (AMMError, SettlementError) as e:
        typer.echo(f"Error: {e}")
        raise typer.Exit(1)
    finally:
        conn.close()


@app.command("close")
def close(
    ctx: typer.Context,
    market_id: str = typer.Argument(..., help="Market ID"),
) -> None:
    """Stop trading on a market."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        TradeSettler(conn, settings).close_market(market_id)
        typer.echo(f"Closed {market_id}")
    except SettlementError as e:
        typer.echo(f"Error: {e}")
        raise typer.Exit(1)
    finally:
        conn.close()
