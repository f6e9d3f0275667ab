"""Sim subcommand: run."""

from __future__ import annotations

import typer

from predamm.amm import AMMCalculator, AMMError
from predamm.simulation.runner import run_random_trades

app = typer.Typer(help="Random-trade simulation against an in-memory pool")


@app.command("run")
def run_sim(
    ctx: typer.Context,
    outcome: list[str] = typer.Option(["home", "away"], "--outcome", "-o", help="Outcome ID (repeat)"),
    liquidity: float | None = typer.Option(None, "--liquidity", "-l", help="Seed liquidity"),
    trades: int = typer.Option(100, "--trades", "-n", help="Number of trades"),
    seed: int | None = typer.Option(None, "--seed", help="RNG seed for reproducible runs"),
    max_buy: float = typer.Option(100.0, "--max-buy", help="Largest random buy in dollars"),
    sell_fraction: float = typer.Option(0.3, "--sell-fraction", help="Probability a trade is a sell"),
    fee_rate: float | None = typer.Option(None, "--fee-rate", help="Fee rate (default from config)"),
) -> None:
    """Run random buys/sells and report pool invariants."""
    settings = ctx.obj["settings"]
    try:
        calculator = AMMCalculator(settings.amm_config(fee_rate=fee_rate))
        state = calculator.initialize_market(
            outcome, settings.default_liquidity if liquidity is None else liquidity
        )
    except (AMMError, ValueError) as e:
        typer.echo(f"Error: {e}")
        raise typer.Exit(1)
    result = run_random_trades(
        calculator, state, trades=trades, seed=seed, max_buy=max_buy, sell_fraction=sell_fraction
    )
    typer.echo(f"Run id: {result.run_id}")
    typer.echo(f"Buys: {result.buys}  Sells: {result.sells}  Rejected: {result.rejected}  Rebalances: {result.rebalances}")
    typer.echo(f"Fees: {result.fees_collected:.2f}  Buy volume: {result.buy_volume:.2f}  Sell payouts: {result.sell_payouts:.2f}")
    typer.echo(f"Min reserve: {result.min_reserve:.4f}  Max k drift: {result.max_k_drift:.4%}")
    prices = calculator.calculate_current_prices(result.final_state)
    for oid, price in prices.items():
        typer.echo(f"  {oid:<16} {price:.4f}")
