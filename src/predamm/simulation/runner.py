"""Experiment runner: seeded random buys/sells against one pool, tracking invariants."""

from __future__ import annotations

import random
import uuid
from dataclasses import dataclass, field

import structlog

from predamm.amm import AMMCalculator, AMMError
from predamm.models import MarketState

log = structlog.get_logger(__name__)


@dataclass
class SimulationResult:
    """Result of a simulation run."""

    run_id: str
    trades: int
    buys: int
    sells: int
    rejected: int
    rebalances: int
    fees_collected: float
    buy_volume: float
    sell_payouts: float
    min_reserve: float
    max_k_drift: float  # max |prod(R)/k - 1| observed after a trade
    final_state: MarketState
    params: dict = field(default_factory=dict)


def run_random_trades(
    calculator: AMMCalculator,
    state: MarketState,
    trades: int = 100,
    seed: int | None = None,
    max_buy: float = 100.0,
    sell_fraction: float = 0.3,
) -> SimulationResult:
    """Apply `trades` random trades. Sells take a random slice of the outcome's issued shares.

    Rejected trades (engine errors) are counted and skipped. Pools that fail validation or
    drift from k beyond the validation tolerance are rebalanced before the next trade.
    """
    rng = random.Random(seed)
    buys = sells = rejected = rebalances = 0
    fees = buy_volume = sell_payouts = 0.0
    min_reserve = min(state.reserves.values())
    max_k_drift = 0.0

    for _ in range(trades):
        drift = abs(state.reserve_product() / state.k_constant - 1)
        if drift > calculator.config.k_validation_tolerance or not calculator.validate_market_state(state):
            state = calculator.rebalance_market(state)
            rebalances += 1
        outcome_id = rng.choice(state.outcome_ids)
        try:
            if rng.random() < sell_fraction and state.outcomes[outcome_id].shares > 0:
                size = state.outcomes[outcome_id].shares * rng.uniform(0.01, 0.5)
                result = calculator.calculate_sell(state, outcome_id, size)
                sells += 1
                sell_payouts += result.total_cost
            else:
                amount = rng.uniform(1.0, max_buy)
                result = calculator.calculate_buy(state, outcome_id, amount)
                buys += 1
                buy_volume += result.total_cost
        except AMMError as e:
            rejected += 1
            log.debug("sim_trade_rejected", outcome_id=outcome_id, error=str(e))
            continue
        fees += result.fees
        state = result.apply_to(state)
        min_reserve = min(min_reserve, *state.reserves.values())
        max_k_drift = max(max_k_drift, abs(state.reserve_product() / state.k_constant - 1))

    run_id = str(uuid.uuid4())[:8]
    log.info(
        "sim_finished",
        run_id=run_id,
        buys=buys,
        sells=sells,
        rejected=rejected,
        rebalances=rebalances,
        fees=fees,
    )
    return SimulationResult(
        run_id=run_id,
        trades=trades,
        buys=buys,
        sells=sells,
        rejected=rejected,
        rebalances=rebalances,
        fees_collected=fees,
        buy_volume=buy_volume,
        sell_payouts=sell_payouts,
        min_reserve=min_reserve,
        max_k_drift=max_k_drift,
        final_state=state,
        params={"seed": seed, "max_buy": max_buy, "sell_fraction": sell_fraction},
    )
