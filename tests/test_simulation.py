"""Random-trade simulation tests."""

import pytest

from predamm.amm import AMMCalculator, AMMConfig
from predamm.simulation.runner import run_random_trades


def _run(seed, fee_rate=0.03, outcomes=("home", "draw", "away"), trades=200):
    amm = AMMCalculator(AMMConfig(fee_rate=fee_rate))
    state = amm.initialize_market(list(outcomes), 3000)
    return amm, run_random_trades(amm, state, trades=trades, seed=seed, max_buy=250)


def test_simulation_keeps_pool_healthy():
    amm, result = _run(seed=7)
    assert result.buys + result.sells + result.rejected == result.trades == 200
    assert result.buys > 0
    assert result.sells > 0
    assert result.min_reserve > 0
    prices = amm.calculate_current_prices(result.final_state)
    assert sum(prices.values()) == pytest.approx(1.0)
    assert all(s > 0 for s in result.final_state.shares.values())


def test_simulation_collects_fees():
    _, result = _run(seed=11, fee_rate=0.03)
    assert result.fees_collected > 0
    assert result.fees_collected == pytest.approx(0.03 * (result.buy_volume + result.sell_payouts / 0.97))


def test_simulation_without_fees():
    _, result = _run(seed=11, fee_rate=0.0)
    assert result.fees_collected == 0


def test_simulation_is_reproducible():
    _, first = _run(seed=3, outcomes=("yes", "no"))
    _, second = _run(seed=3, outcomes=("yes", "no"))
    assert first.final_state.reserves == second.final_state.reserves
    assert first.buys == second.buys
    assert first.run_id != second.run_id
    assert first.params == {"seed": 3, "max_buy": 250, "sell_fraction": 0.3}
