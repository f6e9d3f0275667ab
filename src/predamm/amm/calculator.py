"""Constant-product multi-outcome market maker.

Pure pricing engine over an explicit MarketState. The calculator holds only an
immutable AMMConfig; every operation returns new values and never touches the
snapshot it was handed. Persisting the result (and serializing concurrent
trades on one market) is the caller's job, see predamm.trading.settlement.

For N outcomes with reserves R_1..R_N the pool is anchored to k = prod(R_i).
Buying outcome i with a (after fees) pays out

    S = R_i * (1 - (k / (k + a * prod_{j != i} R_j)) ** (1 / (N - 1)))

and spreads a over the other reserves. Selling uses a slippage heuristic rather
than the inverse of the buy curve, so a buy followed by a sell of the same
shares does not round-trip to zero.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from enum import Enum

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator

from predamm.amm.errors import (
    InsufficientShares,
    InvalidMarketSetup,
    InvalidMarketState,
    InvalidPoolState,
    InvalidTradeAmount,
    OutcomeNotFound,
)
from predamm.models.market import MarketState, OutcomeState
from predamm.models.trade import TradeAction, TradeEstimate, TradeResult

log = structlog.get_logger(__name__)

DEFAULT_LIQUIDITY = 1000.0

# Risk tuning; overridable per AMMConfig
MAX_BUY_FRACTION = 0.95
K_REBALANCE_TOLERANCE = 0.01
K_VALIDATION_TOLERANCE = 0.10
PRICE_SUM_TOLERANCE = 0.01
MIN_SELL_RESERVE = 0.01


class PriceModel(str, Enum):
    """How reserves project to prices.

    inverse_reserve: p_i proportional to 1 / R_i (buying an outcome raises its price).
    reserve_share:   p_i = R_i / sum(R), the pool-share reading.
    """

    INVERSE_RESERVE = "inverse_reserve"
    RESERVE_SHARE = "reserve_share"


class AMMConfig(BaseModel):
    """Immutable calculator configuration. One per fee schedule."""

    model_config = ConfigDict(frozen=True)

    fee_rate: float = Field(0.0, ge=0, lt=1, description="Fraction of notional kept as fee")
    min_price: float = Field(0.01, ge=0, le=1, description="Display floor (not enforced in trade math)")
    max_price: float = Field(0.99, ge=0, le=1, description="Display cap (not enforced in trade math)")
    k_constant: float | None = Field(None, gt=0, description="Fallback k for snapshots without one")
    price_model: PriceModel = PriceModel.INVERSE_RESERVE
    max_buy_fraction: float = Field(MAX_BUY_FRACTION, gt=0, lt=1)
    k_rebalance_tolerance: float = Field(K_REBALANCE_TOLERANCE, ge=0)
    k_validation_tolerance: float = Field(K_VALIDATION_TOLERANCE, ge=0)
    price_sum_tolerance: float = Field(PRICE_SUM_TOLERANCE, ge=0)
    min_sell_reserve: float = Field(MIN_SELL_RESERVE, gt=0)

    @model_validator(mode="after")
    def _check_price_bounds(self) -> AMMConfig:
        if self.min_price >= self.max_price:
            raise ValueError(f"min_price ({self.min_price}) must be below max_price ({self.max_price})")
        return self


class AMMCalculator:
    """Stateless CPMM pricing over MarketState snapshots."""

    __slots__ = ("config",)

    def __init__(self, config: AMMConfig | None = None) -> None:
        self.config = config or AMMConfig()

    def __repr__(self) -> str:
        return f"AMMCalculator(fee_rate={self.config.fee_rate}, price_model={self.config.price_model.value})"

    # --- Market setup ---

    def initialize_market(
        self, outcome_ids: Iterable[str], total_liquidity: float = DEFAULT_LIQUIDITY
    ) -> MarketState:
        """Seed a pool with equal reserves (liquidity / N) and equal prices (1 / N)."""
        ids = list(outcome_ids)
        if not ids:
            raise InvalidMarketSetup("Market needs at least two outcomes, got none")
        if len(ids) < 2:
            raise InvalidMarketSetup(f"Market needs at least two outcomes, got {ids}")
        if len(set(ids)) != len(ids):
            raise InvalidMarketSetup(f"Outcome ids must be unique: {ids}")
        if not (total_liquidity > 0 and math.isfinite(total_liquidity)):
            raise InvalidMarketSetup(f"total_liquidity must be positive and finite, got {total_liquidity}")

        n = len(ids)
        equal_reserve = total_liquidity / n
        outcomes = {
            oid: OutcomeState(shares=equal_reserve, reserve=equal_reserve, current_price=1 / n)
            for oid in ids
        }
        k_constant = math.prod(o.reserve for o in outcomes.values())
        log.debug("amm_market_initialized", outcomes=n, total_liquidity=total_liquidity, k_constant=k_constant)
        return MarketState(outcomes=outcomes, total_liquidity=total_liquidity, k_constant=k_constant)

    # --- Trades ---

    def calculate_buy(self, state: MarketState, outcome_id: str, dollar_amount: float) -> TradeResult:
        """Spend dollar_amount on outcome_id. Returns shares, prices and the new pool."""
        buying = self._outcome(state, outcome_id)
        if not (dollar_amount > 0 and math.isfinite(dollar_amount)):
            raise InvalidTradeAmount(f"Buy amount must be positive and finite, got {dollar_amount}")
        k = self._effective_k(state)

        fees = dollar_amount * self.config.fee_rate
        amount_after_fees = dollar_amount - fees

        shares = self._shares_from_buy(state, outcome_id, amount_after_fees, k)
        new_reserves = self._reserves_after_buy(state, outcome_id, shares, amount_after_fees, k)
        new_shares = {
            oid: o.shares + shares if oid == outcome_id else o.shares
            for oid, o in state.outcomes.items()
        }
        new_prices = self._prices_from_reserves(new_reserves)

        current_price = buying.current_price
        effective_price = dollar_amount / shares if shares > 0 else current_price
        price_impact = _price_impact(effective_price, current_price)

        log.debug(
            "amm_buy",
            outcome_id=outcome_id,
            dollar_amount=dollar_amount,
            fees=fees,
            shares=shares,
            effective_price=effective_price,
            price_impact=price_impact,
            new_reserves=new_reserves,
        )
        return TradeResult(
            shares_received=shares,
            effective_price=effective_price,
            price_impact=price_impact,
            total_cost=dollar_amount,
            fees=fees,
            new_prices=new_prices,
            new_reserves=new_reserves,
            new_shares=new_shares,
        )

    def calculate_sell(self, state: MarketState, outcome_id: str, shares_to_sell: float) -> TradeResult:
        """Sell shares of outcome_id back to the pool. total_cost is the net payout."""
        selling = self._outcome(state, outcome_id)
        if not (shares_to_sell > 0 and math.isfinite(shares_to_sell)):
            raise InvalidTradeAmount(f"Sell size must be positive and finite, got {shares_to_sell}")
        if shares_to_sell > selling.shares:
            raise InsufficientShares(shares_to_sell, selling.shares)
        if selling.reserve <= 0:
            raise InvalidPoolState(f"Reserve for {outcome_id} is non-positive: {selling.reserve}")

        payout_before_fees = self._payout_from_sell(state, outcome_id, shares_to_sell)
        fees = payout_before_fees * self.config.fee_rate
        payout = payout_before_fees - fees

        new_reserves = self._reserves_after_sell(state, outcome_id, shares_to_sell, payout_before_fees)
        new_shares = {
            oid: o.shares - shares_to_sell if oid == outcome_id else o.shares
            for oid, o in state.outcomes.items()
        }
        new_prices = self._prices_from_reserves(new_reserves)

        current_price = selling.current_price
        effective_price = payout / shares_to_sell
        price_impact = _price_impact(effective_price, current_price)

        log.debug(
            "amm_sell",
            outcome_id=outcome_id,
            shares=shares_to_sell,
            payout_before_fees=payout_before_fees,
            payout=payout,
            fees=fees,
            effective_price=effective_price,
            price_impact=price_impact,
            new_reserves=new_reserves,
        )
        return TradeResult(
            shares_received=shares_to_sell,
            effective_price=effective_price,
            price_impact=price_impact,
            total_cost=payout,
            fees=fees,
            new_prices=new_prices,
            new_reserves=new_reserves,
            new_shares=new_shares,
        )

    def estimate_trade(
        self, state: MarketState, outcome_id: str, action: TradeAction | str, amount: float
    ) -> TradeEstimate:
        """Dry-run preview for UIs. Raises InvalidMarketState if the pool fails validation."""
        action = TradeAction(action)
        if not self.validate_market_state(state):
            raise InvalidMarketState("Invalid market state: cannot estimate trade")
        if action is TradeAction.BUY:
            result = self.calculate_buy(state, outcome_id, amount)
        else:
            result = self.calculate_sell(state, outcome_id, amount)
        return result.estimate()

    # --- Prices ---

    def calculate_current_prices(self, state: MarketState) -> dict[str, float]:
        """Project reserves to prices that sum to exactly 1."""
        if not state.outcomes:
            raise InvalidMarketState("Market has no outcomes")
        return self._prices_from_reserves(state.reserves)

    def display_prices(self, state: MarketState) -> dict[str, float]:
        """Current prices clamped to [min_price, max_price]. Presentation only."""
        lo, hi = self.config.min_price, self.config.max_price
        return {oid: min(hi, max(lo, p)) for oid, p in self.calculate_current_prices(state).items()}

    # --- Maintenance ---

    def validate_market_state(self, state: MarketState) -> bool:
        """Advisory check: positive reserves/shares and prices summing to 1. k drift only warns."""
        if not state.outcomes:
            log.error("amm_invalid_state", reason="no_outcomes")
            return False
        if not all(o.reserve > 0 and o.shares > 0 for o in state.outcomes.values()):
            log.error(
                "amm_invalid_state",
                reason="non_positive_reserve_or_shares",
                reserves=state.reserves,
                shares=state.shares,
            )
            return False

        calculated_k = state.reserve_product()
        if state.k_constant > 0:
            k_deviation = abs(calculated_k - state.k_constant) / state.k_constant
        else:
            k_deviation = math.inf
        if not k_deviation < self.config.k_validation_tolerance:
            log.warning(
                "amm_k_deviation",
                deviation_pct=k_deviation * 100,
                k_constant=state.k_constant,
                calculated_k=calculated_k,
            )

        price_sum = sum(self.calculate_current_prices(state).values())
        return abs(price_sum - 1) < self.config.price_sum_tolerance

    def rebalance_market(self, state: MarketState) -> MarketState:
        """Snap reserves back onto total_liquidity without moving observable prices.

        Targets total_liquidity * R_i / sum(R). Under reserve_share pricing this is
        total_liquidity * current_price_i; under inverse_reserve it is the only
        rescaling that leaves 1/R_i ratios (and so prices) unchanged. Shares are kept.
        """
        if not state.outcomes:
            raise InvalidMarketState("Market has no outcomes")
        if not state.total_liquidity > 0:
            raise InvalidPoolState("Cannot rebalance a market with no liquidity")
        if any(o.reserve <= 0 for o in state.outcomes.values()):
            raise InvalidPoolState(f"Cannot rebalance non-positive reserves: {state.reserves}")

        total_reserves = sum(state.reserves.values())
        target_reserves = {
            oid: state.total_liquidity * o.reserve / total_reserves for oid, o in state.outcomes.items()
        }
        new_prices = self._prices_from_reserves(target_reserves)
        new_k = math.prod(target_reserves.values())

        log.info(
            "amm_rebalanced",
            old_k=state.k_constant,
            new_k=new_k,
            reserves=target_reserves,
        )
        outcomes = {
            oid: OutcomeState(
                shares=o.shares,
                reserve=target_reserves[oid],
                current_price=new_prices[oid],
            )
            for oid, o in state.outcomes.items()
        }
        return MarketState(outcomes=outcomes, total_liquidity=state.total_liquidity, k_constant=new_k)

    # --- Internals ---

    def _outcome(self, state: MarketState, outcome_id: str) -> OutcomeState:
        try:
            return state.outcomes[outcome_id]
        except KeyError:
            raise OutcomeNotFound(outcome_id) from None

    def _effective_k(self, state: MarketState) -> float:
        if state.k_constant > 0:
            return state.k_constant
        if self.config.k_constant is not None:
            log.warning("amm_k_fallback", k_constant=state.k_constant, fallback=self.config.k_constant)
            return self.config.k_constant
        raise InvalidPoolState(f"Invalid CPMM calculation: k_constant <= 0 ({state.k_constant})")

    def _shares_from_buy(self, state: MarketState, outcome_id: str, cost: float, k: float) -> float:
        n = len(state.outcomes)
        if n < 2:
            raise InvalidPoolState(f"CPMM needs at least two outcomes, market has {n}")
        reserve = state.outcomes[outcome_id].reserve
        other_product = math.prod(o.reserve for oid, o in state.outcomes.items() if oid != outcome_id)

        denominator = k + cost * other_product
        if denominator <= 0:
            raise InvalidPoolState("Invalid CPMM calculation: denominator <= 0")

        shares = reserve * (1 - (k / denominator) ** (1 / (n - 1)))
        # Anti-drain cap: a single buy may take at most max_buy_fraction of the reserve
        return max(0.0, min(shares, reserve * self.config.max_buy_fraction))

    def _reserves_after_buy(
        self, state: MarketState, outcome_id: str, shares: float, cost: float, k: float
    ) -> dict[str, float]:
        outcomes = state.outcomes
        others = [oid for oid in outcomes if oid != outcome_id]
        total_other = sum(outcomes[oid].reserve for oid in others)
        if total_other <= 0:
            raise InvalidPoolState(f"Other reserves are non-positive: {state.reserves}")

        new_reserves: dict[str, float] = {}
        for oid in outcomes:
            if oid == outcome_id:
                new_reserves[oid] = outcomes[oid].reserve - shares
            else:
                proportion = outcomes[oid].reserve / total_other
                new_reserves[oid] = outcomes[oid].reserve + cost * proportion

        if not all(r > 0 and math.isfinite(r) for r in new_reserves.values()):
            raise InvalidPoolState(f"Buy would leave a non-positive or unbounded reserve: {new_reserves}")

        # prod(R) overflows for large buys, so compare against k in log space
        log_ratio = sum(math.log(r) for r in new_reserves.values()) - math.log(k)
        tolerance = self.config.k_rebalance_tolerance
        if log_ratio > math.log1p(tolerance) or math.exp(log_ratio) < 1 - tolerance:
            log.warning("amm_k_deviation_adjusting", log_k_ratio=log_ratio)
            n = len(outcomes)
            new_reserves = {oid: math.exp(math.log(r) - log_ratio / n) for oid, r in new_reserves.items()}

        floor = outcomes[outcome_id].reserve * (1 - self.config.max_buy_fraction)
        if new_reserves[outcome_id] < floor:
            log.warning(
                "amm_drain_floor",
                outcome_id=outcome_id,
                reserve=new_reserves[outcome_id],
                floor=floor,
            )
            new_reserves[outcome_id] = floor
        return new_reserves

    def _payout_from_sell(self, state: MarketState, outcome_id: str, shares_to_sell: float) -> float:
        selling = state.outcomes[outcome_id]
        n = len(state.outcomes)

        base_payout = shares_to_sell * selling.current_price
        slippage_adjustment = 1 - (shares_to_sell / selling.reserve) / 2
        multi_outcome_adjustment = 1 - 1 / (2 * n)
        payout = base_payout * slippage_adjustment * multi_outcome_adjustment
        if payout < 0:
            # Sells of more than twice the reserve would otherwise pay negative amounts
            log.warning("amm_sell_payout_floored", outcome_id=outcome_id, shares=shares_to_sell, payout=payout)
            return 0.0
        return payout

    def _reserves_after_sell(
        self, state: MarketState, outcome_id: str, shares_to_sell: float, payout: float
    ) -> dict[str, float]:
        outcomes = state.outcomes
        others = [oid for oid in outcomes if oid != outcome_id]
        total_other = sum(outcomes[oid].reserve for oid in others)
        if others and total_other <= 0:
            raise InvalidPoolState(f"Other reserves are non-positive: {state.reserves}")

        new_reserves: dict[str, float] = {}
        for oid in outcomes:
            if oid == outcome_id:
                new_reserves[oid] = outcomes[oid].reserve + shares_to_sell
            else:
                proportion = outcomes[oid].reserve / total_other
                new_reserves[oid] = max(self.config.min_sell_reserve, outcomes[oid].reserve - payout * proportion)
        return new_reserves

    def _prices_from_reserves(self, reserves: Mapping[str, float]) -> dict[str, float]:
        n = len(reserves)
        if any(r <= 0 for r in reserves.values()):
            return {oid: 1 / n for oid in reserves}
        if self.config.price_model is PriceModel.INVERSE_RESERVE:
            weights = {oid: 1 / r for oid, r in reserves.items()}
        else:
            weights = dict(reserves)
        total = sum(weights.values())
        return {oid: w / total for oid, w in weights.items()}


def _price_impact(effective_price: float, current_price: float) -> float:
    """Percent move of the effective price vs. the pre-trade price."""
    if current_price <= 0:
        return 0.0
    return (effective_price - current_price) / current_price * 100
