"""TradeAction, TradeEstimate, TradeResult - engine output."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from predamm.models.market import MarketState, OutcomeState


class TradeAction(str, Enum):
    BUY = "buy"
    SELL = "sell"


class TradeEstimate(BaseModel):
    """Read-only trade preview (no pool deltas)."""

    shares_received: float
    effective_price: float
    price_impact: float = Field(..., description="Percent vs. current price; may be negative")
    total_cost: float = Field(..., description="Dollars paid (buy) or net payout (sell)")
    fees: float


class TradeResult(TradeEstimate):
    """Full trade outcome including the post-trade pool."""

    new_prices: dict[str, float]
    new_reserves: dict[str, float]
    new_shares: dict[str, float]

    def estimate(self) -> TradeEstimate:
        return TradeEstimate(**self.model_dump(include=set(TradeEstimate.model_fields)))

    def apply_to(self, state: MarketState) -> MarketState:
        """Return the snapshot the caller should persist after this trade."""
        outcomes = {
            oid: OutcomeState(
                shares=self.new_shares[oid],
                reserve=self.new_reserves[oid],
                current_price=self.new_prices[oid],
            )
            for oid in state.outcomes
        }
        return MarketState(
            outcomes=outcomes,
            total_liquidity=state.total_liquidity,
            k_constant=state.k_constant,
        )
