"""Canonical schema (Pydantic) - MarketState, TradeResult."""

from predamm.models.market import MarketState, OutcomeState
from predamm.models.trade import TradeAction, TradeEstimate, TradeResult

__all__ = [
    "MarketState",
    "OutcomeState",
    "TradeAction",
    "TradeEstimate",
    "TradeResult",
]
