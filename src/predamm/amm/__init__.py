"""AMM pricing engine."""

from predamm.amm.calculator import AMMCalculator, AMMConfig, PriceModel
from predamm.amm.errors import (
    AMMError,
    InsufficientShares,
    InvalidMarketSetup,
    InvalidMarketState,
    InvalidPoolState,
    InvalidTradeAmount,
    OutcomeNotFound,
)

__all__ = [
    "AMMCalculator",
    "AMMConfig",
    "PriceModel",
    "AMMError",
    "InsufficientShares",
    "InvalidMarketSetup",
    "InvalidMarketState",
    "InvalidPoolState",
    "InvalidTradeAmount",
    "OutcomeNotFound",
]
