"""AMM engine error classes."""


class AMMError(Exception):
    """Base error for pricing engine operations."""

    pass


class OutcomeNotFound(AMMError, KeyError):
    """Referenced outcome is not part of the market."""

    def __init__(self, outcome_id: str) -> None:
        super().__init__(f"Outcome {outcome_id} not found in market")
        self.outcome_id = outcome_id

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return str(self.args[0])


class InvalidTradeAmount(AMMError, ValueError):
    """Trade amount (dollars or shares) must be positive."""

    pass


class InsufficientShares(AMMError):
    """Sell size exceeds the shares issued against the outcome."""

    def __init__(self, requested: float, available: float) -> None:
        super().__init__(
            f"Insufficient shares: trying to sell {requested} but only have {available}"
        )
        self.requested = requested
        self.available = available


class InvalidPoolState(AMMError):
    """Pool math produced a non-positive intermediate (corrupted snapshot)."""

    pass


class InvalidMarketState(AMMError):
    """Snapshot failed validation; rebalance before trading."""

    pass


class InvalidMarketSetup(AMMError, ValueError):
    """Outcome set or seed liquidity cannot form a market."""

    pass
