"""OutcomeState, MarketState - liquidity pool snapshot."""

from __future__ import annotations

import math

from pydantic import BaseModel, Field


class OutcomeState(BaseModel):
    """Pool position of a single outcome (e.g. home_win)."""

    shares: float = Field(..., description="Shares issued against this outcome")
    reserve: float = Field(..., description="Pool reserve; moves opposite to price")
    current_price: float = Field(0.0, description="Normalized price in (0, 1)")


class MarketState(BaseModel):
    """Snapshot of one market's pool. Never mutated by the engine."""

    outcomes: dict[str, OutcomeState] = Field(default_factory=dict)
    total_liquidity: float = Field(0.0, ge=0, description="Dollar liquidity seeded into the pool")
    k_constant: float = Field(..., description="Product of reserves the pool is anchored to")

    @property
    def outcome_ids(self) -> list[str]:
        return list(self.outcomes)

    @property
    def reserves(self) -> dict[str, float]:
        return {oid: o.reserve for oid, o in self.outcomes.items()}

    @property
    def shares(self) -> dict[str, float]:
        return {oid: o.shares for oid, o in self.outcomes.items()}

    @property
    def prices(self) -> dict[str, float]:
        """Stored prices (as persisted, not recomputed)."""
        return {oid: o.current_price for oid, o in self.outcomes.items()}

    def reserve_product(self) -> float:
        return math.prod(o.reserve for o in self.outcomes.values())
