"""Pydantic schemas for API request/response consistency and OpenAPI docs."""

from __future__ import annotations

from pydantic import BaseModel, Field

from predamm.models import TradeAction, TradeEstimate


# --- Health ---
class HealthResponse(BaseModel):
    status: str = "ok"


# --- Error (consistent shape for 4xx/5xx) ---
class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Human-readable message")
    code: str | None = Field(None, description="Machine-readable code, e.g. outcome_not_found")


# --- Markets ---
class CreateMarketRequest(BaseModel):
    market_id: str = Field(..., min_length=1)
    outcome_ids: list[str] = Field(..., min_length=2)
    total_liquidity: float | None = Field(
        None, gt=0, allow_inf_nan=False, description="Seed liquidity (default from config)"
    )
    fee_rate: float | None = Field(None, ge=0, lt=1, description="Fee rate (default from config)")
    title: str | None = None


class OutcomeView(BaseModel):
    outcome_id: str
    shares: float
    reserve: float
    price: float
    display_price: float


class MarketDetailResponse(BaseModel):
    market_id: str
    title: str | None = None
    status: str
    fee_rate: float
    version: int
    total_liquidity: float
    k_constant: float
    valid: bool
    outcomes: list[OutcomeView]


class MarketListItem(BaseModel):
    market_id: str
    title: str | None = None
    status: str
    fee_rate: float
    total_liquidity: float
    k_constant: float
    version: int
    outcome_count: int
    created_at: int | None = None
    updated_at: int | None = None


class MarketsListResponse(BaseModel):
    markets: list[MarketListItem]
    total: int


class PricesResponse(BaseModel):
    market_id: str
    prices: dict[str, float]
    display_prices: dict[str, float]


# --- Trades ---
class TradeRequest(BaseModel):
    outcome_id: str
    action: TradeAction
    amount: float = Field(..., gt=0, allow_inf_nan=False, description="Dollars (buy) or shares (sell)")
    user_id: str | None = None


class EstimateResponse(TradeEstimate):
    market_id: str
    outcome_id: str
    action: TradeAction


class TradeResponse(BaseModel):
    market_id: str
    outcome_id: str
    action: TradeAction
    ledger_id: int
    version: int
    shares_received: float
    effective_price: float
    price_impact: float
    total_cost: float
    fees: float
    new_prices: dict[str, float]


class LedgerEntry(BaseModel):
    id: int
    market_id: str
    outcome_id: str
    user_id: str | None = None
    action: str
    amount: float
    shares: float
    effective_price: float
    price_impact: float
    total_cost: float
    fees: float
    market_version: int
    created_at: int


class LedgerResponse(BaseModel):
    market_id: str
    trades: list[LedgerEntry]
    trade_count: int
    fees: float
    buy_volume: float
    sell_payouts: float
