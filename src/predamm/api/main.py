"""FastAPI backend: market lifecycle, trade previews and settlement."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import asynccontextmanager
from pathlib import Path

from duckdb import DuckDBPyConnection
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from predamm.amm import (
    AMMError,
    InsufficientShares,
    InvalidMarketSetup,
    InvalidMarketState,
    InvalidPoolState,
    InvalidTradeAmount,
    OutcomeNotFound,
)
from predamm.api.schemas import (
    CreateMarketRequest,
    ErrorResponse,
    EstimateResponse,
    HealthResponse,
    LedgerEntry,
    LedgerResponse,
    MarketDetailResponse,
    MarketListItem,
    MarketsListResponse,
    OutcomeView,
    PricesResponse,
    TradeRequest,
    TradeResponse,
)
from predamm.config import Settings, configure_logging, get_settings
from predamm.storage.amm_markets import StoredMarket
from predamm.storage.amm_markets import list_markets as storage_list_markets
from predamm.storage.db import get_connection, init_schema
from predamm.storage.ledger import ledger_totals, list_trades
from predamm.trading.errors import (
    InsufficientLiquidity,
    MarketClosed,
    MarketExists,
    MarketNotFound,
    SettlementError,
    StaleMarketState,
)
from predamm.trading.settlement import TradeSettler

# Set by run_api() so dependencies pick up the CLI's profile/config dir.
_config_profile: str | None = None
_config_dir: Path | None = None

# (error class, status code, machine code); first match wins
_ERROR_MAP: list[tuple[type[Exception], int, str]] = [
    (OutcomeNotFound, 404, "outcome_not_found"),
    (MarketNotFound, 404, "market_not_found"),
    (InsufficientShares, 400, "insufficient_shares"),
    (InvalidTradeAmount, 400, "invalid_amount"),
    (InvalidMarketSetup, 400, "invalid_market_setup"),
    (MarketExists, 409, "market_exists"),
    (MarketClosed, 409, "market_closed"),
    (StaleMarketState, 409, "stale_market_state"),
    (InvalidMarketState, 409, "invalid_market_state"),
    (InsufficientLiquidity, 409, "insufficient_liquidity"),
    (InvalidPoolState, 500, "invalid_pool_state"),
]

_ERROR_RESPONSES = {
    404: {"description": "Market or outcome not found", "model": ErrorResponse},
    409: {"description": "Market state conflict", "model": ErrorResponse},
}


def get_app_settings() -> Settings:
    return get_settings(_config_profile, _config_dir)


def get_db(settings: Settings = Depends(get_app_settings)) -> Iterator[DuckDBPyConnection]:
    conn = get_connection(settings.db_path)
    try:
        yield conn
    finally:
        conn.close()


def get_settler(
    conn: DuckDBPyConnection = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> TradeSettler:
    return TradeSettler(conn, settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_app_settings()
    configure_logging(settings)
    conn = get_connection(settings.db_path)
    try:
        init_schema(conn)
    finally:
        conn.close()
    yield


app = FastAPI(title="PredAMM API", version="0.1.0", lifespan=lifespan)
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])


def _error_json(code: str, message: str, status_code: int = 404) -> JSONResponse:
    """Return consistent error JSON: { detail, code }."""
    return JSONResponse(
        status_code=status_code,
        content={"detail": message, "code": code},
    )


@app.exception_handler(AMMError)
@app.exception_handler(SettlementError)
async def _domain_error(request: Request, exc: Exception) -> JSONResponse:
    for cls, status_code, code in _ERROR_MAP:
        if isinstance(exc, cls):
            return _error_json(code, str(exc), status_code)
    return _error_json("internal_error", str(exc), 500)


def _market_detail(settler: TradeSettler, market: StoredMarket) -> MarketDetailResponse:
    calculator = settler.calculator_for(market)
    state = market.state
    prices = calculator.calculate_current_prices(state)
    display = calculator.display_prices(state)
    return MarketDetailResponse(
        market_id=market.market_id,
        title=market.title,
        status=market.status,
        fee_rate=market.fee_rate,
        version=market.version,
        total_liquidity=state.total_liquidity,
        k_constant=state.k_constant,
        valid=calculator.validate_market_state(state),
        outcomes=[
            OutcomeView(
                outcome_id=oid,
                shares=o.shares,
                reserve=o.reserve,
                price=prices[oid],
                display_price=display[oid],
            )
            for oid, o in state.outcomes.items()
        ],
    )


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(status="ok")


@app.get("/markets", response_model=MarketsListResponse)
def markets_list(
    status: str | None = Query(None, description="open or closed"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    conn: DuckDBPyConnection = Depends(get_db),
) -> MarketsListResponse:
    """List markets with optional limit/offset."""
    all_markets = storage_list_markets(conn, status=status)
    markets = [MarketListItem(**m) for m in all_markets[offset : offset + limit]]
    return MarketsListResponse(markets=markets, total=len(all_markets))


@app.post(
    "/markets",
    response_model=MarketDetailResponse,
    status_code=201,
    responses={400: {"description": "Invalid outcomes or liquidity", "model": ErrorResponse}, **_ERROR_RESPONSES},
)
def market_create(body: CreateMarketRequest, settler: TradeSettler = Depends(get_settler)) -> MarketDetailResponse:
    """Create a market with equal reserves across outcomes."""
    market = settler.create_market(
        body.market_id,
        body.outcome_ids,
        total_liquidity=body.total_liquidity,
        fee_rate=body.fee_rate,
        title=body.title,
    )
    return _market_detail(settler, market)


@app.get("/markets/{market_id}", response_model=MarketDetailResponse, responses=_ERROR_RESPONSES)
def market_detail(market_id: str, settler: TradeSettler = Depends(get_settler)) -> MarketDetailResponse:
    """Pool state, prices and validation status."""
    return _market_detail(settler, settler.load(market_id))


@app.get("/markets/{market_id}/prices", response_model=PricesResponse, responses=_ERROR_RESPONSES)
def market_prices(market_id: str, settler: TradeSettler = Depends(get_settler)) -> PricesResponse:
    market = settler.load(market_id)
    calculator = settler.calculator_for(market)
    return PricesResponse(
        market_id=market_id,
        prices=calculator.calculate_current_prices(market.state),
        display_prices=calculator.display_prices(market.state),
    )


@app.post("/markets/{market_id}/estimate", response_model=EstimateResponse, responses=_ERROR_RESPONSES)
def market_estimate(
    market_id: str, body: TradeRequest, settler: TradeSettler = Depends(get_settler)
) -> EstimateResponse:
    """Preview a trade. 409 if the pool needs rebalancing first."""
    est = settler.estimate(market_id, body.outcome_id, body.action, body.amount)
    return EstimateResponse(
        market_id=market_id,
        outcome_id=body.outcome_id,
        action=body.action,
        **est.model_dump(),
    )


@app.post(
    "/markets/{market_id}/trades",
    response_model=TradeResponse,
    status_code=201,
    responses={400: {"description": "Invalid trade", "model": ErrorResponse}, **_ERROR_RESPONSES},
)
def market_trade(market_id: str, body: TradeRequest, settler: TradeSettler = Depends(get_settler)) -> TradeResponse:
    """Execute a market order and record it in the ledger."""
    s = settler.execute(market_id, body.outcome_id, body.action, body.amount, user_id=body.user_id)
    r = s.result
    return TradeResponse(
        market_id=market_id,
        outcome_id=s.outcome_id,
        action=s.action,
        ledger_id=s.ledger_id,
        version=s.version,
        shares_received=r.shares_received,
        effective_price=r.effective_price,
        price_impact=r.price_impact,
        total_cost=r.total_cost,
        fees=r.fees,
        new_prices=r.new_prices,
    )


@app.post("/markets/{market_id}/rebalance", response_model=MarketDetailResponse, responses=_ERROR_RESPONSES)
def market_rebalance(market_id: str, settler: TradeSettler = Depends(get_settler)) -> MarketDetailResponse:
    return _market_detail(settler, settler.rebalance(market_id))


@app.get("/markets/{market_id}/ledger", response_model=LedgerResponse, responses=_ERROR_RESPONSES)
def market_ledger(
    market_id: str,
    limit: int = Query(100, ge=1, le=1000),
    settler: TradeSettler = Depends(get_settler),
) -> LedgerResponse:
    """Recent trades (newest first) and totals."""
    settler.load(market_id)
    trades = [LedgerEntry(**t) for t in list_trades(settler.conn, market_id, limit=limit)]
    totals = ledger_totals(settler.conn, market_id)
    return LedgerResponse(market_id=market_id, trades=trades, **totals)


def run_api(
    host: str = "127.0.0.1",
    port: int = 8000,
    profile: str | None = None,
    config_dir: Path | None = None,
) -> None:
    global _config_profile, _config_dir
    _config_profile = profile
    _config_dir = config_dir
    import uvicorn
    uvicorn.run("predamm.api.main:app", host=host, port=port, reload=False)
