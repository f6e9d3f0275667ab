"""Trade settlement: load snapshot, price with the AMM, persist state + ledger atomically.

The pricing engine never sees persisted state, so it cannot detect two trades
priced against the same snapshot. Settlement closes that gap twice: trades on
one market are serialized by an in-process lock, and the write is guarded by
the row's version so a second process holding stale state fails with
StaleMarketState instead of overwriting.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from threading import Lock
from typing import TYPE_CHECKING

import duckdb
import structlog

from predamm.amm import AMMCalculator, InsufficientShares, InvalidMarketState
from predamm.models import MarketState, TradeAction, TradeEstimate, TradeResult
from predamm.storage.amm_markets import (
    MARKET_CLOSED,
    StoredMarket,
    get_market,
    insert_market,
    save_market_state,
    set_market_status,
)
from predamm.storage.ledger import append_trade, user_position
from predamm.trading.errors import (
    InsufficientLiquidity,
    MarketClosed,
    MarketNotFound,
    StaleMarketState,
)

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

    from predamm.config.settings import Settings

log = structlog.get_logger(__name__)


class MarketLocks:
    """One lock per market id, created on first use."""

    def __init__(self) -> None:
        self._locks: dict[str, Lock] = {}
        self._guard = Lock()

    def get(self, market_id: str) -> Lock:
        with self._guard:
            lock = self._locks.get(market_id)
            if lock is None:
                lock = self._locks[market_id] = Lock()
            return lock

    def discard(self, market_id: str) -> None:
        """Forget a market's lock once it no longer trades."""
        with self._guard:
            self._locks.pop(market_id, None)

    def __len__(self) -> int:
        return len(self._locks)


# Shared by every settler in the process (API requests, CLI)
default_locks = MarketLocks()


@dataclass
class Settlement:
    """A committed trade."""

    market_id: str
    outcome_id: str
    action: TradeAction
    amount: float
    version: int
    ledger_id: int
    result: TradeResult
    state: MarketState


class TradeSettler:
    """Executes trades against markets stored in DuckDB. One instance per connection."""

    def __init__(
        self,
        conn: DuckDBPyConnection,
        settings: Settings,
        locks: MarketLocks | None = None,
    ) -> None:
        self.conn = conn
        self.settings = settings
        self.locks = locks if locks is not None else default_locks

    def calculator_for(self, market: StoredMarket) -> AMMCalculator:
        """Calculator bound to the market's own fee schedule."""
        return AMMCalculator(self.settings.amm_config(fee_rate=market.fee_rate))

    def load(self, market_id: str) -> StoredMarket:
        market = get_market(self.conn, market_id)
        if market is None:
            raise MarketNotFound(f"Market not found: {market_id}")
        return market

    def create_market(
        self,
        market_id: str,
        outcome_ids: Iterable[str],
        total_liquidity: float | None = None,
        fee_rate: float | None = None,
        title: str | None = None,
    ) -> StoredMarket:
        """Initialize an equal-reserve pool and persist it."""
        config = self.settings.amm_config(fee_rate=fee_rate)
        liquidity = self.settings.default_liquidity if total_liquidity is None else total_liquidity
        state = AMMCalculator(config).initialize_market(outcome_ids, liquidity)
        with self.locks.get(market_id):
            self.conn.begin()
            try:
                market = insert_market(self.conn, market_id, state, config.fee_rate, title=title)
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                raise
        log.info(
            "market_created",
            market_id=market_id,
            outcomes=state.outcome_ids,
            total_liquidity=liquidity,
            fee_rate=config.fee_rate,
        )
        return market

    def estimate(
        self, market_id: str, outcome_id: str, action: TradeAction | str, amount: float
    ) -> TradeEstimate:
        """Preview a trade without persisting anything."""
        market = self.load(market_id)
        return self.calculator_for(market).estimate_trade(market.state, outcome_id, action, amount)

    def execute(
        self,
        market_id: str,
        outcome_id: str,
        action: TradeAction | str,
        amount: float,
        user_id: str | None = None,
    ) -> Settlement:
        """Price and commit a market order. amount is dollars (buy) or shares (sell)."""
        action = TradeAction(action)
        with self.locks.get(market_id):
            market = self.load(market_id)
            if not market.is_open:
                raise MarketClosed(f"Market is not open for trading: {market_id}")
            calculator = self.calculator_for(market)
            state, version = market.state, market.version

            if not calculator.validate_market_state(state):
                log.warning("market_state_invalid_rebalancing", market_id=market_id, version=version)
                state = calculator.rebalance_market(state)
                if not calculator.validate_market_state(state):
                    raise InvalidMarketState(f"Invalid market state after rebalancing: {market_id}")
                version = self._commit_state(market_id, state, version)

            if action is TradeAction.BUY:
                result = calculator.calculate_buy(state, outcome_id, amount)
                if result.shares_received <= 0:
                    raise InsufficientLiquidity(f"Buy of {amount} on {outcome_id} would receive no shares")
            else:
                result = calculator.calculate_sell(state, outcome_id, amount)
                # Sellers may only return shares they hold, not the pool's issued supply
                held = user_position(self.conn, market_id, outcome_id, user_id)
                if amount > held:
                    raise InsufficientShares(amount, held)

            new_state = result.apply_to(state)
            self.conn.begin()
            try:
                new_version = save_market_state(self.conn, market_id, new_state, version)
                ledger_id = append_trade(
                    self.conn,
                    market_id,
                    outcome_id,
                    action,
                    amount,
                    result,
                    new_version,
                    user_id=user_id,
                )
                self.conn.commit()
            except duckdb.TransactionException as e:
                self.conn.rollback()
                raise StaleMarketState(f"Concurrent update on market {market_id}: {e}") from e
            except Exception:
                self.conn.rollback()
                raise

        log.info(
            "trade_settled",
            market_id=market_id,
            outcome_id=outcome_id,
            action=action.value,
            amount=amount,
            shares=result.shares_received,
            total_cost=result.total_cost,
            fees=result.fees,
            version=new_version,
        )
        return Settlement(
            market_id=market_id,
            outcome_id=outcome_id,
            action=action,
            amount=amount,
            version=new_version,
            ledger_id=ledger_id,
            result=result,
            state=new_state,
        )

    def rebalance(self, market_id: str) -> StoredMarket:
        """Maintenance: snap reserves back onto total liquidity and persist."""
        with self.locks.get(market_id):
            market = self.load(market_id)
            state = self.calculator_for(market).rebalance_market(market.state)
            market.version = self._commit_state(market_id, state, market.version)
            market.state = state
        return market

    def close_market(self, market_id: str) -> None:
        with self.locks.get(market_id):
            if not set_market_status(self.conn, market_id, MARKET_CLOSED):
                raise MarketNotFound(f"Market not found: {market_id}")
        # Trades waiting on the old lock still see the closed status and fail
        self.locks.discard(market_id)
        log.info("market_closed", market_id=market_id)

    def _commit_state(self, market_id: str, state: MarketState, version: int) -> int:
        self.conn.begin()
        try:
            new_version = save_market_state(self.conn, market_id, state, version)
            self.conn.commit()
        except duckdb.TransactionException as e:
            self.conn.rollback()
            raise StaleMarketState(f"Concurrent update on market {market_id}: {e}") from e
        except Exception:
            self.conn.rollback()
            raise
        return new_version
