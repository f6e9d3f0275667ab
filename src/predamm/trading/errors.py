"""Settlement error classes (market lifecycle and persistence)."""


class SettlementError(Exception):
    """Base error for settling trades against persisted markets."""

    pass


class MarketNotFound(SettlementError):
    """No persisted market with this id."""

    pass


class MarketExists(SettlementError):
    """A market with this id has already been created."""

    pass


class MarketClosed(SettlementError):
    """Market is not open for trading."""

    pass


class StaleMarketState(SettlementError):
    """Snapshot version changed between load and save; retry on fresh state."""

    pass


class InsufficientLiquidity(SettlementError):
    """Buy would receive zero shares."""

    pass
