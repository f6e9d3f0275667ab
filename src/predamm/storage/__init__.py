"""DuckDB persistence for markets and the trade ledger."""
