"""Constant-product AMM pricing for prediction markets."""

__version__ = "0.1.0"
