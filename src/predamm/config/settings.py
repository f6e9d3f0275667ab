"""TOML config loading and profiles."""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

from predamm.amm.calculator import (
    DEFAULT_LIQUIDITY,
    K_REBALANCE_TOLERANCE,
    K_VALIDATION_TOLERANCE,
    MAX_BUY_FRACTION,
    MIN_SELL_RESERVE,
    PRICE_SUM_TOLERANCE,
    AMMConfig,
)

# Default config search path (project root or cwd)
_CONFIG_DIR = Path(__file__).resolve().parent.parent.parent.parent / "config"
_CWD_CONFIG = Path.cwd() / "config"


def _load_toml(path: Path) -> dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base. Override values take precedence."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _find_config_dir(config_dir: Path | None = None) -> Path:
    if config_dir is not None:
        return Path(config_dir)
    if _CWD_CONFIG.exists():
        return _CWD_CONFIG
    return _CONFIG_DIR


def load_config(profile: str | None = None, config_dir: Path | None = None) -> dict[str, Any]:
    """Load merged config from default.toml and optional profile overlay."""
    config_dir = _find_config_dir(config_dir)
    default_path = config_dir / "default.toml"
    if not default_path.exists():
        return {}
    base = _load_toml(default_path)
    if profile:
        profile_path = config_dir / f"{profile}.toml"
        if profile_path.exists():
            overlay = _load_toml(profile_path)
            base = _deep_merge(base, overlay)
    return base


def get_settings(profile: str | None = None, config_dir: Path | None = None) -> Settings:
    """Return Settings instance from merged config."""
    raw = load_config(profile, config_dir)
    return Settings.from_dict(raw)


class Settings:
    """Application settings from TOML config."""

    def __init__(
        self,
        *,
        amm: dict[str, Any] | None = None,
        storage: dict[str, Any] | None = None,
        logging: dict[str, Any] | None = None,
    ):
        self.amm = amm or {}
        self.storage = storage or {}
        self.logging = logging or {}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Settings:
        return cls(
            amm=raw.get("amm"),
            storage=raw.get("storage"),
            logging=raw.get("logging"),
        )

    # Convenience accessors with defaults
    @property
    def db_path(self) -> str:
        return self.storage.get("db_path", "data/predamm.duckdb")

    @property
    def fee_rate(self) -> float:
        return float(self.amm.get("fee_rate", 0.0))

    @property
    def min_price(self) -> float:
        return float(self.amm.get("min_price", 0.01))

    @property
    def max_price(self) -> float:
        return float(self.amm.get("max_price", 0.99))

    @property
    def price_model(self) -> str:
        return self.amm.get("price_model", "inverse_reserve")

    @property
    def default_liquidity(self) -> float:
        return float(self.amm.get("default_liquidity", DEFAULT_LIQUIDITY))

    @property
    def fallback_k_constant(self) -> float | None:
        value = self.amm.get("k_constant")
        return float(value) if value is not None else None

    @property
    def thresholds(self) -> dict[str, float]:
        return {
            "max_buy_fraction": float(self.amm.get("max_buy_fraction", MAX_BUY_FRACTION)),
            "k_rebalance_tolerance": float(self.amm.get("k_rebalance_tolerance", K_REBALANCE_TOLERANCE)),
            "k_validation_tolerance": float(self.amm.get("k_validation_tolerance", K_VALIDATION_TOLERANCE)),
            "price_sum_tolerance": float(self.amm.get("price_sum_tolerance", PRICE_SUM_TOLERANCE)),
            "min_sell_reserve": float(self.amm.get("min_sell_reserve", MIN_SELL_RESERVE)),
        }

    def amm_config(self, fee_rate: float | None = None) -> AMMConfig:
        """Build the calculator config; fee_rate overrides the configured default (per-market fees)."""
        return AMMConfig(
            fee_rate=self.fee_rate if fee_rate is None else fee_rate,
            min_price=self.min_price,
            max_price=self.max_price,
            k_constant=self.fallback_k_constant,
            price_model=self.price_model,
            **self.thresholds,
        )

    @property
    def logging_level(self) -> str:
        return self.logging.get("level", "INFO").upper()

    @property
    def logging_format(self) -> str:
        return self.logging.get("format", "console")

    @property
    def logging_level_num(self) -> int:
        return getattr(logging, self.logging_level, logging.INFO)


def configure_logging(settings: Settings) -> None:
    """Configure structlog with settings. Call once at application entry."""
    import structlog

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.logging_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(settings.logging_level_num),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
