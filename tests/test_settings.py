"""Config loading and profile overlay."""

from pathlib import Path

import pytest

from predamm.amm import PriceModel
from predamm.config import Settings, get_settings, load_config

REPO_CONFIG = Path(__file__).resolve().parent.parent / "config"


def _write(path: Path, text: str) -> None:
    path.write_text(text, encoding="utf-8")


def test_profile_overlay_deep_merges(tmp_path):
    _write(
        tmp_path / "default.toml",
        '[amm]\nfee_rate = 0.03\nmin_price = 0.02\n\n[storage]\ndb_path = "data/a.duckdb"\n',
    )
    _write(tmp_path / "dev.toml", "[amm]\nfee_rate = 0.0\n")
    raw = load_config("dev", tmp_path)
    assert raw["amm"] == {"fee_rate": 0.0, "min_price": 0.02}
    assert raw["storage"]["db_path"] == "data/a.duckdb"


def test_missing_profile_uses_default(tmp_path):
    _write(tmp_path / "default.toml", "[amm]\nfee_rate = 0.01\n")
    assert get_settings("nope", tmp_path).fee_rate == 0.01


def test_missing_default_gives_empty_config(tmp_path):
    assert load_config(None, tmp_path) == {}
    settings = get_settings(None, tmp_path)
    assert settings.db_path == "data/predamm.duckdb"
    assert settings.fee_rate == 0.0
    assert settings.default_liquidity == 1000.0
    assert settings.logging_level == "INFO"


def test_amm_config_from_settings():
    settings = Settings(
        amm={"fee_rate": 0.02, "price_model": "reserve_share", "k_constant": 5000, "max_buy_fraction": 0.5}
    )
    config = settings.amm_config()
    assert config.fee_rate == 0.02
    assert config.price_model is PriceModel.RESERVE_SHARE
    assert config.k_constant == 5000.0
    assert config.max_buy_fraction == 0.5
    assert config.min_sell_reserve == 0.01
    assert settings.amm_config(fee_rate=0.07).fee_rate == 0.07


def test_amm_config_rejects_bad_fee():
    with pytest.raises(ValueError):
        Settings(amm={"fee_rate": 1.5}).amm_config()


def test_repo_config_profiles():
    default = get_settings(None, REPO_CONFIG)
    dev = get_settings("dev", REPO_CONFIG)
    assert default.fee_rate == 0.03
    assert default.amm_config().price_model is PriceModel.INVERSE_RESERVE
    assert dev.fee_rate == 0.0
    assert dev.logging_level == "DEBUG"
    assert dev.max_price == default.max_price
