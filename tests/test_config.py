"""Tests for settings loading."""

import pytest
from pydantic import ValidationError

from smartdca.config import DcaSettings, Settings, get_settings


def test_defaults():
    settings = Settings()

    assert settings.system.symbol == "BTC/USDC"
    assert settings.base_asset == "BTC"
    assert settings.dca.base_daily_amount == 10.0
    assert settings.dca.high_lookback_days == 30
    assert settings.dca.bear_market_ma_period == 200
    assert settings.dca.bear_boost_factor == 1.5
    assert settings.dca.max_multiplier_cap == 4.5
    assert [t.drop_percentage for t in settings.dca.multiplier_tiers] == [0.05, 0.10, 0.20]
    assert settings.dca.dry_run is False
    assert settings.api.enabled is False
    assert settings.has_exchange_credentials is False


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("SMARTDCA_SYMBOL", "ETH/USDC")
    monkeypatch.setenv("SMARTDCA_DCA_BASE_DAILY_AMOUNT", "25")
    monkeypatch.setenv("SMARTDCA_DCA_DAILY_BUY_HOUR", "14")
    monkeypatch.setenv("SMARTDCA_DCA_DRY_RUN", "true")
    monkeypatch.setenv(
        "SMARTDCA_DCA_MULTIPLIER_TIERS",
        '[{"drop_percentage": 0.1, "multiplier": 2}, {"drop_percentage": 0.3, "multiplier": 4}]',
    )

    settings = Settings()

    assert settings.base_asset == "ETH"
    assert settings.dca.base_daily_amount == 25.0
    assert settings.dca.daily_buy_hour == 14
    assert settings.dca.dry_run is True
    assert [t.multiplier for t in settings.dca.multiplier_tiers] == [2.0, 4.0]


def test_credentials_detected(monkeypatch):
    monkeypatch.setenv("SMARTDCA_EXCHANGE_API_KEY", "k-123")
    monkeypatch.setenv("SMARTDCA_EXCHANGE_API_SECRET", "s-456")

    settings = Settings()

    assert settings.has_exchange_credentials is True
    assert "s-456" not in repr(settings.exchange)


def test_unsorted_tiers_rejected():
    with pytest.raises(ValidationError, match="sorted by drop_percentage"):
        DcaSettings(
            multiplier_tiers=[
                {"drop_percentage": 0.2, "multiplier": 3.0},
                {"drop_percentage": 0.1, "multiplier": 2.0},
            ]
        )


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("base_daily_amount", 0),
        ("daily_buy_hour", 24),
        ("daily_buy_minute", 60),
        ("max_multiplier_cap", -1),
    ],
)
def test_out_of_range_values_rejected(field, value):
    with pytest.raises(ValidationError):
        DcaSettings(**{field: value})


def test_global_settings_cached():
    assert get_settings() is get_settings()
