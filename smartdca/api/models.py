"""Pydantic v2 request models for the backtest endpoints."""

from datetime import date

from pydantic import BaseModel, Field, model_validator

from smartdca.backtester.engine import BacktestConfig
from smartdca.optimizer.grid import TierInput


class BacktestRequest(BaseModel):
    """Single backtest; omitted fields use the production configuration.

    Tier drops are percentages (10 = 10%).
    """

    start_date: date | None = None
    end_date: date | None = None
    base_daily_amount: float | None = Field(default=None, gt=0)
    high_lookback_days: int | None = Field(default=None, gt=0)
    bear_market_ma_period: int | None = Field(default=None, gt=0)
    bear_boost_factor: float | None = Field(default=None, gt=0)
    max_multiplier_cap: float | None = Field(default=None, gt=0)
    tiers: list[TierInput] | None = None

    @model_validator(mode="after")
    def check_date_order(self) -> "BacktestRequest":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date")
        return self

    def to_config(self, defaults: BacktestConfig) -> BacktestConfig:
        """Merge the request over the production defaults."""

        def pick(value, default):
            return default if value is None else value

        return BacktestConfig(
            base_daily_amount=pick(self.base_daily_amount, defaults.base_daily_amount),
            high_lookback_days=pick(self.high_lookback_days, defaults.high_lookback_days),
            bear_market_ma_period=pick(self.bear_market_ma_period, defaults.bear_market_ma_period),
            bear_boost_factor=pick(self.bear_boost_factor, defaults.bear_boost_factor),
            max_multiplier_cap=pick(self.max_multiplier_cap, defaults.max_multiplier_cap),
            tiers=(
                tuple(t.to_tier() for t in self.tiers)
                if self.tiers is not None
                else defaults.tiers
            ),
        )
