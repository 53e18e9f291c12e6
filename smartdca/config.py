"""Configuration management using Pydantic Settings."""

from typing import Literal

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MultiplierTierSettings(BaseModel):
    """A configured price-drop tier (drop as a fraction, e.g. 0.10 = 10%)."""

    drop_percentage: float = Field(ge=0.0, le=1.0)
    multiplier: float = Field(gt=0.0)


def _default_tiers() -> list[MultiplierTierSettings]:
    return [
        MultiplierTierSettings(drop_percentage=0.05, multiplier=1.5),
        MultiplierTierSettings(drop_percentage=0.10, multiplier=2.0),
        MultiplierTierSettings(drop_percentage=0.20, multiplier=3.0),
    ]


class SystemSettings(BaseSettings):
    """System configuration."""

    model_config = SettingsConfigDict(env_prefix="SMARTDCA_")

    symbol: str = "BTC/USDC"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    json_logs: bool = False


class DcaSettings(BaseSettings):
    """Daily purchase configuration."""

    model_config = SettingsConfigDict(env_prefix="SMARTDCA_DCA_")

    base_daily_amount: float = Field(default=10.0, gt=0.0)
    daily_buy_hour: int = Field(default=0, ge=0, le=23)
    daily_buy_minute: int = Field(default=0, ge=0, le=59)
    high_lookback_days: int = Field(default=30, gt=0)
    bear_market_ma_period: int = Field(default=200, gt=0)
    bear_boost_factor: float = Field(default=1.5, gt=0.0)
    max_multiplier_cap: float = Field(default=4.5, gt=0.0)
    dry_run: bool = False
    multiplier_tiers: list[MultiplierTierSettings] = Field(default_factory=_default_tiers)

    @field_validator("multiplier_tiers")
    @classmethod
    def tiers_sorted(cls, v: list[MultiplierTierSettings]) -> list[MultiplierTierSettings]:
        """Require tiers in ascending drop order."""
        drops = [t.drop_percentage for t in v]
        if drops != sorted(drops):
            raise ValueError("multiplier_tiers must be sorted by drop_percentage in ascending order")
        return v


class ExchangeSettings(BaseSettings):
    """Exchange connectivity configuration."""

    model_config = SettingsConfigDict(env_prefix="SMARTDCA_EXCHANGE_")

    name: str = "binance"
    demo: bool = True
    sandbox: bool = True
    quote_currency: str = "USDC"
    api_key: SecretStr = Field(default=SecretStr(""))
    api_secret: SecretStr = Field(default=SecretStr(""))


class DatabaseSettings(BaseSettings):
    """Database configuration."""

    model_config = SettingsConfigDict(env_prefix="SMARTDCA_DB_")

    url: str = "sqlite+aiosqlite:///data/smartdca.db"


class ApiSettings(BaseSettings):
    """REST API configuration."""

    model_config = SettingsConfigDict(env_prefix="SMARTDCA_API_")

    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = Field(default=8080, ge=1, le=65535)
    token: str = ""
    cors_origins: list[str] = ["http://localhost:3000"]


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    env: Literal["development", "production"] = "development"

    system: SystemSettings = Field(default_factory=SystemSettings)
    dca: DcaSettings = Field(default_factory=DcaSettings)
    exchange: ExchangeSettings = Field(default_factory=ExchangeSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)

    @property
    def has_exchange_credentials(self) -> bool:
        """Check if exchange credentials are configured."""
        return bool(
            self.exchange.api_key.get_secret_value()
            and self.exchange.api_secret.get_secret_value()
        )

    @property
    def base_asset(self) -> str:
        """Asset being accumulated (e.g. BTC for BTC/USDC)."""
        return self.system.symbol.split("/")[0]


def load_settings() -> Settings:
    """Load settings from environment and config files."""
    return Settings()


# Global settings instance (lazy loaded)
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
