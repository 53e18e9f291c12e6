"""Daily price data loading for backtests."""

from dataclasses import dataclass
from datetime import UTC, date, datetime, time
from pathlib import Path
from typing import TYPE_CHECKING

import pandas as pd

from smartdca.core.logging import get_logger

if TYPE_CHECKING:
    from smartdca.core.repository import DailyPriceRepository
    from smartdca.exchange.adapter import ExchangeAdapter

logger = get_logger(__name__)


@dataclass(frozen=True)
class DailyPriceData:
    """One calendar day of price data."""

    date: date
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


class DataLoader:
    """Loads daily price history for backtesting.

    All loaders return a DataFrame with one row per calendar day, sorted by
    date, with columns ``date, open, high, low, close, volume``.
    """

    REQUIRED_COLUMNS = ["date", "open", "high", "low", "close", "volume"]

    def __init__(
        self,
        exchange_client: "ExchangeAdapter | None" = None,
        price_repository: "DailyPriceRepository | None" = None,
    ):
        """Initialize the data loader."""
        self.exchange = exchange_client
        self.price_repository = price_repository

    async def load_from_exchange(
        self,
        symbol: str,
        start: date,
        end: date,
    ) -> pd.DataFrame:
        """
        Load daily candles from the exchange.

        Args:
            symbol: Trading pair (e.g., "BTC/USDC")
            start: First day (inclusive)
            end: Last day (inclusive)

        Returns:
            DataFrame with daily price data
        """
        if self.exchange is None:
            raise ValueError("Exchange client required for loading from exchange")

        logger.info(
            "loading_historical_data",
            symbol=symbol,
            start=start.isoformat(),
            end=end.isoformat(),
        )

        candles = await self.exchange.get_candles(
            symbol,
            datetime.combine(start, time.min, tzinfo=UTC),
            datetime.combine(end, time.max, tzinfo=UTC),
        )

        if not candles:
            raise ValueError(f"No data found for {symbol} in specified range")

        df = pd.DataFrame(candles, columns=["timestamp", "open", "high", "low", "close", "volume"])
        df["date"] = pd.to_datetime(df["timestamp"], unit="ms", utc=True).dt.date
        df = df.drop(columns=["timestamp"])

        df = self.filter_range(self._normalize(df), start, end)
        logger.info("data_loaded", symbol=symbol, days=len(df))
        return df

    def load_from_csv(self, path: str | Path) -> pd.DataFrame:
        """
        Load daily price data from a CSV file.

        Expected CSV format:
        date,open,high,low,close,volume
        2024-01-01,42000.0,42500.0,41800.0,42200.0,1000.0

        A ``datetime`` column is accepted in place of ``date``; intraday rows
        are aggregated to daily candles.

        Args:
            path: Path to CSV file

        Returns:
            DataFrame with daily price data
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"CSV file not found: {path}")

        logger.info("loading_csv", path=str(path))

        df = pd.read_csv(path)

        if "date" not in df.columns and "datetime" in df.columns:
            df = self.resample_daily(df)

        if not self.validate_data(df):
            raise ValueError(f"Invalid CSV format. Required columns: {self.REQUIRED_COLUMNS}")

        df["date"] = pd.to_datetime(df["date"]).dt.date
        df = self._normalize(df)

        logger.info("csv_loaded", days=len(df))
        return df

    async def load_from_store(
        self,
        symbol: str,
        start: date | None = None,
        end: date | None = None,
    ) -> pd.DataFrame:
        """
        Load daily prices persisted by the price history service.

        Args:
            symbol: Trading pair
            start: First day (inclusive), or None for the earliest stored
            end: Last day (inclusive), or None for the latest stored

        Returns:
            DataFrame with daily price data (possibly empty)
        """
        if self.price_repository is None:
            from smartdca.core.repository import get_price_repository

            self.price_repository = get_price_repository()

        rows = await self.price_repository.get_range(symbol, start, end)
        df = pd.DataFrame(
            [
                {
                    "date": date.fromisoformat(r.date),
                    "open": r.open,
                    "high": r.high,
                    "low": r.low,
                    "close": r.close,
                    "volume": r.volume,
                }
                for r in rows
            ],
            columns=self.REQUIRED_COLUMNS,
        )
        return self._normalize(df)

    def validate_data(self, df: pd.DataFrame) -> bool:
        """
        Validate that a DataFrame has the required columns and no duplicate days.

        Args:
            df: DataFrame to validate

        Returns:
            True if valid, False otherwise
        """
        missing = set(self.REQUIRED_COLUMNS) - set(df.columns)
        if missing:
            logger.warning("missing_columns", columns=sorted(missing))
            return False

        for col in self.REQUIRED_COLUMNS:
            if df[col].isna().any():
                logger.warning("null_values_found", column=col)
                return False

        for col in ["open", "high", "low", "close", "volume"]:
            if not pd.api.types.is_numeric_dtype(df[col]):
                logger.warning("non_numeric_column", column=col)
                return False

        if df["date"].duplicated().any():
            logger.warning("duplicate_dates_found")
            return False

        return True

    def resample_daily(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Aggregate intraday candles with a ``datetime`` column into daily candles.

        Args:
            df: Source DataFrame

        Returns:
            Daily DataFrame with a ``date`` column
        """
        df_copy = df.copy()
        df_copy["datetime"] = pd.to_datetime(df_copy["datetime"], utc=True)
        df_copy = df_copy.set_index("datetime")

        resampled = df_copy.resample("1D").agg(
            {
                "open": "first",
                "high": "max",
                "low": "min",
                "close": "last",
                "volume": "sum",
            }
        )
        # Days without candles
        resampled = resampled.dropna().reset_index()
        resampled["date"] = resampled["datetime"].dt.date
        return resampled.drop(columns=["datetime"])

    @staticmethod
    def filter_range(df: pd.DataFrame, start: date | None, end: date | None) -> pd.DataFrame:
        """Keep rows with ``start <= date <= end`` (open bounds when None)."""
        mask = pd.Series(True, index=df.index)
        if start is not None:
            mask &= df["date"] >= start
        if end is not None:
            mask &= df["date"] <= end
        return df[mask].reset_index(drop=True)

    @staticmethod
    def to_daily_prices(df: pd.DataFrame) -> list[DailyPriceData]:
        """Convert a daily DataFrame into simulator input."""
        return [
            DailyPriceData(
                date=row.date,
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
                volume=float(row.volume),
            )
            for row in df.itertuples(index=False)
        ]

    def _normalize(self, df: pd.DataFrame) -> pd.DataFrame:
        # One row per day, last write wins
        df = df.drop_duplicates(subset="date", keep="last")
        return df.sort_values("date").reset_index(drop=True)
