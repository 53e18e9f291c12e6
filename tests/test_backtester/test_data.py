"""Tests for backtest data loading."""

from datetime import date

import pandas as pd
import pytest

from smartdca.backtester.data import DataLoader
from smartdca.core.models import DailyPrice
from smartdca.core.repository import DailyPriceRepository
from smartdca.exchange.demo import DemoExchangeClient


@pytest.fixture
def csv_file(tmp_path):
    path = tmp_path / "prices.csv"
    path.write_text(
        "date,open,high,low,close,volume\n"
        "2024-01-03,42600.0,43000.0,42400.0,42900.0,1500.0\n"
        "2024-01-01,42000.0,42500.0,41800.0,42200.0,1000.0\n"
        "2024-01-02,42200.0,42800.0,42100.0,42600.0,1200.0\n"
    )
    return path


class TestDataLoader:
    def test_load_csv_sorted(self, csv_file):
        df = DataLoader().load_from_csv(csv_file)

        assert list(df["date"]) == [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)]
        assert df.iloc[0]["close"] == 42200.0

    def test_load_csv_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            DataLoader().load_from_csv(tmp_path / "missing.csv")

    def test_load_csv_invalid_columns(self, tmp_path):
        path = tmp_path / "bad.csv"
        path.write_text("date,close\n2024-01-01,1.0\n")

        with pytest.raises(ValueError, match="Invalid CSV format"):
            DataLoader().load_from_csv(path)

    def test_intraday_csv_resampled(self, tmp_path):
        path = tmp_path / "hourly.csv"
        path.write_text(
            "datetime,open,high,low,close,volume\n"
            "2024-01-01 00:00:00,100,110,95,105,1\n"
            "2024-01-01 12:00:00,105,120,100,115,2\n"
            "2024-01-02 00:00:00,115,116,90,92,3\n"
        )

        df = DataLoader().load_from_csv(path)

        assert len(df) == 2
        first = df.iloc[0]
        assert first["open"] == 100
        assert first["high"] == 120
        assert first["low"] == 95
        assert first["close"] == 115
        assert first["volume"] == 3

    def test_filter_range_and_convert(self, csv_file):
        loader = DataLoader()
        df = loader.filter_range(loader.load_from_csv(csv_file), date(2024, 1, 2), None)
        prices = loader.to_daily_prices(df)

        assert [p.date for p in prices] == [date(2024, 1, 2), date(2024, 1, 3)]
        assert prices[0].close == 42600.0

    def test_validate_rejects_duplicates(self):
        df = pd.DataFrame(
            {
                "date": [date(2024, 1, 1), date(2024, 1, 1)],
                "open": [1.0, 1.0],
                "high": [1.0, 1.0],
                "low": [1.0, 1.0],
                "close": [1.0, 1.0],
                "volume": [1.0, 1.0],
            }
        )

        assert DataLoader().validate_data(df) is False

    async def test_load_from_exchange(self):
        exchange = DemoExchangeClient()
        loader = DataLoader(exchange_client=exchange)

        df = await loader.load_from_exchange("BTC/USDC", date(2024, 1, 1), date(2024, 1, 10))

        assert len(df) == 10
        assert df.iloc[0]["date"] == date(2024, 1, 1)
        assert df.iloc[-1]["date"] == date(2024, 1, 10)

    async def test_load_from_exchange_requires_client(self):
        with pytest.raises(ValueError, match="Exchange client required"):
            await DataLoader().load_from_exchange("BTC/USDC", date(2024, 1, 1), date(2024, 1, 2))

    async def test_load_from_store(self, init_db):
        repo = DailyPriceRepository()
        await repo.upsert_many(
            "BTC/USDC",
            [
                DailyPrice(symbol="BTC/USDC", date=f"2024-01-0{d}", open=1, high=1, low=1, close=float(d))
                for d in range(1, 6)
            ],
        )

        loader = DataLoader(price_repository=repo)
        df = await loader.load_from_store("BTC/USDC", date(2024, 1, 2), date(2024, 1, 4))
        prices = loader.to_daily_prices(df)

        assert [p.close for p in prices] == [2.0, 3.0, 4.0]

    async def test_load_from_store_empty(self, init_db):
        loader = DataLoader(price_repository=DailyPriceRepository())
        df = await loader.load_from_store("BTC/USDC")

        assert loader.to_daily_prices(df) == []
