"""Tests for DemoExchangeClient and demo mode integration."""

from datetime import UTC, datetime

import pytest

from smartdca.exchange import get_exchange_adapter
from smartdca.exchange.adapter import ExchangeAdapter
from smartdca.exchange.demo import DemoExchangeClient, get_demo_client
from smartdca.exchange.models import ExchangeApiError


class TestDemoExchangeClientInterface:
    """DemoExchangeClient implements ExchangeAdapter."""

    def test_instance_is_exchange_adapter(self):
        assert isinstance(DemoExchangeClient(), ExchangeAdapter)

    def test_singleton(self):
        assert get_demo_client() is get_demo_client()

    def test_adapter_selected_in_demo_mode(self):
        assert get_exchange_adapter() is get_demo_client()


class TestDemoConnectDisconnect:
    async def test_connect(self):
        client = DemoExchangeClient()
        assert not client.is_connected
        assert await client.connect() is True
        assert client.is_connected

    async def test_disconnect(self):
        client = DemoExchangeClient()
        await client.connect()
        await client.disconnect()
        assert not client.is_connected


class TestDemoMarketData:
    async def test_default_price(self):
        client = DemoExchangeClient()
        assert await client.get_spot_price("BTC/USDC") == 60000.0

    async def test_unknown_symbol_uses_fallback(self):
        client = DemoExchangeClient()
        assert await client.get_spot_price("DOGE/USDC") == 100.0

    async def test_set_price(self):
        client = DemoExchangeClient()
        client.set_price("BTC/USDC", 55000.0)
        assert await client.get_spot_price("BTC/USDC") == 55000.0

    async def test_metadata_indexes_follow_universe(self):
        client = DemoExchangeClient(universe=["ETH/USDC", "BTC/USDC"])
        meta = await client.get_spot_metadata()

        assert meta.index_of("BTC/USDC") == 1
        assert meta.index_of("SOL/USDC") is None

    async def test_candles_one_per_day_and_seeded(self):
        start = datetime(2025, 1, 1, tzinfo=UTC)
        end = datetime(2025, 1, 10, tzinfo=UTC)

        first = await DemoExchangeClient(seed=7).get_candles("BTC/USDC", start, end)
        second = await DemoExchangeClient(seed=7).get_candles("BTC/USDC", start, end)

        assert len(first) == 10
        assert first == second
        for _, open_, high, low, close, _ in first:
            assert high >= max(open_, close)
            assert low <= min(open_, close)


class TestDemoOrders:
    async def test_default_full_fill_deducts_balance(self):
        client = DemoExchangeClient(balance=1000.0, universe=["BTC/USDC"])
        response = await client.place_spot_order(0, True, 0.01, 60600.0)

        fill = response.first_status.filled
        assert fill.total_sz == pytest.approx(0.01)
        assert fill.avg_px == 60000.0
        assert client.balance == pytest.approx(400.0)
        assert client.orders[0]["limit_price"] == 60600.0

    async def test_partial_fill(self):
        client = DemoExchangeClient(universe=["BTC/USDC"])
        client.queue_fill(ratio=0.5, price=59000.0)

        fill = (await client.place_spot_order(0, True, 0.02, 60600.0)).first_status.filled
        assert fill.total_sz == pytest.approx(0.01)
        assert fill.avg_px == 59000.0

    async def test_resting(self):
        client = DemoExchangeClient(universe=["BTC/USDC"])
        client.queue_resting()

        status = (await client.place_spot_order(0, True, 0.01, 60600.0)).first_status
        assert status.filled is None
        assert status.resting.oid

    async def test_empty_response(self):
        client = DemoExchangeClient(universe=["BTC/USDC"])
        client.queue_empty()

        response = await client.place_spot_order(0, True, 0.01, 60600.0)
        assert response.first_status is None

    async def test_queued_error(self):
        client = DemoExchangeClient(universe=["BTC/USDC"])
        client.queue_error(ExchangeApiError("Insufficient margin", 400))

        with pytest.raises(ExchangeApiError, match="Insufficient margin"):
            await client.place_spot_order(0, True, 0.01, 60600.0)

    async def test_outcomes_consumed_in_order(self):
        client = DemoExchangeClient(universe=["BTC/USDC"])
        client.queue_resting()

        first = await client.place_spot_order(0, True, 0.01, 60600.0)
        second = await client.place_spot_order(0, True, 0.01, 60600.0)

        assert first.first_status.resting is not None
        assert second.first_status.filled is not None

    async def test_unknown_asset_index(self):
        client = DemoExchangeClient(universe=["BTC/USDC"])

        with pytest.raises(ExchangeApiError) as exc_info:
            await client.place_spot_order(5, True, 0.01, 60600.0)
        assert exc_info.value.status_code == 400
        assert client.orders == []
