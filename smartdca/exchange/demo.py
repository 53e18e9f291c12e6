"""Demo exchange client with synthetic data for dry runs and tests."""

import random
import uuid
from collections import deque
from datetime import UTC, datetime, time, timedelta
from typing import Any

from smartdca.core.logging import get_logger
from smartdca.exchange.adapter import ExchangeAdapter
from smartdca.exchange.models import (
    ExchangeApiError,
    OrderFill,
    OrderResponse,
    OrderResting,
    OrderStatus,
    SpotAsset,
    SpotMetadata,
)

logger = get_logger(__name__)

_DEFAULT_PRICES: dict[str, float] = {
    "BTC/USDC": 60000.0,
    "ETH/USDC": 3000.0,
}

_DEFAULT_FALLBACK_PRICE = 100.0


class DemoExchangeClient(ExchangeAdapter):
    """Exchange client returning synthetic data without network calls.

    Orders fill in full at the current price unless an outcome has been
    queued with one of the ``queue_*`` methods. Candles are a seeded
    random walk, so the same seed always yields the same history.
    """

    def __init__(
        self,
        balance: float = 1000.0,
        prices: dict[str, float] | None = None,
        universe: list[str] | None = None,
        seed: int = 42,
    ) -> None:
        self.balance = balance
        self._connected = False
        self._prices = dict(prices or _DEFAULT_PRICES)
        self._universe = list(universe) if universe is not None else ["ETH/USDC", "BTC/USDC"]
        self._seed = seed
        self._outcomes: deque[Any] = deque()
        self.orders: list[dict[str, Any]] = []

    async def connect(self) -> bool:
        """Connect (always succeeds, no network needed)."""
        self._connected = True
        logger.info("demo_exchange_connected")
        return True

    async def disconnect(self) -> None:
        """Disconnect from the demo exchange."""
        self._connected = False
        logger.info("demo_exchange_disconnected")

    @property
    def is_connected(self) -> bool:
        """Check if connected."""
        return self._connected

    def set_price(self, symbol: str, price: float) -> None:
        self._prices[symbol] = price

    def queue_fill(self, ratio: float = 1.0, price: float | None = None) -> None:
        """Next order fills ``ratio`` of the requested quantity."""
        self._outcomes.append(("fill", ratio, price))

    def queue_resting(self) -> None:
        """Next order rests on the book instead of filling."""
        self._outcomes.append(("resting",))

    def queue_empty(self) -> None:
        """Next order response carries no status."""
        self._outcomes.append(("empty",))

    def queue_error(self, exc: Exception) -> None:
        """Next order raises ``exc``."""
        self._outcomes.append(("raise", exc))

    def _get_price(self, symbol: str) -> float:
        if symbol not in self._prices:
            self._prices[symbol] = _DEFAULT_FALLBACK_PRICE
        return self._prices[symbol]

    async def get_balance(self) -> float:
        """Return the demo quote balance."""
        return self.balance

    async def get_spot_price(self, symbol: str) -> float:
        """Return the current synthetic price."""
        return self._get_price(symbol)

    async def get_spot_metadata(self) -> SpotMetadata:
        """Return the configured spot universe."""
        return SpotMetadata(
            universe=[SpotAsset(name=name, index=i) for i, name in enumerate(self._universe)]
        )

    async def place_spot_order(
        self,
        asset_index: int,
        is_buy: bool,
        quantity: float,
        limit_price: float,
    ) -> OrderResponse:
        """Simulate an IOC order according to the next queued outcome."""
        if not 0 <= asset_index < len(self._universe):
            raise ExchangeApiError(f"Unknown asset index {asset_index}", 400)

        symbol = self._universe[asset_index]
        oid = uuid.uuid4().hex[:12]
        self.orders.append(
            {
                "oid": oid,
                "symbol": symbol,
                "is_buy": is_buy,
                "quantity": quantity,
                "limit_price": limit_price,
            }
        )

        outcome = self._outcomes.popleft() if self._outcomes else ("fill", 1.0, None)
        kind = outcome[0]

        if kind == "raise":
            raise outcome[1]
        if kind == "resting":
            status = OrderStatus(resting=OrderResting(oid=oid))
        elif kind == "empty":
            return OrderResponse(status="ok", statuses=[])
        else:
            _, ratio, fill_price = outcome
            price = fill_price if fill_price is not None else self._get_price(symbol)
            filled = quantity * ratio
            if is_buy:
                self.balance -= filled * price
            status = OrderStatus(filled=OrderFill(total_sz=filled, avg_px=price, oid=oid))

        logger.info(
            "demo_limit_order",
            symbol=symbol,
            is_buy=is_buy,
            amount=quantity,
            price=limit_price,
            order_id=oid,
            outcome=kind,
        )
        return OrderResponse(status="ok", statuses=[status])

    async def get_candles(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
    ) -> list[list[float]]:
        """Generate one synthetic daily candle per day in the range."""
        rng = random.Random(f"{self._seed}:{symbol}")
        day = start.astimezone(UTC).date()
        last_day = end.astimezone(UTC).date()
        price = self._get_price(symbol) * 0.8

        candles: list[list[float]] = []
        while day <= last_day:
            ts = int(datetime.combine(day, time.min, tzinfo=UTC).timestamp() * 1000)
            open_price = price
            close_price = max(open_price * (1 + rng.gauss(0.0005, 0.03)), 0.01)
            wick = abs(open_price * rng.gauss(0, 0.01))
            high_price = max(open_price, close_price) + wick
            low_price = max(min(open_price, close_price) - wick, 0.01)
            volume = rng.uniform(500, 5000)

            candles.append([ts, open_price, high_price, low_price, close_price, volume])
            price = close_price
            day += timedelta(days=1)

        return candles


_demo_client: DemoExchangeClient | None = None


def get_demo_client() -> DemoExchangeClient:
    """Get the global demo client instance."""
    global _demo_client
    if _demo_client is None:
        _demo_client = DemoExchangeClient()
    return _demo_client
