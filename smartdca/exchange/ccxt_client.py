"""CCXT async client for live spot purchases."""

from datetime import datetime
from typing import Any

import ccxt.async_support as ccxt
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from smartdca.config import Settings, get_settings
from smartdca.core.logging import LogMessages, get_logger
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

DAY_MS = 86_400_000
CANDLE_PAGE_LIMIT = 1000

# Most specific first. Network errors stay ccxt.NetworkError.
_STATUS_CODES: list[tuple[type[Exception], int]] = [
    (ccxt.PermissionDenied, 403),
    (ccxt.AuthenticationError, 401),
    (ccxt.InsufficientFunds, 400),
    (ccxt.InvalidOrder, 400),
    (ccxt.BadSymbol, 400),
    (ccxt.BadRequest, 400),
    (ccxt.ExchangeError, 500),
]


def to_api_error(error: Exception) -> ExchangeApiError:
    """Map a ccxt exception to an ExchangeApiError with an HTTP-style status."""
    for error_type, status_code in _STATUS_CODES:
        if isinstance(error, error_type):
            return ExchangeApiError(str(error), status_code)
    return ExchangeApiError(str(error))


class CcxtExchangeClient(ExchangeAdapter):
    """
    Spot exchange connectivity via CCXT.

    Reads retry on network errors; order placement does not retry, so a
    lost response never turns into a second order.
    """

    def __init__(self, settings: Settings | None = None, sandbox: bool | None = None):
        """Initialize the client.

        Args:
            settings: Application settings (global settings if None)
            sandbox: Whether to use sandbox/testnet mode (settings if None)
        """
        self.settings = settings or get_settings()
        self._sandbox = self.settings.exchange.sandbox if sandbox is None else sandbox
        self._exchange: Any = None
        self._symbols: list[str] = []

    @property
    def name(self) -> str:
        return self.settings.exchange.name.lower()

    async def connect(self) -> bool:
        """Connect to the exchange and load its spot markets.

        Returns:
            True if connection successful, False otherwise
        """
        try:
            exchange_class = getattr(ccxt, self.name)
        except AttributeError:
            logger.error("exchange_not_supported", exchange=self.name)
            return False

        try:
            config: dict[str, Any] = {
                "enableRateLimit": True,
                "options": {
                    "defaultType": "spot",
                    "adjustForTimeDifference": True,
                },
            }

            if self.settings.has_exchange_credentials:
                config["apiKey"] = self.settings.exchange.api_key.get_secret_value()
                config["secret"] = self.settings.exchange.api_secret.get_secret_value()

            self._exchange = exchange_class(config)

            if self._sandbox:
                self._exchange.set_sandbox_mode(True)
                logger.info("exchange_sandbox_mode_enabled")

            markets = await self._exchange.load_markets()
            self._symbols = sorted(
                symbol for symbol, market in markets.items() if market.get("spot", True)
            )

            msg = LogMessages.connection_status(self.name, "connected")
            logger.info(msg.technical, markets=len(self._symbols))
            return True

        except ccxt.NetworkError as e:
            logger.error("exchange_network_error", error=str(e))
        except ccxt.ExchangeError as e:
            logger.error("exchange_error", error=str(e))
        except Exception as e:
            logger.error("exchange_connection_failed", error=str(e))

        await self._close()
        return False

    async def disconnect(self) -> None:
        """Disconnect from the exchange."""
        if self._exchange:
            await self._close()
            msg = LogMessages.connection_status(self.name, "disconnected")
            logger.info(msg.technical)

    async def _close(self) -> None:
        if self._exchange is not None:
            await self._exchange.close()
            self._exchange = None

    @property
    def is_connected(self) -> bool:
        """Check if connected to exchange."""
        return self._exchange is not None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(ccxt.NetworkError),
        reraise=True,
    )
    async def _read(self, method: str, *args: Any, **kwargs: Any) -> Any:
        """Call a read-only ccxt method, mapping exchange rejections."""
        self._ensure_connected()
        try:
            return await getattr(self._exchange, method)(*args, **kwargs)
        except ccxt.NetworkError:
            raise
        except ccxt.BaseError as e:
            raise to_api_error(e) from e

    async def get_balance(self) -> float:
        """Get the free quote currency balance."""
        balance = await self._read("fetch_balance")
        quote = self.settings.exchange.quote_currency
        return float(balance.get("free", {}).get(quote) or 0.0)

    async def get_spot_price(self, symbol: str) -> float:
        """Get the last traded price for a symbol."""
        ticker = await self._read("fetch_ticker", symbol)
        price = ticker.get("last") or ticker.get("close")
        if not price:
            raise ExchangeApiError(f"No price available for {symbol}", 502)
        return float(price)

    async def get_spot_metadata(self) -> SpotMetadata:
        """Spot universe in a stable (sorted) order."""
        self._ensure_connected()
        return SpotMetadata(
            universe=[SpotAsset(name=symbol, index=i) for i, symbol in enumerate(self._symbols)]
        )

    async def place_spot_order(
        self,
        asset_index: int,
        is_buy: bool,
        quantity: float,
        limit_price: float,
    ) -> OrderResponse:
        """Place an IOC limit order.

        Raises:
            ExchangeApiError: If the exchange rejects the order
            ccxt.NetworkError: If the exchange cannot be reached
        """
        self._ensure_connected()

        if not 0 <= asset_index < len(self._symbols):
            raise ExchangeApiError(f"Unknown asset index {asset_index}", 400)
        symbol = self._symbols[asset_index]
        side = "buy" if is_buy else "sell"

        try:
            order = await self._exchange.create_order(
                symbol,
                "limit",
                side,
                quantity,
                limit_price,
                params={"timeInForce": "IOC"},
            )
        except ccxt.NetworkError:
            raise
        except ccxt.BaseError as e:
            raise to_api_error(e) from e

        logger.info(
            "limit_order_created",
            symbol=symbol,
            side=side,
            amount=quantity,
            price=limit_price,
            order_id=order.get("id"),
            status=order.get("status"),
        )
        return self._to_order_response(order, limit_price)

    @staticmethod
    def _to_order_response(order: dict[str, Any], limit_price: float) -> OrderResponse:
        oid = str(order.get("id") or "")
        filled = float(order.get("filled") or 0.0)
        status = order.get("status")

        if filled > 0:
            avg_px = order.get("average") or order.get("price") or limit_price
            order_status = OrderStatus(filled=OrderFill(total_sz=filled, avg_px=float(avg_px), oid=oid))
        elif status == "open":
            order_status = OrderStatus(resting=OrderResting(oid=oid))
        else:
            order_status = OrderStatus(error=f"Order {status or 'unknown'} without fill")

        raw = {k: v for k, v in order.items() if k != "info"}
        return OrderResponse(status="ok", statuses=[order_status], raw=raw)

    async def get_candles(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
    ) -> list[list[float]]:
        """Fetch daily candles page by page."""
        since = int(start.timestamp() * 1000)
        end_ms = int(end.timestamp() * 1000)
        candles: list[list[float]] = []

        while since <= end_ms:
            page = await self._read("fetch_ohlcv", symbol, "1d", since=since, limit=CANDLE_PAGE_LIMIT)
            if not page:
                break
            candles.extend(row for row in page if row[0] <= end_ms)
            next_since = int(page[-1][0]) + DAY_MS
            if next_since <= since:
                break
            since = next_since

        logger.debug("candles_fetched", symbol=symbol, count=len(candles))
        return candles
