"""Abstract base class for exchange adapters."""

from abc import ABC, abstractmethod
from datetime import datetime

from smartdca.exchange.models import OrderResponse, SpotMetadata


class ExchangeAdapter(ABC):
    """
    Abstract base class for exchange adapters.

    Defines the contract the purchase flow and data loaders rely on:
    connectivity, quote balance, spot prices and metadata, IOC limit
    orders and daily candles.
    """

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if connected to exchange."""
        ...

    @abstractmethod
    async def connect(self) -> bool:
        """
        Connect to the exchange.

        Returns:
            True if connection successful, False otherwise
        """
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Disconnect from the exchange."""
        ...

    @abstractmethod
    async def get_balance(self) -> float:
        """
        Get the free balance of the quote currency.

        Returns:
            Spendable quote amount (e.g. USDC)
        """
        ...

    @abstractmethod
    async def get_spot_price(self, symbol: str) -> float:
        """
        Get the current price for a symbol.

        Args:
            symbol: Trading pair (e.g., "BTC/USDC")

        Returns:
            Last traded price
        """
        ...

    @abstractmethod
    async def get_spot_metadata(self) -> SpotMetadata:
        """Get the spot universe."""
        ...

    @abstractmethod
    async def place_spot_order(
        self,
        asset_index: int,
        is_buy: bool,
        quantity: float,
        limit_price: float,
    ) -> OrderResponse:
        """
        Place an immediate-or-cancel limit order.

        Args:
            asset_index: Position of the pair in the spot universe
            is_buy: True for buy, False for sell
            quantity: Base asset quantity
            limit_price: Worst acceptable price

        Returns:
            Order response with fill, resting or error status

        Raises:
            ExchangeApiError: If the exchange rejects the request
        """
        ...

    @abstractmethod
    async def get_candles(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
    ) -> list[list[float]]:
        """
        Get daily candles between two instants.

        Returns:
            List of [timestamp_ms, open, high, low, close, volume]
        """
        ...

    def _ensure_connected(self) -> None:
        """Raise error if not connected."""
        if not self.is_connected:
            raise RuntimeError("Not connected to exchange. Call connect() first.")
