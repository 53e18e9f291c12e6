"""Exchange - Connectivity layer for live and demo spot purchases."""

from smartdca.exchange.adapter import ExchangeAdapter
from smartdca.exchange.ccxt_client import CcxtExchangeClient
from smartdca.exchange.demo import DemoExchangeClient, get_demo_client
from smartdca.exchange.models import (
    AssetNotListedError,
    ExchangeApiError,
    OrderFill,
    OrderResponse,
    OrderResting,
    OrderStatus,
    SpotAsset,
    SpotMetadata,
)

__all__ = [
    "AssetNotListedError",
    "CcxtExchangeClient",
    "DemoExchangeClient",
    "ExchangeAdapter",
    "ExchangeApiError",
    "OrderFill",
    "OrderResponse",
    "OrderResting",
    "OrderStatus",
    "SpotAsset",
    "SpotMetadata",
    "get_demo_client",
    "get_exchange_adapter",
]

_live_client: CcxtExchangeClient | None = None


def get_exchange_adapter() -> ExchangeAdapter:
    """Get the exchange adapter selected by settings.

    Returns the demo client when ``SMARTDCA_EXCHANGE_DEMO`` is true, otherwise
    the ccxt client for ``SMARTDCA_EXCHANGE_NAME``.
    """
    from smartdca.config import get_settings

    global _live_client
    settings = get_settings()

    if settings.exchange.demo:
        return get_demo_client()

    if _live_client is None:
        _live_client = CcxtExchangeClient(settings)
    return _live_client
