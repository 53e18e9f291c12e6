"""Exchange response models and errors."""

from typing import Any

from pydantic import BaseModel, Field


class OrderFill(BaseModel):
    """Filled portion of an order."""

    total_sz: float
    avg_px: float
    oid: str


class OrderResting(BaseModel):
    """Order left on the book."""

    oid: str


class OrderStatus(BaseModel):
    """Outcome of one order; at most one of the fields is set."""

    filled: OrderFill | None = None
    resting: OrderResting | None = None
    error: str | None = None


class OrderResponse(BaseModel):
    """Response to an order placement."""

    status: str = "ok"
    statuses: list[OrderStatus] = Field(default_factory=list)
    raw: dict[str, Any] | None = None

    @property
    def first_status(self) -> OrderStatus | None:
        return self.statuses[0] if self.statuses else None


class SpotAsset(BaseModel):
    """A tradable spot pair."""

    name: str
    index: int


class SpotMetadata(BaseModel):
    """Spot universe of the exchange; an asset's index is its position in the list."""

    universe: list[SpotAsset] = Field(default_factory=list)

    def index_of(self, name: str) -> int | None:
        for position, asset in enumerate(self.universe):
            if asset.name == name:
                return position
        return None


class ExchangeApiError(Exception):
    """Error reported by the exchange, with the HTTP-style status when known."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    @property
    def is_client_error(self) -> bool:
        return self.status_code is not None and 400 <= self.status_code < 500


class AssetNotListedError(Exception):
    """Configured symbol is missing from the exchange's spot universe."""

    def __init__(self, symbol: str):
        super().__init__(f"{symbol} not found in exchange spot metadata")
        self.symbol = symbol
