"""Database models using SQLModel."""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(UTC)


def new_id() -> str:
    return uuid4().hex


class PurchaseStatus(str, Enum):
    """Status of a purchase attempt."""

    PENDING = "pending"
    FILLED = "filled"
    PARTIALLY_FILLED = "partially_filled"
    FAILED = "failed"
    CANCELLED = "cancelled"


SUCCESSFUL_STATUSES = (PurchaseStatus.FILLED, PurchaseStatus.PARTIALLY_FILLED)


class Purchase(SQLModel, table=True):
    """One daily purchase attempt and its outcome."""

    __tablename__ = "purchases"

    id: str = Field(default_factory=new_id, primary_key=True)
    purchase_date: str = Field(index=True)  # YYYY-MM-DD format
    executed_at: datetime = Field(default_factory=utc_now, index=True)

    price: float
    quantity: float = 0.0
    cost: float = 0.0
    status: PurchaseStatus = Field(default=PurchaseStatus.PENDING, index=True)
    is_dry_run: bool = Field(default=False)
    order_id: str | None = None
    raw_response: str | None = None  # JSON string of the exchange reply
    failure_reason: str | None = None

    # Multiplier snapshot for audit
    multiplier: float = 1.0
    multiplier_tier: str | None = None
    drop_percentage: float = 0.0
    high_30_day: float = 0.0  # 0 means data unavailable
    ma_200_day: float = 0.0  # 0 means data unavailable

    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_successful(self) -> bool:
        """Whether the purchase acquired any of the asset."""
        return self.status in SUCCESSFUL_STATUSES


class DailyPrice(SQLModel, table=True):
    """Daily candle for a symbol, used for highs and moving averages."""

    __tablename__ = "daily_prices"
    __table_args__ = (UniqueConstraint("symbol", "date", name="uq_daily_prices_symbol_date"),)

    id: int | None = Field(default=None, primary_key=True)
    symbol: str = Field(index=True)
    date: str = Field(index=True)  # YYYY-MM-DD format
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    updated_at: datetime = Field(default_factory=utc_now)


class OutboxMessage(SQLModel, table=True):
    """Domain event stored in the same transaction as the aggregate that raised it."""

    __tablename__ = "outbox_messages"

    id: int | None = Field(default=None, primary_key=True)
    event_type: str = Field(index=True)
    aggregate_id: str | None = Field(default=None, index=True)
    payload: str  # JSON string
    created_at: datetime = Field(default_factory=utc_now)
    processed_at: datetime | None = Field(default=None, index=True)
    retry_count: int = 0
    last_error: str | None = None


class DistributedLockRecord(SQLModel, table=True):
    """Lease row backing the database lock provider."""

    __tablename__ = "distributed_locks"

    key: str = Field(primary_key=True)
    owner: str
    expires_at: datetime
