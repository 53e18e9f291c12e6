"""Repositories for purchase and price history persistence."""

from collections.abc import AsyncGenerator, Iterable
from contextlib import asynccontextmanager
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlmodel import col, select

from smartdca.core.database import get_session_factory
from smartdca.core.events import EventType
from smartdca.core.logging import get_logger
from smartdca.core.models import (
    SUCCESSFUL_STATUSES,
    DailyPrice,
    OutboxMessage,
    Purchase,
    PurchaseStatus,
    utc_now,
)
from smartdca.core.outbox import make_outbox_message, purchase_domain_events

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class _SessionMixin:
    """Optional injected session, otherwise one session per operation."""

    def __init__(self, session: "AsyncSession | None" = None):
        """Initialize repository.

        Args:
            session: Optional async session. If not provided, creates new session per operation.
        """
        self._injected_session = session

    @asynccontextmanager
    async def _get_session(self) -> AsyncGenerator["AsyncSession", None]:
        """Get database session as async context manager."""
        if self._injected_session:
            yield self._injected_session
        else:
            async_session = get_session_factory()
            async with async_session() as session:
                yield session


class PurchaseRepository(_SessionMixin):
    """Repository for purchase records and the facts derived from them."""

    async def save(self, purchase: Purchase) -> Purchase:
        """Persist a purchase together with its domain events.

        The purchase row and its outbox messages are committed in one
        transaction.

        Args:
            purchase: Purchase to save

        Returns:
            The saved purchase
        """
        purchase.updated_at = utc_now()

        async with self._get_session() as session:
            session.add(purchase)
            for message in purchase_domain_events(purchase):
                session.add(message)
            await session.commit()
            await session.refresh(purchase)

        logger.info(
            "purchase_persisted",
            purchase_id=purchase.id,
            status=purchase.status.value,
            purchase_date=purchase.purchase_date,
            is_dry_run=purchase.is_dry_run,
        )
        return purchase

    async def get_purchase(self, purchase_id: str) -> Purchase | None:
        """Get a purchase by ID."""
        async with self._get_session() as session:
            statement = select(Purchase).where(Purchase.id == purchase_id)
            result = await session.execute(statement)
            return result.scalar_one_or_none()

    async def get_successful_for_date(
        self,
        purchase_date: date,
        include_dry_run: bool = True,
    ) -> Purchase | None:
        """Get a filled or partially filled purchase for a calendar date.

        Args:
            purchase_date: Calendar date of the purchase
            include_dry_run: Whether simulated purchases count

        Returns:
            The first matching purchase or None
        """
        async with self._get_session() as session:
            statement = select(Purchase).where(
                Purchase.purchase_date == purchase_date.isoformat(),
                col(Purchase.status).in_(SUCCESSFUL_STATUSES),
            )
            if not include_dry_run:
                statement = statement.where(Purchase.is_dry_run == False)  # noqa: E712

            result = await session.execute(statement.limit(1))
            return result.scalar_one_or_none()

    async def get_last_successful_date(self, include_dry_run: bool = True) -> date | None:
        """Get the most recent calendar date with a successful purchase.

        Returns:
            Date of the last filled/partially filled purchase, or None
        """
        async with self._get_session() as session:
            statement = select(func.max(Purchase.purchase_date)).where(
                col(Purchase.status).in_(SUCCESSFUL_STATUSES)
            )
            if not include_dry_run:
                statement = statement.where(Purchase.is_dry_run == False)  # noqa: E712

            result = await session.execute(statement)
            value = result.scalar_one_or_none()

        return date.fromisoformat(value) if value else None

    async def get_last_successful(self, include_dry_run: bool = False) -> Purchase | None:
        """Get the most recently executed successful purchase."""
        async with self._get_session() as session:
            statement = select(Purchase).where(col(Purchase.status).in_(SUCCESSFUL_STATUSES))
            if not include_dry_run:
                statement = statement.where(Purchase.is_dry_run == False)  # noqa: E712

            statement = statement.order_by(col(Purchase.executed_at).desc()).limit(1)
            result = await session.execute(statement)
            return result.scalar_one_or_none()

    async def get_latest_failed_for_date(self, purchase_date: date) -> Purchase | None:
        """Get the most recent failed attempt for a calendar date."""
        async with self._get_session() as session:
            statement = (
                select(Purchase)
                .where(
                    Purchase.purchase_date == purchase_date.isoformat(),
                    Purchase.status == PurchaseStatus.FAILED,
                )
                .order_by(col(Purchase.executed_at).desc())
                .limit(1)
            )
            result = await session.execute(statement)
            return result.scalar_one_or_none()

    async def get_recent(self, limit: int = 50) -> list[Purchase]:
        """Get the most recent purchases.

        Args:
            limit: Maximum number of purchases to return

        Returns:
            List of purchases ordered by executed_at descending
        """
        async with self._get_session() as session:
            statement = select(Purchase).order_by(col(Purchase.executed_at).desc()).limit(limit)
            result = await session.execute(statement)
            return list(result.scalars().all())

    async def has_alert(self, event_type: EventType, key: str) -> bool:
        """Check whether an alert with this key was already raised."""
        async with self._get_session() as session:
            statement = select(OutboxMessage.id).where(
                OutboxMessage.event_type == event_type.value,
                OutboxMessage.aggregate_id == key,
            )
            result = await session.execute(statement.limit(1))
            return result.scalar_one_or_none() is not None

    async def record_alert(self, event_type: EventType, key: str, data: dict) -> None:
        """Enqueue an alert through the outbox, keyed for de-duplication."""
        async with self._get_session() as session:
            session.add(make_outbox_message(event_type, data, aggregate_id=key))
            await session.commit()


class DailyPriceRepository(_SessionMixin):
    """Repository for daily candles."""

    async def upsert_many(self, symbol: str, candles: Iterable[DailyPrice]) -> int:
        """Insert or update daily candles keyed by (symbol, date).

        Returns:
            Number of candles written
        """
        written = 0

        async with self._get_session() as session:
            for candle in candles:
                statement = select(DailyPrice).where(
                    DailyPrice.symbol == symbol,
                    DailyPrice.date == candle.date,
                )
                result = await session.execute(statement)
                existing = result.scalar_one_or_none()

                if existing:
                    existing.open = candle.open
                    existing.high = candle.high
                    existing.low = candle.low
                    existing.close = candle.close
                    existing.volume = candle.volume
                    existing.updated_at = utc_now()
                else:
                    candle.symbol = symbol
                    session.add(candle)
                written += 1

            await session.commit()

        logger.debug("daily_prices_upserted", symbol=symbol, count=written)
        return written

    async def get_range(
        self,
        symbol: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[DailyPrice]:
        """Get candles for a symbol in ascending date order (bounds inclusive)."""
        async with self._get_session() as session:
            statement = select(DailyPrice).where(DailyPrice.symbol == symbol)
            if start is not None:
                statement = statement.where(DailyPrice.date >= start.isoformat())
            if end is not None:
                statement = statement.where(DailyPrice.date <= end.isoformat())
            statement = statement.order_by(col(DailyPrice.date))

            result = await session.execute(statement)
            return list(result.scalars().all())

    async def get_latest_date(self, symbol: str) -> date | None:
        """Get the most recent stored date for a symbol."""
        async with self._get_session() as session:
            statement = select(func.max(DailyPrice.date)).where(DailyPrice.symbol == symbol)
            result = await session.execute(statement)
            value = result.scalar_one_or_none()

        return date.fromisoformat(value) if value else None


# Global instances
_purchase_repository: PurchaseRepository | None = None
_price_repository: DailyPriceRepository | None = None


def get_purchase_repository() -> PurchaseRepository:
    """Get global purchase repository instance."""
    global _purchase_repository
    if _purchase_repository is None:
        _purchase_repository = PurchaseRepository()
    return _purchase_repository


def get_price_repository() -> DailyPriceRepository:
    """Get global daily price repository instance."""
    global _price_repository
    if _price_repository is None:
        _price_repository = DailyPriceRepository()
    return _price_repository
