"""Transactional outbox: domain events saved with their aggregate, delivered later."""

import asyncio
import contextlib
import json
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlmodel import col, select

from smartdca.core.database import get_session_factory
from smartdca.core.events import Event, EventBus, EventType, get_event_bus
from smartdca.core.logging import get_logger
from smartdca.core.models import OutboxMessage, Purchase, PurchaseStatus, utc_now

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def make_outbox_message(
    event_type: EventType,
    data: dict[str, Any],
    aggregate_id: str | None = None,
) -> OutboxMessage:
    """Build an outbox row for an event payload."""
    return OutboxMessage(
        event_type=event_type.value,
        aggregate_id=aggregate_id,
        payload=json.dumps(data, default=_json_default),
    )


def purchase_domain_events(purchase: Purchase) -> list[OutboxMessage]:
    """Derive the domain events raised by a newly recorded purchase.

    Every purchase raises ``purchase_created``. A fill raises
    ``purchase_completed``; a failure or an unexpected resting order raises
    ``purchase_failed``.
    """
    messages = [
        make_outbox_message(
            EventType.PURCHASE_CREATED,
            {
                "purchase_id": purchase.id,
                "purchase_date": purchase.purchase_date,
                "price": purchase.price,
                "cost": purchase.cost,
                "multiplier": purchase.multiplier,
            },
            aggregate_id=purchase.id,
        )
    ]

    if purchase.status == PurchaseStatus.FAILED or purchase.failure_reason:
        messages.append(
            make_outbox_message(
                EventType.PURCHASE_FAILED,
                {
                    "purchase_id": purchase.id,
                    "purchase_date": purchase.purchase_date,
                    "reason": purchase.failure_reason or "Unknown error",
                    "status": purchase.status.value,
                },
                aggregate_id=purchase.id,
            )
        )
    elif purchase.is_successful:
        messages.append(
            make_outbox_message(
                EventType.PURCHASE_COMPLETED,
                {
                    "purchase_id": purchase.id,
                    "purchase_date": purchase.purchase_date,
                    "price": purchase.price,
                    "quantity": purchase.quantity,
                    "cost": purchase.cost,
                    "multiplier": purchase.multiplier,
                    "tier": purchase.multiplier_tier,
                    "is_dry_run": purchase.is_dry_run,
                    "executed_at": purchase.executed_at,
                },
                aggregate_id=purchase.id,
            )
        )

    return messages


class OutboxDispatcher:
    """Delivers pending outbox messages to the event bus.

    Messages are marked processed after delivery. A message that cannot be
    decoded keeps its row, gets ``retry_count`` incremented and is abandoned
    once ``max_retries`` is reached.
    """

    def __init__(
        self,
        event_bus: EventBus | None = None,
        batch_size: int = 50,
        max_retries: int = 5,
        session: "AsyncSession | None" = None,
    ):
        self.event_bus = event_bus or get_event_bus()
        self.batch_size = batch_size
        self.max_retries = max_retries
        self._injected_session = session
        self._running = False
        self._task: asyncio.Task | None = None

    @asynccontextmanager
    async def _get_session(self) -> AsyncGenerator["AsyncSession", None]:
        if self._injected_session:
            yield self._injected_session
        else:
            async_session = get_session_factory()
            async with async_session() as session:
                yield session

    async def dispatch_pending(self) -> int:
        """Deliver one batch of pending messages.

        Returns:
            Number of messages delivered
        """
        delivered = 0

        async with self._get_session() as session:
            statement = (
                select(OutboxMessage)
                .where(col(OutboxMessage.processed_at).is_(None))
                .where(OutboxMessage.retry_count < self.max_retries)
                .order_by(col(OutboxMessage.id))
                .limit(self.batch_size)
            )
            result = await session.execute(statement)
            messages = list(result.scalars().all())

            for message in messages:
                try:
                    event = Event(
                        type=EventType(message.event_type),
                        timestamp=message.created_at,
                        data=json.loads(message.payload),
                    )
                    await self.event_bus.publish_sync(event)
                    message.processed_at = utc_now()
                    delivered += 1
                except (ValueError, TypeError) as e:
                    message.retry_count += 1
                    message.last_error = str(e)
                    logger.warning(
                        "outbox_message_failed",
                        message_id=message.id,
                        event_type=message.event_type,
                        retry_count=message.retry_count,
                        error=str(e),
                    )

            await session.commit()

        if delivered:
            logger.debug("outbox_dispatched", delivered=delivered)

        return delivered

    async def run(self, interval: float = 5.0) -> None:
        """Poll and dispatch until stopped."""
        self._running = True
        logger.info("outbox_dispatcher_started", interval=interval)

        while self._running:
            try:
                await self.dispatch_pending()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("outbox_dispatch_error", error=str(e))

            try:
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break

        logger.info("outbox_dispatcher_stopped")

    def start(self, interval: float = 5.0) -> asyncio.Task:
        """Run the dispatcher as a background task."""
        self._task = asyncio.create_task(self.run(interval))
        return self._task

    async def stop(self) -> None:
        """Stop the background task."""
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
