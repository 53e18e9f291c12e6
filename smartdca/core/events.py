"""Event bus for async pub/sub communication between modules."""

import asyncio
import contextlib
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from smartdca.core.logging import get_logger

logger = get_logger(__name__)


class EventType(str, Enum):
    """Types of events in the system."""

    # Purchase events
    PURCHASE_CREATED = "purchase_created"
    PURCHASE_COMPLETED = "purchase_completed"
    PURCHASE_FAILED = "purchase_failed"
    PURCHASE_SKIPPED = "purchase_skipped"
    MISSED_PURCHASE = "missed_purchase"

    # Price history events
    PRICE_HISTORY_REFRESHED = "price_history_refreshed"

    # System events
    SYSTEM_STARTED = "system_started"
    SYSTEM_STOPPED = "system_stopped"


def utc_now() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(UTC)


@dataclass
class Event:
    """Base event class."""

    type: EventType
    timestamp: datetime = field(default_factory=utc_now)
    data: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Ensure type is EventType."""
        if isinstance(self.type, str):
            self.type = EventType(self.type)


# Type alias for event handlers
EventHandler = Callable[[Event], Coroutine[Any, Any, None]]


class EventBus:
    """
    Async event bus for publish/subscribe pattern.

    Usage:
        bus = EventBus()

        async def on_skipped(event: Event):
            print(f"Skipped: {event.data['reason']}")

        bus.subscribe(EventType.PURCHASE_SKIPPED, on_skipped)

        await bus.publish(purchase_skipped_event("Insufficient balance", 0.5, 10.0))
    """

    def __init__(self, max_queue_size: int = 1000):
        """
        Initialize the event bus.

        Args:
            max_queue_size: Maximum number of events in the queue
        """
        self._subscribers: dict[EventType, list[EventHandler]] = {}
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=max_queue_size)
        self._running = False
        self._processor_task: asyncio.Task | None = None

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        """
        Subscribe to an event type.

        Args:
            event_type: The type of event to subscribe to
            handler: Async function to handle the event
        """
        if event_type not in self._subscribers:
            self._subscribers[event_type] = []

        if handler not in self._subscribers[event_type]:
            self._subscribers[event_type].append(handler)
            logger.debug("handler_subscribed", event_type=event_type.value)

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
        """
        Unsubscribe from an event type.

        Args:
            event_type: The type of event to unsubscribe from
            handler: The handler to remove
        """
        if event_type in self._subscribers and handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)
            logger.debug("handler_unsubscribed", event_type=event_type.value)

    async def publish(self, event: Event) -> None:
        """
        Queue an event for asynchronous delivery.

        Args:
            event: The event to publish
        """
        try:
            self._queue.put_nowait(event)
            logger.debug(
                "event_published",
                event_type=event.type.value,
                queue_size=self._queue.qsize(),
            )
        except asyncio.QueueFull:
            logger.warning("event_queue_full", event_type=event.type.value)

    async def publish_sync(self, event: Event) -> None:
        """
        Publish an event and wait for all handlers to complete.

        Args:
            event: The event to publish
        """
        await self._dispatch(event)

    async def _dispatch(self, event: Event) -> None:
        handlers = self._subscribers.get(event.type, [])

        if not handlers:
            logger.debug("no_handlers", event_type=event.type.value)
            return

        tasks = [self._safe_call(handler, event) for handler in handlers]
        await asyncio.gather(*tasks)

    async def _safe_call(self, handler: EventHandler, event: Event) -> None:
        try:
            await handler(event)
        except Exception as e:
            logger.error(
                "handler_error",
                event_type=event.type.value,
                handler=getattr(handler, "__name__", repr(handler)),
                error=str(e),
            )

    async def _process_events(self) -> None:
        """Process events from the queue."""
        while self._running:
            try:
                # Timeout lets the loop observe _running
                event = await asyncio.wait_for(self._queue.get(), timeout=0.1)
                await self._dispatch(event)
                self._queue.task_done()
            except TimeoutError:
                continue
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("event_processor_error", error=str(e))

    async def start(self) -> None:
        """Start the event processor."""
        if self._running:
            return

        self._running = True
        self._processor_task = asyncio.create_task(self._process_events())
        logger.info("event_bus_started")

    async def stop(self) -> None:
        """Stop the event processor."""
        if not self._running:
            return

        self._running = False

        if self._processor_task:
            self._processor_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._processor_task

        logger.info("event_bus_stopped")

    @property
    def is_running(self) -> bool:
        """Check if the event bus is running."""
        return self._running

    @property
    def queue_size(self) -> int:
        """Get the current queue size."""
        return self._queue.qsize()


# Global event bus instance
_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Get the global event bus instance."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


# Convenience functions for creating common events
def purchase_skipped_event(
    reason: str,
    current_balance: float | None = None,
    required_amount: float | None = None,
) -> Event:
    """Create a purchase skipped event."""
    return Event(
        type=EventType.PURCHASE_SKIPPED,
        data={
            "reason": reason,
            "current_balance": current_balance,
            "required_amount": required_amount,
        },
    )


def missed_purchase_event(purchase_date: str, diagnostic: str) -> Event:
    """Create a missed purchase alert event."""
    return Event(
        type=EventType.MISSED_PURCHASE,
        data={"purchase_date": purchase_date, "diagnostic": diagnostic},
    )


def system_event(event_type: EventType, message: str | None = None) -> Event:
    """Create a system event."""
    return Event(
        type=event_type,
        data={"message": message} if message else {},
    )
