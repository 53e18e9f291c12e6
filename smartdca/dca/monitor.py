"""Missed purchase detection and DCA health reporting."""

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Literal

from smartdca.config import Settings, get_settings
from smartdca.core.events import EventType, missed_purchase_event
from smartdca.core.logging import get_logger
from smartdca.core.models import utc_now
from smartdca.core.repository import PurchaseRepository, ensure_utc, get_purchase_repository
from smartdca.dca.scheduler import target_time

logger = get_logger(__name__)

# target + 10 min execution window + 30 min grace
VERIFICATION_DELAY = timedelta(minutes=40)
ALERT_WINDOW = timedelta(hours=2)
CHECK_INTERVAL_SECONDS = 1800.0
HEALTHY_MAX_HOURS = 36.0

NO_ATTEMPT_DIAGNOSTIC = (
    "No purchase attempt recorded. Scheduler may not have triggered or was skipped."
)


@dataclass
class HealthReport:
    """Health of the daily purchase loop."""

    status: Literal["healthy", "degraded", "unhealthy"]
    message: str
    last_purchase: datetime | None = None
    last_purchase_status: str | None = None
    last_purchase_quantity: float | None = None
    hours_since_last_purchase: float | None = None

    @property
    def is_healthy(self) -> bool:
        return self.status == "healthy"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "last_purchase": self.last_purchase.isoformat() if self.last_purchase else "never",
            "last_purchase_status": self.last_purchase_status,
            "last_purchase_quantity": self.last_purchase_quantity,
            "hours_since_last_purchase": self.hours_since_last_purchase,
        }


async def check_health(
    repository: PurchaseRepository | None = None,
    now: datetime | None = None,
) -> HealthReport:
    """Report health from the last successful live purchase.

    Healthy when it happened within 36 hours, degraded when older or
    absent, unhealthy when the database cannot be read.
    """
    repository = repository or get_purchase_repository()
    now = now or utc_now()

    try:
        last = await repository.get_last_successful(include_dry_run=False)
    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        return HealthReport(status="unhealthy", message="Failed to check DCA service health")

    if last is None:
        return HealthReport(status="degraded", message="No purchases recorded yet")

    executed_at = ensure_utc(last.executed_at)
    hours = (now - executed_at).total_seconds() / 3600
    report = HealthReport(
        status="healthy",
        message="DCA service operating normally",
        last_purchase=executed_at,
        last_purchase_status=last.status.value,
        last_purchase_quantity=last.quantity,
        hours_since_last_purchase=round(hours, 2),
    )

    if hours > HEALTHY_MAX_HOURS:
        report.status = "degraded"
        report.message = f"No purchase in {hours:.0f} hours"

    return report


class MissedPurchaseMonitor:
    """Raises a ``missed_purchase`` alert when today's buy did not happen.

    Checks run every 30 minutes and only act between 40 minutes and 2h40
    after the configured buy time. Alerts go through the outbox keyed by
    date, so each day is alerted at most once, across restarts too.
    """

    def __init__(
        self,
        repository: PurchaseRepository | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
        check_interval: float = CHECK_INTERVAL_SECONDS,
    ):
        self.repository = repository or get_purchase_repository()
        self.settings = settings or get_settings()
        self.check_interval = check_interval
        self._clock = clock
        self._running = False
        self._task: asyncio.Task | None = None

    async def check(self, now: datetime | None = None) -> bool:
        """Run one verification.

        Returns:
            True if an alert was raised
        """
        now = now or self._clock()
        dca = self.settings.dca
        verification_time = target_time(now, dca.daily_buy_hour, dca.daily_buy_minute) + VERIFICATION_DELAY

        if now < verification_time or now > verification_time + ALERT_WINDOW:
            return False

        today = now.astimezone(UTC).date()
        key = f"missed-purchase-{today.isoformat()}"
        if await self.repository.has_alert(EventType.MISSED_PURCHASE, key):
            return False

        logger.info("missed_purchase_check", purchase_date=today.isoformat())

        purchase = await self.repository.get_successful_for_date(today, include_dry_run=False)
        if purchase is not None:
            logger.info("purchase_verified", purchase_date=today.isoformat(), purchase_id=purchase.id)
            return False

        failed = await self.repository.get_latest_failed_for_date(today)
        diagnostic = (
            f"Order was attempted but failed: {failed.failure_reason}"
            if failed is not None
            else NO_ATTEMPT_DIAGNOSTIC
        )

        event = missed_purchase_event(today.isoformat(), diagnostic)
        data = {**event.data, "expected_by": verification_time.strftime("%H:%M")}
        await self.repository.record_alert(EventType.MISSED_PURCHASE, key, data)

        logger.warning("missed_purchase_detected", purchase_date=today.isoformat(), diagnostic=diagnostic)
        return True

    async def run(self) -> None:
        """Check periodically until stopped or cancelled."""
        self._running = True
        logger.info("missed_purchase_monitor_started", interval=self.check_interval)

        while self._running:
            try:
                await self.check()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("missed_purchase_check_failed", error=str(e))

            try:
                await asyncio.sleep(self.check_interval)
            except asyncio.CancelledError:
                break

        self._running = False
        logger.info("missed_purchase_monitor_stopped")

    async def start(self) -> None:
        if self._running:
            return
        self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        self._running = False

        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
