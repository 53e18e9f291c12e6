"""Daily purchase scheduler with transient-error retries."""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from datetime import UTC, date, datetime, time, timedelta

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from smartdca.config import Settings, get_settings
from smartdca.core.logging import get_logger
from smartdca.core.models import utc_now
from smartdca.core.repository import PurchaseRepository, get_purchase_repository
from smartdca.dca.errors import ErrorClass, classify_error
from smartdca.dca.execution import DcaExecutionService

logger = get_logger(__name__)

TICK_INTERVAL_SECONDS = 300.0
EXECUTION_WINDOW = timedelta(minutes=10)
MAX_RETRIES = 3


def _is_transient(exc: BaseException) -> bool:
    # CancelledError is shutdown, never retried
    return isinstance(exc, Exception) and classify_error(exc) is ErrorClass.TRANSIENT


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "purchase_retry_scheduled",
        attempt=retry_state.attempt_number,
        max_retries=MAX_RETRIES,
        delay=round(retry_state.upcoming_sleep, 3),
        error=str(exc) if exc else None,
    )


def target_time(now: datetime, hour: int, minute: int) -> datetime:
    """Today's configured buy time in UTC."""
    today = now.astimezone(UTC).date()
    return datetime.combine(today, time(hour, minute), tzinfo=UTC)


class DcaScheduler:
    """Triggers the daily purchase inside a 10-minute window after the buy time.

    Every tick checks the window and the persisted purchases; the last
    successful purchase date comes from the database, so restarts inside
    the window never buy twice.

    Example:
        scheduler = DcaScheduler(execution_service)
        await scheduler.start()
    """

    def __init__(
        self,
        execution: DcaExecutionService,
        repository: PurchaseRepository | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
        tick_interval: float = TICK_INTERVAL_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.execution = execution
        self.repository = repository or get_purchase_repository()
        self.settings = settings or get_settings()
        self.tick_interval = tick_interval
        self._clock = clock
        self._sleep = sleep
        self._running = False
        self._task: asyncio.Task | None = None

    def in_window(self, now: datetime) -> bool:
        """Whether ``now`` is inside today's execution window."""
        dca = self.settings.dca
        target = target_time(now, dca.daily_buy_hour, dca.daily_buy_minute)
        return target <= now < target + EXECUTION_WINDOW

    async def tick(self, now: datetime | None = None) -> bool:
        """Run one scheduling check.

        Returns:
            True if a purchase attempt ran to completion
        """
        now = now or self._clock()
        if not self.in_window(now):
            return False

        today = now.astimezone(UTC).date()
        last = await self.repository.get_last_successful_date(
            include_dry_run=self.settings.dca.dry_run
        )
        if last == today:
            logger.debug("purchase_already_done_today", purchase_date=today.isoformat())
            return False

        logger.info("dca_window_reached", purchase_date=today.isoformat())
        return await self.run_for_date(today)

    async def run_for_date(self, purchase_date: date) -> bool:
        """Execute the purchase, retrying transient errors with backoff.

        Waits 2, 4 and 8 seconds (plus up to 0.5s jitter) between attempts.

        Returns:
            True if the attempt completed, False if it gave up
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(MAX_RETRIES + 1),
            wait=wait_exponential(multiplier=2) + wait_random(0, 0.5),
            retry=retry_if_exception(_is_transient),
            before_sleep=_log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    await self.execution.execute_daily_purchase(purchase_date)
        except Exception as e:
            error_class = classify_error(e)
            if error_class is ErrorClass.PERMANENT:
                logger.error(
                    "purchase_permanent_error",
                    purchase_date=purchase_date.isoformat(),
                    error=str(e),
                    error_type=type(e).__name__,
                )
            elif error_class is ErrorClass.SKIP:
                logger.info("purchase_skipped", purchase_date=purchase_date.isoformat(), reason=str(e))
            else:
                logger.error(
                    "purchase_retries_exhausted",
                    purchase_date=purchase_date.isoformat(),
                    retries=MAX_RETRIES,
                    error=str(e),
                )
            return False

        logger.info("purchase_execution_completed", purchase_date=purchase_date.isoformat())
        return True

    async def run(self) -> None:
        """Tick until stopped or cancelled."""
        self._running = True
        logger.info("dca_scheduler_started", interval=self.tick_interval)

        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("scheduler_tick_error", error=str(e))

            try:
                await asyncio.sleep(self.tick_interval)
            except asyncio.CancelledError:
                break

        self._running = False
        logger.info("dca_scheduler_stopped")

    async def start(self) -> None:
        """Start the scheduler as a background task."""
        if self._running:
            return
        self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        """Stop the scheduler."""
        self._running = False

        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    @property
    def is_running(self) -> bool:
        return self._running
