"""Daily price history: storage refresh and the window values the multiplier needs."""

import asyncio
import contextlib
from collections.abc import Callable
from datetime import UTC, date, datetime, time, timedelta

from smartdca.core.events import Event, EventBus, EventType, get_event_bus
from smartdca.core.logging import get_logger
from smartdca.core.models import DailyPrice, utc_now
from smartdca.core.repository import DailyPriceRepository, get_price_repository
from smartdca.exchange.adapter import ExchangeAdapter

logger = get_logger(__name__)

BOOTSTRAP_GAP_TOLERANCE_DAYS = 5
SMA_MIN_COVERAGE = 0.9
BOOTSTRAP_DAYS = 200
REFRESH_AT = time(0, 5)
REFRESH_RETRY_SECONDS = 3600.0


def candles_to_daily_prices(symbol: str, candles: list[list[float]]) -> list[DailyPrice]:
    """Convert [timestamp_ms, o, h, l, c, v] rows into DailyPrice rows."""
    return [
        DailyPrice(
            symbol=symbol,
            date=datetime.fromtimestamp(row[0] / 1000, tz=UTC).date().isoformat(),
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=float(row[5]) if len(row) > 5 and row[5] is not None else 0.0,
        )
        for row in candles
    ]


class PriceHistoryService:
    """Keeps daily candles in the database and answers window queries.

    Window queries cover ``today - N days`` through today, so a 30-day
    lookback spans up to 31 calendar dates. A result of 0 means the data
    is unavailable.
    """

    def __init__(
        self,
        exchange: ExchangeAdapter | None = None,
        repository: DailyPriceRepository | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.exchange = exchange
        self.repository = repository or get_price_repository()
        self.event_bus = event_bus or get_event_bus()
        self._clock = clock

    def _today(self) -> date:
        return self._clock().astimezone(UTC).date()

    async def _closes(self, symbol: str, days: int) -> list[float]:
        today = self._today()
        rows = await self.repository.get_range(symbol, today - timedelta(days=days), today)
        return [r.close for r in rows]

    async def get_high(self, symbol: str, lookback_days: int) -> float:
        """Highest close in the lookback window, or 0 when no data."""
        closes = await self._closes(symbol, lookback_days)
        if not closes:
            logger.warning("high_unavailable", symbol=symbol, lookback_days=lookback_days)
            return 0.0

        high = max(closes)
        logger.debug("window_high", symbol=symbol, high=high, days=len(closes))
        return high

    async def get_sma(self, symbol: str, period: int) -> float:
        """Mean close over the period, or 0 when under 90% of the days are stored."""
        closes = await self._closes(symbol, period)
        min_required = int(period * SMA_MIN_COVERAGE)

        if len(closes) < min_required:
            logger.warning(
                "sma_insufficient_data",
                symbol=symbol,
                period=period,
                available=len(closes),
                required=min_required,
            )
            return 0.0

        sma = sum(closes) / len(closes)
        logger.debug("window_sma", symbol=symbol, sma=sma, days=len(closes))
        return sma

    async def _fetch_and_store(self, symbol: str, start: date, end: date) -> int:
        if self.exchange is None:
            raise ValueError("Exchange client required for refreshing price history")

        candles = await self.exchange.get_candles(
            symbol,
            datetime.combine(start, time.min, tzinfo=UTC),
            datetime.combine(end, time.max, tzinfo=UTC),
        )
        written = await self.repository.upsert_many(symbol, candles_to_daily_prices(symbol, candles))

        await self.event_bus.publish(
            Event(
                type=EventType.PRICE_HISTORY_REFRESHED,
                data={"symbol": symbol, "candles": written, "end": end.isoformat()},
            )
        )
        return written

    async def bootstrap(self, symbol: str, days: int) -> int:
        """Load ``days`` of history unless it is already (nearly) complete.

        Returns:
            Number of candles written
        """
        today = self._today()
        start = today - timedelta(days=days)
        existing = await self.repository.get_range(symbol, start, today)

        if len(existing) >= days - BOOTSTRAP_GAP_TOLERANCE_DAYS:
            logger.info("price_history_present", symbol=symbol, days=len(existing))
            return 0

        logger.info("price_history_bootstrapping", symbol=symbol, start=start.isoformat(), days=days)
        written = await self._fetch_and_store(symbol, start, today)
        logger.info("price_history_bootstrapped", symbol=symbol, candles=written)
        return written

    async def refresh(self, symbol: str, bootstrap_days: int = BOOTSTRAP_DAYS) -> int:
        """Fetch candles from the latest stored date through today.

        Delegates to ``bootstrap`` when nothing is stored yet.

        Returns:
            Number of candles written
        """
        latest = await self.repository.get_latest_date(symbol)
        if latest is None:
            return await self.bootstrap(symbol, bootstrap_days)

        today = self._today()
        if latest >= today:
            logger.debug("price_history_current", symbol=symbol, latest=latest.isoformat())
            return 0

        written = await self._fetch_and_store(symbol, latest, today)
        logger.info("price_history_refreshed", symbol=symbol, candles=written)
        return written


def next_refresh_time(now: datetime) -> datetime:
    """Next 00:05 UTC after ``now``; the exchange has closed the daily candle by then."""
    now = now.astimezone(UTC)
    target = datetime.combine(now.date(), REFRESH_AT, tzinfo=UTC)
    return target if target > now else target + timedelta(days=1)


class PriceRefreshJob:
    """Bootstraps history on start, then refreshes the daily candle at 00:05 UTC.

    Failures are logged and retried an hour later; the job never raises
    into the host.
    """

    def __init__(
        self,
        service: PriceHistoryService,
        symbol: str,
        bootstrap_days: int = BOOTSTRAP_DAYS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.service = service
        self.symbol = symbol
        self.bootstrap_days = bootstrap_days
        self._clock = clock
        self._bootstrapped = False
        self._running = False
        self._task: asyncio.Task | None = None

    async def bootstrap(self) -> bool:
        """Load startup history; a failure leaves the existing data in use."""
        try:
            await self.service.bootstrap(self.symbol, self.bootstrap_days)
        except Exception as e:
            logger.error("price_history_bootstrap_failed", symbol=self.symbol, error=str(e))
            return False

        self._bootstrapped = True
        return True

    async def run(self) -> None:
        self._running = True
        if not self._bootstrapped:
            await self.bootstrap()

        delay = (next_refresh_time(self._clock()) - self._clock()).total_seconds()
        while self._running:
            logger.info("price_refresh_scheduled", symbol=self.symbol, delay=round(delay))
            try:
                await asyncio.sleep(delay)
                await self.service.refresh(self.symbol, self.bootstrap_days)
                delay = (next_refresh_time(self._clock()) - self._clock()).total_seconds()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("price_refresh_failed", symbol=self.symbol, error=str(e))
                delay = REFRESH_RETRY_SECONDS

        self._running = False
        logger.info("price_refresh_stopped", symbol=self.symbol)

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
