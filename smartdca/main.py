"""SmartDCA main entrypoint."""

import asyncio
import signal

from smartdca import __version__
from smartdca.config import get_settings
from smartdca.core.database import dispose_engine, init_db
from smartdca.core.events import Event, EventType, get_event_bus, system_event
from smartdca.core.logging import get_logger, setup_logging
from smartdca.core.outbox import OutboxDispatcher
from smartdca.dca.execution import DcaExecutionService
from smartdca.dca.monitor import MissedPurchaseMonitor
from smartdca.dca.price_history import PriceHistoryService, PriceRefreshJob
from smartdca.dca.scheduler import DcaScheduler
from smartdca.exchange import ExchangeAdapter, get_exchange_adapter

logger = get_logger(__name__)

ALERT_EVENTS = (
    EventType.PURCHASE_COMPLETED,
    EventType.PURCHASE_FAILED,
    EventType.PURCHASE_SKIPPED,
    EventType.MISSED_PURCHASE,
)


async def log_alert(event: Event) -> None:
    """Surface purchase outcomes and alerts in the log."""
    if event.type in (EventType.PURCHASE_FAILED, EventType.MISSED_PURCHASE):
        logger.warning("dca_alert", event_type=event.type.value, **event.data)
    else:
        logger.info("dca_notification", event_type=event.type.value, **event.data)


class SmartDca:
    """Main application class."""

    def __init__(self):
        """Initialize the application."""
        self.settings = get_settings()
        self.event_bus = get_event_bus()
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._exchange: ExchangeAdapter | None = None
        self._dispatcher: OutboxDispatcher | None = None
        self._refresh: PriceRefreshJob | None = None
        self._scheduler: DcaScheduler | None = None
        self._monitor: MissedPurchaseMonitor | None = None

    async def startup(self) -> None:
        """Initialize all components."""
        dca = self.settings.dca
        symbol = self.settings.system.symbol

        print(f"\n  SmartDCA {__version__}")
        print(f"  Symbol: {symbol}")
        print(f"  Base amount: ${dca.base_daily_amount:,.2f} daily at {dca.daily_buy_hour:02d}:{dca.daily_buy_minute:02d} UTC")
        print(f"  Mode: {'DRY RUN' if dca.dry_run else 'LIVE'}")
        print(f"  Exchange: {'demo' if self.settings.exchange.demo else self.settings.exchange.name}")
        print()

        await init_db()
        logger.info("database_initialized")

        self._exchange = get_exchange_adapter()
        if not await self._exchange.connect():
            raise RuntimeError("Failed to connect to exchange")

        await self.event_bus.start()
        for event_type in ALERT_EVENTS:
            self.event_bus.subscribe(event_type, log_alert)

        self._dispatcher = OutboxDispatcher(self.event_bus)
        self._dispatcher.start()

        price_history = PriceHistoryService(exchange=self._exchange, event_bus=self.event_bus)
        self._refresh = PriceRefreshJob(price_history, symbol)
        await self._refresh.bootstrap()
        await self._refresh.start()

        execution = DcaExecutionService(
            self._exchange,
            price_history,
            event_bus=self.event_bus,
            settings=self.settings,
        )
        self._scheduler = DcaScheduler(execution, settings=self.settings)
        await self._scheduler.start()

        self._monitor = MissedPurchaseMonitor(settings=self.settings)
        await self._monitor.start()

        if self.settings.api.enabled:
            from smartdca.api.server import start_api_server

            await start_api_server(self.settings.api.host, self.settings.api.port)

        await self.event_bus.publish(
            system_event(EventType.SYSTEM_STARTED, f"SmartDCA {__version__} started")
        )

        self._running = True
        logger.info("smartdca_started", symbol=symbol, dry_run=dca.dry_run)
        print("  Press Ctrl+C to stop\n")

    async def shutdown(self) -> None:
        """Gracefully shutdown all components."""
        if not self._running:
            return

        logger.info("shutting_down")
        self._running = False

        if self.settings.api.enabled:
            from smartdca.api.server import stop_api_server

            await stop_api_server()

        for component in (self._monitor, self._scheduler, self._refresh, self._dispatcher):
            if component is not None:
                await component.stop()

        if self._exchange:
            await self._exchange.disconnect()

        await self.event_bus.publish_sync(
            system_event(EventType.SYSTEM_STOPPED, "SmartDCA shutting down")
        )
        await self.event_bus.stop()
        await dispose_engine()

        logger.info("smartdca_stopped")

    async def run(self) -> None:
        """Run until a shutdown signal arrives."""
        try:
            await self.startup()
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            logger.info("received_cancel")
        except Exception as e:
            logger.error("runtime_error", error=str(e))
            raise
        finally:
            await self.shutdown()

    def handle_signal(self, sig: signal.Signals) -> None:
        """Handle OS signals."""
        logger.info("received_signal", signal=sig.name)
        self._shutdown_event.set()


async def async_main() -> None:
    """Async main function."""
    app = SmartDca()

    loop = asyncio.get_running_loop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: app.handle_signal(s))

    await app.run()


def run() -> None:
    """Main entry point."""
    settings = get_settings()
    setup_logging(
        level=settings.system.log_level,
        json_format=settings.system.json_logs or settings.env == "production",
    )

    try:
        asyncio.run(async_main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
