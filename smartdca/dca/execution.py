"""One idempotent, lock-guarded daily purchase."""

import json
from collections.abc import Callable
from datetime import date, datetime, timedelta
from decimal import ROUND_DOWN, Decimal
from uuid import uuid4

from smartdca.config import Settings, get_settings
from smartdca.core.events import EventBus, get_event_bus, purchase_skipped_event
from smartdca.core.locks import DistributedLock, get_distributed_lock
from smartdca.core.logging import LogMessages, get_logger
from smartdca.core.models import Purchase, PurchaseStatus, utc_now
from smartdca.core.repository import PurchaseRepository, get_purchase_repository
from smartdca.dca.errors import ErrorClass, LockNotAcquiredError, PurchaseSkippedError, classify_error
from smartdca.dca.price_history import PriceHistoryService
from smartdca.exchange.adapter import ExchangeAdapter
from smartdca.exchange.models import AssetNotListedError, ExchangeApiError
from smartdca.strategies.multiplier import BASE_TIER_LABEL, MultiplierCalculator, MultiplierResult

logger = get_logger(__name__)

LOCK_TTL = timedelta(minutes=5)
MIN_BALANCE = 1.0
MIN_ORDER_VALUE = 10.0
SLIPPAGE_TOLERANCE = 1.05
FILLED_RATIO = 0.95
QUANTITY_STEP = Decimal("0.00001")
RESTING_REASON = "Order resting instead of filling (IOC should not rest)"
NO_STATUS_REASON = "No fill or resting status in order response"


def truncate_quantity(quantity: float) -> float:
    """Round a base quantity toward zero to 5 decimals."""
    return float(Decimal(str(quantity)).quantize(QUANTITY_STEP, rounding=ROUND_DOWN))


class DcaExecutionService:
    """Performs the daily purchase for a calendar date.

    Steps, all under the ``dca-purchase-{date}`` lock:

    1. skip if a successful purchase exists (not in dry-run)
    2. skip if the quote balance is below 1.0
    3. multiply the base amount by the smart multiplier
    4. skip if the amount is below the 10.0 minimum order
    5. place an IOC buy at 5% above the current price (simulated in dry-run)
    6. persist the purchase; its outbox events are written in the same commit

    Skips publish a ``purchase_skipped`` event. Exchange rejections are
    recorded as failed purchases; anything else propagates to the caller.
    """

    def __init__(
        self,
        exchange: ExchangeAdapter,
        price_history: PriceHistoryService,
        repository: PurchaseRepository | None = None,
        lock: DistributedLock | None = None,
        event_bus: EventBus | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.exchange = exchange
        self.price_history = price_history
        self.repository = repository or get_purchase_repository()
        self.lock = lock or get_distributed_lock()
        self.event_bus = event_bus or get_event_bus()
        self.settings = settings or get_settings()
        self._clock = clock

    @property
    def symbol(self) -> str:
        return self.settings.system.symbol

    async def execute_daily_purchase(self, purchase_date: date) -> None:
        """Run one purchase attempt for ``purchase_date``.

        Raises:
            AssetNotListedError: If the symbol is missing from the spot universe
            Exception: Network and other unexpected errors, for the caller to retry
        """
        try:
            await self._execute(purchase_date)
        except Exception as e:
            if classify_error(e) is not ErrorClass.SKIP:
                raise
            await self._skip(e)

    async def _skip(self, skipped: PurchaseSkippedError) -> None:
        if isinstance(skipped, LockNotAcquiredError):
            logger.warning("purchase_lock_busy", key=skipped.key)
        else:
            msg = LogMessages.purchase_skipped(skipped.reason)
            logger.info(
                msg.technical,
                current_balance=skipped.current_balance,
                required_amount=skipped.required_amount,
            )

        if skipped.notify:
            await self.event_bus.publish(
                purchase_skipped_event(
                    skipped.reason,
                    current_balance=skipped.current_balance,
                    required_amount=skipped.required_amount,
                )
            )

    async def _execute(self, purchase_date: date) -> None:
        key = f"dca-purchase-{purchase_date.isoformat()}"
        dca = self.settings.dca

        async with await self.lock.acquire(key, LOCK_TTL) as lock:
            if not lock.success:
                raise LockNotAcquiredError(key)

            logger.info("purchase_lock_acquired", key=key, dry_run=dca.dry_run)

            if not dca.dry_run:
                existing = await self.repository.get_successful_for_date(
                    purchase_date, include_dry_run=False
                )
                if existing is not None:
                    logger.info("purchase_already_completed", purchase_id=existing.id)
                    raise PurchaseSkippedError("Already purchased today")

            balance = await self.exchange.get_balance()
            logger.info("quote_balance", balance=balance, base_amount=dca.base_daily_amount)
            if balance < MIN_BALANCE:
                raise PurchaseSkippedError(
                    "Insufficient balance",
                    current_balance=balance,
                    required_amount=dca.base_daily_amount,
                )

            price = await self.exchange.get_spot_price(self.symbol)
            multiplier = await self._multiplier(price)

            usd_amount = min(balance, dca.base_daily_amount * multiplier.multiplier)
            if usd_amount < MIN_ORDER_VALUE:
                raise PurchaseSkippedError(
                    f"Amount below minimum order value (${MIN_ORDER_VALUE})",
                    current_balance=balance,
                    required_amount=MIN_ORDER_VALUE,
                )

            metadata = await self.exchange.get_spot_metadata()
            asset_index = metadata.index_of(self.symbol)
            if asset_index is None:
                raise AssetNotListedError(self.symbol)

            quantity = truncate_quantity(usd_amount / price)
            logger.info(
                "placing_order",
                usd_amount=usd_amount,
                quantity=quantity,
                price=price,
                multiplier=multiplier.multiplier,
            )

            purchase = Purchase(
                purchase_date=purchase_date.isoformat(),
                executed_at=self._clock(),
                price=price,
                status=PurchaseStatus.PENDING,
                is_dry_run=dca.dry_run,
                multiplier=multiplier.multiplier,
                multiplier_tier=multiplier.tier_label,
                drop_percentage=multiplier.drop_percentage,
                high_30_day=multiplier.high_30_day,
                ma_200_day=multiplier.ma_200_day,
            )

            if dca.dry_run:
                self._simulate_fill(purchase, quantity, price)
            else:
                await self._place_order(purchase, asset_index, quantity, price)

            await self.repository.save(purchase)
            self._log_outcome(purchase)

    async def _multiplier(self, price: float) -> MultiplierResult:
        """Smart multiplier for today; 1.0x when price history is unavailable."""
        dca = self.settings.dca
        try:
            high = await self.price_history.get_high(self.symbol, dca.high_lookback_days)
            ma = await self.price_history.get_sma(self.symbol, dca.bear_market_ma_period)
            result = MultiplierCalculator.from_settings(dca).calculate(
                price, dca.base_daily_amount, high, ma
            )
        except Exception as e:
            logger.warning("multiplier_fallback", error=str(e))
            return MultiplierResult(
                multiplier=1.0,
                tier_label=BASE_TIER_LABEL,
                is_bear_market=False,
                bear_boost_applied=0.0,
                drop_percentage=0.0,
                high_30_day=0.0,
                ma_200_day=0.0,
                final_amount=dca.base_daily_amount,
            )

        msg = LogMessages.multiplier_applied(
            result.tier_label, result.multiplier, result.is_bear_market
        )
        logger.info(msg.technical, drop=result.drop_percentage, high=result.high_30_day, ma=result.ma_200_day)
        return result

    def _simulate_fill(self, purchase: Purchase, quantity: float, price: float) -> None:
        purchase.quantity = quantity
        purchase.cost = quantity * price
        purchase.order_id = f"DRY-RUN-{uuid4().hex}"
        purchase.status = PurchaseStatus.FILLED
        purchase.raw_response = json.dumps(
            {"dry_run": True, "quantity": quantity, "price": price}
        )

    async def _place_order(
        self,
        purchase: Purchase,
        asset_index: int,
        quantity: float,
        price: float,
    ) -> None:
        try:
            response = await self.exchange.place_spot_order(
                asset_index,
                True,
                quantity,
                price * SLIPPAGE_TOLERANCE,
            )
        except ExchangeApiError as e:
            purchase.status = PurchaseStatus.FAILED
            purchase.failure_reason = e.message
            purchase.raw_response = json.dumps({"error": e.message, "status_code": e.status_code})
            logger.error("order_placement_failed", error=e.message, status_code=e.status_code)
            return

        purchase.raw_response = response.model_dump_json(exclude_none=True)
        status = response.first_status

        if status is not None and status.filled is not None:
            fill = status.filled
            purchase.quantity = fill.total_sz
            purchase.price = fill.avg_px
            purchase.cost = fill.total_sz * fill.avg_px
            purchase.order_id = fill.oid
            purchase.status = (
                PurchaseStatus.FILLED
                if fill.total_sz >= quantity * FILLED_RATIO
                else PurchaseStatus.PARTIALLY_FILLED
            )
        elif status is not None and status.resting is not None:
            purchase.order_id = status.resting.oid
            purchase.status = PurchaseStatus.PARTIALLY_FILLED
            purchase.failure_reason = RESTING_REASON
            logger.warning("order_resting_unexpectedly", order_id=purchase.order_id)
        else:
            purchase.status = PurchaseStatus.FAILED
            purchase.failure_reason = NO_STATUS_REASON
            logger.error(
                "order_response_without_fill",
                exchange_error=status.error if status is not None else None,
            )

    def _log_outcome(self, purchase: Purchase) -> None:
        if purchase.status == PurchaseStatus.FAILED:
            msg = LogMessages.purchase_failed(self.symbol, purchase.failure_reason or "Unknown error")
            logger.warning(msg.technical, purchase_id=purchase.id)
        else:
            msg = LogMessages.purchase_filled(
                self.symbol, purchase.quantity, purchase.price, purchase.multiplier
            )
            logger.info(
                msg.technical,
                purchase_id=purchase.id,
                status=purchase.status.value,
                is_dry_run=purchase.is_dry_run,
            )
