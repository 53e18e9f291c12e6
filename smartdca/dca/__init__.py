"""DCA - Live daily purchase flow."""

from smartdca.dca.errors import (
    ErrorClass,
    LockNotAcquiredError,
    PurchaseSkippedError,
    classify_error,
)
from smartdca.dca.execution import DcaExecutionService
from smartdca.dca.monitor import HealthReport, MissedPurchaseMonitor, check_health
from smartdca.dca.price_history import PriceHistoryService, PriceRefreshJob
from smartdca.dca.scheduler import DcaScheduler

__all__ = [
    "DcaExecutionService",
    "DcaScheduler",
    "ErrorClass",
    "HealthReport",
    "LockNotAcquiredError",
    "MissedPurchaseMonitor",
    "PriceHistoryService",
    "PriceRefreshJob",
    "PurchaseSkippedError",
    "check_health",
    "classify_error",
]
