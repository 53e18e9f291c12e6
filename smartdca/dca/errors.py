"""Error taxonomy for the live purchase flow."""

from enum import Enum

from smartdca.exchange.models import AssetNotListedError, ExchangeApiError


class ErrorClass(str, Enum):
    """How the scheduler should react to an error."""

    PERMANENT = "permanent"  # log, never retry
    TRANSIENT = "transient"  # retry with backoff
    SKIP = "skip"  # nothing to do today


class PurchaseSkippedError(Exception):
    """A purchase attempt stopped cleanly before placing an order.

    Attributes:
        reason: Human-readable reason, published with the skip event
        current_balance: Quote balance when known
        required_amount: Amount that would have been needed when known
        notify: Whether a purchase_skipped event should be published
    """

    def __init__(
        self,
        reason: str,
        current_balance: float | None = None,
        required_amount: float | None = None,
        notify: bool = True,
    ):
        super().__init__(reason)
        self.reason = reason
        self.current_balance = current_balance
        self.required_amount = required_amount
        self.notify = notify


class LockNotAcquiredError(PurchaseSkippedError):
    """Another instance holds the purchase lock for the date."""

    def __init__(self, key: str):
        super().__init__(f"Lock {key} is held by another instance", notify=False)
        self.key = key


def classify_error(exc: BaseException) -> ErrorClass:
    """Classify an exception raised by a purchase attempt.

    - skip conditions (lock unavailable, already purchased, low balance) -> SKIP
    - configuration errors and 4xx exchange rejections -> PERMANENT
    - everything else (network, 5xx, timeouts) -> TRANSIENT
    """
    if isinstance(exc, PurchaseSkippedError):
        return ErrorClass.SKIP
    if isinstance(exc, AssetNotListedError):
        return ErrorClass.PERMANENT
    if isinstance(exc, ExchangeApiError) and exc.is_client_error:
        return ErrorClass.PERMANENT
    return ErrorClass.TRANSIENT
