"""Structured logging configuration using structlog."""

import logging
import sys
from typing import Literal

import structlog
from structlog.types import Processor


def get_log_level(level: str) -> int:
    """Convert string log level to logging constant."""
    levels = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
    }
    return levels.get(level.upper(), logging.INFO)


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """
    Configure structlog for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Whether to use JSON format (for production)
    """
    log_level = get_log_level(level)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
        )

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Standard library logging for third-party libraries
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("ccxt").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """
    Get a logger instance.

    Args:
        name: Optional logger name (module name)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


class LogMessages:
    """
    Purchase outcome messages with a plain and a technical version.

    Usage:
        msg = LogMessages.purchase_filled("BTC/USDC", 0.00035, 85000.0, 2.0)
        logger.info(msg.simple)
        logger.debug(msg.technical)
    """

    class Message:
        """A log message with simple and technical versions."""

        def __init__(self, simple: str, technical: str):
            self.simple = simple
            self.technical = technical

        def __str__(self) -> str:
            return self.simple

    @staticmethod
    def purchase_filled(
        symbol: str, quantity: float, price: float, multiplier: float
    ) -> "LogMessages.Message":
        """Purchase filled message."""
        asset = symbol.split("/")[0]
        return LogMessages.Message(
            simple=f"Bought {quantity} {asset} at ${price:,.2f} ({multiplier:.2f}x)",
            technical=f"Purchase filled: {symbol} qty={quantity} px={price} mult={multiplier}",
        )

    @staticmethod
    def purchase_skipped(reason: str) -> "LogMessages.Message":
        """Purchase skipped message."""
        return LogMessages.Message(
            simple=f"No purchase today: {reason}",
            technical=f"Purchase skipped | reason={reason}",
        )

    @staticmethod
    def purchase_failed(symbol: str, reason: str) -> "LogMessages.Message":
        """Purchase failed message."""
        return LogMessages.Message(
            simple=f"Purchase failed: {reason}",
            technical=f"Purchase failed: {symbol} | reason={reason}",
        )

    @staticmethod
    def multiplier_applied(tier: str, multiplier: float, bear: bool) -> "LogMessages.Message":
        """Multiplier decision message."""
        market = "bear market" if bear else "normal market"
        return LogMessages.Message(
            simple=f"Buying {multiplier:.2f}x the base amount ({tier}, {market})",
            technical=f"Multiplier: tier={tier} final={multiplier} bear={bear}",
        )

    @staticmethod
    def connection_status(exchange: str, status: Literal["connected", "disconnected", "error"]) -> "LogMessages.Message":
        """Connection status message."""
        if status == "connected":
            return LogMessages.Message(
                simple=f"Connected to {exchange}",
                technical=f"Exchange connection established: {exchange}",
            )
        elif status == "disconnected":
            return LogMessages.Message(
                simple=f"Disconnected from {exchange}",
                technical=f"Exchange connection closed: {exchange}",
            )
        else:
            return LogMessages.Message(
                simple=f"Problem connecting to {exchange}",
                technical=f"Exchange connection error: {exchange}",
            )
