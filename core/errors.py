"""Error taxonomy for the arbitrage bot.

Every failure raised by the core carries a machine-readable ``kind`` code
and a free-form ``context`` dict so the supervisor can log it as a
structured record.  ``recoverable`` marks errors the loop may simply retry
on the next tick (a missing quote) as opposed to errors that invalidate
the current execution (the market moved against us, a bridge order was
cancelled).
"""
from __future__ import annotations

from typing import Any, Dict, Optional

# Kind codes
PRICE_ERROR = "PRICE_ERROR"
SWAP_ERROR = "SWAP_ERROR"
BRIDGE_ERROR = "BRIDGE_ERROR"
EXECUTION_ERROR = "EXECUTION_ERROR"

NO_QUOTES = "NO_QUOTES"
QUOTES_UNAVAILABLE = "QUOTES_UNAVAILABLE"
EXECUTION_IN_PROGRESS = "EXECUTION_IN_PROGRESS"
PRICE_MOVED_AGAINST_US = "PRICE_MOVED_AGAINST_US"
MONITOR_TIMEOUT = "MONITOR_TIMEOUT"
ORDER_CANCELLED = "ORDER_CANCELLED"
UNSUPPORTED_ROUTE = "UNSUPPORTED_ROUTE"


class ArbitrageError(Exception):
    """Base error with a kind code and structured context."""

    default_kind = "ARBITRAGE_ERROR"
    default_recoverable = False

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        *,
        recoverable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind
        self.context: Dict[str, Any] = dict(context or {})
        self.recoverable = self.default_recoverable if recoverable is None else recoverable

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "kind": self.kind,
            "message": self.message,
            "recoverable": self.recoverable,
            "context": self.context,
        }

    def __str__(self) -> str:
        return f"[{self.kind}] {self.message}"


class PriceError(ArbitrageError):
    default_kind = PRICE_ERROR
    default_recoverable = True


class SwapError(ArbitrageError):
    default_kind = SWAP_ERROR


class BridgeError(ArbitrageError):
    default_kind = BRIDGE_ERROR


class ExecutionError(ArbitrageError):
    default_kind = EXECUTION_ERROR


__all__ = [
    "ArbitrageError",
    "PriceError",
    "SwapError",
    "BridgeError",
    "ExecutionError",
    "PRICE_ERROR",
    "SWAP_ERROR",
    "BRIDGE_ERROR",
    "EXECUTION_ERROR",
    "NO_QUOTES",
    "QUOTES_UNAVAILABLE",
    "EXECUTION_IN_PROGRESS",
    "PRICE_MOVED_AGAINST_US",
    "MONITOR_TIMEOUT",
    "ORDER_CANCELLED",
    "UNSUPPORTED_ROUTE",
]
