from __future__ import annotations

"""
Exchange Error Handling and Logging
===================================

Error classification and logging for exchange operations:
- Error categories mapped from the exception hierarchy in ``common``
- Structured error context for log records
- ``exchange_operation_context`` for logged, timed, metered operations
- ``best_effort`` for the synchronization calls that must never raise
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from core.exchange.common import (
    CancelRejectedError,
    ExchangeError,
    MalformedResponseError,
    MissingCredentialsError,
    OrderNotFoundError,
    OrderRejectedError,
    TransportError,
    ValidationError,
)
from core.exchange.metrics import get_metrics

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Error categories for classification."""
    TRANSPORT = "transport"
    MALFORMED_RESPONSE = "malformed_response"
    CREDENTIALS = "credentials"
    REJECTED = "rejected"
    VALIDATION = "validation"
    SYSTEM = "system"


@dataclass
class ExchangeErrorContext:
    """Context information for exchange errors."""
    exchange_name: str
    operation: str
    symbol: Optional[str] = None
    order_id: Optional[str] = None
    timestamp_ns: int = 0

    def __post_init__(self):
        if self.timestamp_ns == 0:
            self.timestamp_ns = time.time_ns()


@dataclass
class ExchangeErrorInfo:
    error: Exception
    category: ErrorCategory
    context: ExchangeErrorContext
    user_message: Optional[str] = None

    @property
    def error_code(self) -> str:
        return f"{self.category.value}_{self.error.__class__.__name__}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "error_message": str(self.error),
            "category": self.category.value,
            "user_message": self.user_message,
            "context": {
                "exchange_name": self.context.exchange_name,
                "operation": self.context.operation,
                "symbol": self.context.symbol,
                "order_id": self.context.order_id,
                "timestamp_ns": self.context.timestamp_ns,
            },
        }


class ExchangeErrorHandler:
    """Maps exceptions onto ``ErrorCategory`` and a readable message."""

    _CATEGORIES = (
        (TransportError, ErrorCategory.TRANSPORT),
        (MalformedResponseError, ErrorCategory.MALFORMED_RESPONSE),
        (MissingCredentialsError, ErrorCategory.CREDENTIALS),
        (OrderRejectedError, ErrorCategory.REJECTED),
        (CancelRejectedError, ErrorCategory.REJECTED),
        (OrderNotFoundError, ErrorCategory.REJECTED),
        (ValidationError, ErrorCategory.VALIDATION),
    )

    def classify_error(self, error: Exception, context: ExchangeErrorContext) -> ExchangeErrorInfo:
        category = ErrorCategory.SYSTEM
        for exc_type, cat in self._CATEGORIES:
            if isinstance(error, exc_type):
                category = cat
                break
        return ExchangeErrorInfo(
            error=error,
            category=category,
            context=context,
            user_message=self._generate_user_message(category, context),
        )

    def _generate_user_message(self, category: ErrorCategory, context: ExchangeErrorContext) -> str:
        base_messages = {
            ErrorCategory.TRANSPORT: f"Network failure talking to {context.exchange_name}",
            ErrorCategory.MALFORMED_RESPONSE: f"Unexpected response from {context.exchange_name}",
            ErrorCategory.CREDENTIALS: f"Missing credentials for {context.exchange_name}",
            ErrorCategory.REJECTED: f"Request rejected by {context.exchange_name}",
            ErrorCategory.VALIDATION: f"Invalid request to {context.exchange_name}",
            ErrorCategory.SYSTEM: f"System error with {context.exchange_name}",
        }
        message = base_messages[category]
        if context.symbol:
            message += f" for {context.symbol}"
        if context.operation:
            message += f" during {context.operation}"
        return message


_handler = ExchangeErrorHandler()


def _record(context: ExchangeErrorContext, status: str, duration_ms: float, category: Optional[ErrorCategory] = None) -> None:
    metrics = get_metrics()
    if metrics is None:
        return
    metrics.observe_latency(context.exchange_name, context.operation, status, duration_ms)
    if category is not None:
        metrics.inc_error(context.exchange_name, context.operation, category.value)


@contextmanager
def exchange_operation_context(exchange_name: str, operation: str,
                               symbol: Optional[str] = None,
                               order_id: Optional[str] = None):
    """Log, time and meter one exchange operation.

    ``ExchangeError`` subclasses propagate unchanged; anything else is wrapped
    in ``ExchangeError`` with the original chained.
    """
    context = ExchangeErrorContext(
        exchange_name=exchange_name,
        operation=operation,
        symbol=symbol,
        order_id=order_id,
    )

    start_time = time.time_ns()
    logger.debug(f"Starting {operation} on {exchange_name}" + (f" for {symbol}" if symbol else ""))
    try:
        yield context
    except Exception as e:
        duration_ms = (time.time_ns() - start_time) / 1_000_000
        error_info = _handler.classify_error(e, context)
        logger.error(
            f"Exchange operation failed after {duration_ms:.2f}ms: {error_info.error_code} - {e}",
            extra={"error_info": error_info.to_dict(), "duration_ms": duration_ms},
        )
        _record(context, "failure", duration_ms, error_info.category)
        if isinstance(e, ExchangeError):
            raise
        raise ExchangeError(f"{error_info.user_message}: {e}") from e
    else:
        duration_ms = (time.time_ns() - start_time) / 1_000_000
        _record(context, "success", duration_ms)
        logger.info(f"Completed {operation} on {exchange_name} in {duration_ms:.2f}ms")


@contextmanager
def best_effort(exchange_name: str, operation: str):
    """Run a synchronization step whose failure is logged, never raised."""
    try:
        with exchange_operation_context(exchange_name, operation) as context:
            yield context
    except ExchangeError as e:
        logger.warning(f"{exchange_name} {operation} skipped: {e}")


__all__ = [
    "ErrorCategory",
    "ExchangeErrorContext",
    "ExchangeErrorInfo",
    "ExchangeErrorHandler",
    "exchange_operation_context",
    "best_effort",
]
