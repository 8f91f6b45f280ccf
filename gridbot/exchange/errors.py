"""
Exchange Error Handling.

Error taxonomy for every Exchange Gateway call:
- Error classification and severity
- Retry logic with exponential backoff
- Translation target for adapter-specific exceptions

Every gateway call is fallible. The engine recovers per operation:
the failing call is retried under RetryConfig, then logged and skipped.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum, auto
from functools import wraps
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    LOW = auto()       # Informational, can continue
    MEDIUM = auto()    # Warning, may need attention
    HIGH = auto()      # Error, operation failed
    CRITICAL = auto()  # Critical, operator must intervene


class ErrorCategory(Enum):
    """Categories of gateway errors."""
    RATE_LIMIT = "rate_limit"
    AUTHENTICATION = "authentication"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    ORDER = "order"
    ORDER_NOT_FOUND = "order_not_found"
    NETWORK = "network"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"


class RetryStrategy(Enum):
    """Retry strategies for different error types."""
    NO_RETRY = auto()             # Do not retry
    IMMEDIATE = auto()            # Retry immediately
    LINEAR_BACKOFF = auto()       # Constant wait time
    EXPONENTIAL_BACKOFF = auto()  # Exponential wait
    RATE_LIMIT_WAIT = auto()      # Wait for rate limit reset


@dataclass
class ErrorInfo:
    """Detailed information about an error."""
    category: ErrorCategory
    severity: ErrorSeverity
    retry_strategy: RetryStrategy
    retry_after: Optional[float] = None  # Suggested wait time
    recoverable: bool = True


CATEGORY_DEFAULTS: Dict[ErrorCategory, ErrorInfo] = {
    ErrorCategory.RATE_LIMIT: ErrorInfo(
        category=ErrorCategory.RATE_LIMIT,
        severity=ErrorSeverity.MEDIUM,
        retry_strategy=RetryStrategy.RATE_LIMIT_WAIT,
        retry_after=5.0,
    ),
    ErrorCategory.AUTHENTICATION: ErrorInfo(
        category=ErrorCategory.AUTHENTICATION,
        severity=ErrorSeverity.CRITICAL,
        retry_strategy=RetryStrategy.NO_RETRY,
        recoverable=False,
    ),
    ErrorCategory.INSUFFICIENT_FUNDS: ErrorInfo(
        category=ErrorCategory.INSUFFICIENT_FUNDS,
        severity=ErrorSeverity.MEDIUM,
        retry_strategy=RetryStrategy.NO_RETRY,
        recoverable=False,
    ),
    ErrorCategory.ORDER: ErrorInfo(
        category=ErrorCategory.ORDER,
        severity=ErrorSeverity.MEDIUM,
        retry_strategy=RetryStrategy.NO_RETRY,
        recoverable=False,
    ),
    ErrorCategory.ORDER_NOT_FOUND: ErrorInfo(
        category=ErrorCategory.ORDER_NOT_FOUND,
        severity=ErrorSeverity.LOW,
        retry_strategy=RetryStrategy.NO_RETRY,
        recoverable=False,
    ),
    ErrorCategory.NETWORK: ErrorInfo(
        category=ErrorCategory.NETWORK,
        severity=ErrorSeverity.MEDIUM,
        retry_strategy=RetryStrategy.EXPONENTIAL_BACKOFF,
        retry_after=1.0,
    ),
    ErrorCategory.UNAVAILABLE: ErrorInfo(
        category=ErrorCategory.UNAVAILABLE,
        severity=ErrorSeverity.HIGH,
        retry_strategy=RetryStrategy.EXPONENTIAL_BACKOFF,
        retry_after=30.0,
    ),
    ErrorCategory.UNKNOWN: ErrorInfo(
        category=ErrorCategory.UNKNOWN,
        severity=ErrorSeverity.MEDIUM,
        retry_strategy=RetryStrategy.EXPONENTIAL_BACKOFF,
        retry_after=5.0,
    ),
}


class ExchangeError(Exception):
    """Base exception for every Exchange Gateway failure."""

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        error_info: Optional[ErrorInfo] = None,
        operation: str = "",
    ):
        self.message = message
        self.operation = operation
        self.error_info = error_info or CATEGORY_DEFAULTS[self.category]
        prefix = f"{operation}: " if operation else ""
        super().__init__(f"{prefix}{message}")

    @property
    def is_recoverable(self) -> bool:
        """Check if error is recoverable."""
        return self.error_info.recoverable

    @property
    def should_retry(self) -> bool:
        """Check if the call should be retried."""
        return self.error_info.retry_strategy != RetryStrategy.NO_RETRY


class NetworkError(ExchangeError):
    """Connection dropped, timed out or similar transport failure."""
    category = ErrorCategory.NETWORK


class RateLimitError(ExchangeError):
    """Exchange throttled the request."""
    category = ErrorCategory.RATE_LIMIT


class AuthenticationError(ExchangeError):
    """Invalid or missing API credentials."""
    category = ErrorCategory.AUTHENTICATION


class InsufficientFundsError(ExchangeError):
    """Not enough balance to place the order."""
    category = ErrorCategory.INSUFFICIENT_FUNDS


class OrderError(ExchangeError):
    """Exchange rejected the order."""
    category = ErrorCategory.ORDER


class OrderNotFoundError(ExchangeError):
    """Exchange does not know the order id."""
    category = ErrorCategory.ORDER_NOT_FOUND


class ExchangeUnavailableError(ExchangeError):
    """Exchange is down or in maintenance."""
    category = ErrorCategory.UNAVAILABLE


T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 2
    base_delay: float = 1.0
    max_delay: float = 60.0  # Capped at the cycle interval by the controller
    exponential_base: float = 2.0
    jitter: bool = True  # Add randomness to prevent thundering herd


def calculate_backoff(
    attempt: int,
    strategy: RetryStrategy,
    config: RetryConfig,
    retry_after: Optional[float] = None,
) -> float:
    """
    Calculate backoff time for retry.

    Args:
        attempt: Current attempt number (0-indexed)
        strategy: Retry strategy to use
        config: Retry configuration
        retry_after: Explicit wait time from error

    Returns:
        Seconds to wait before retry, never above config.max_delay
    """
    if strategy == RetryStrategy.NO_RETRY:
        return 0.0

    if strategy == RetryStrategy.RATE_LIMIT_WAIT and retry_after:
        delay = retry_after
    elif strategy == RetryStrategy.LINEAR_BACKOFF:
        delay = config.base_delay
    elif strategy == RetryStrategy.EXPONENTIAL_BACKOFF:
        delay = config.base_delay * (config.exponential_base ** attempt)
    elif strategy == RetryStrategy.IMMEDIATE:
        delay = 0.1
    else:
        delay = config.base_delay

    delay = min(delay, config.max_delay)

    # Jitter (up to 25% of delay) stays within the cap
    if config.jitter and delay > 0:
        delay = min(delay + delay * 0.25 * random.random(), config.max_delay)

    return delay


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: Optional[RetryConfig] = None,
    **kwargs: Any,
) -> T:
    """
    Await func(*args, **kwargs), retrying recoverable failures.

    ExchangeErrors with a NO_RETRY strategy are raised immediately.
    Other exceptions are treated as transient and retried with
    exponential backoff.

    Args:
        func: Coroutine function to call
        config: Retry configuration (defaults if None)

    Returns:
        Result of the call

    Raises:
        The last error once retries are exhausted
    """
    config = config or RetryConfig()
    name = getattr(func, "__name__", repr(func))

    for attempt in range(config.max_retries + 1):
        try:
            return await func(*args, **kwargs)

        except ExchangeError as e:
            if not e.should_retry or attempt >= config.max_retries:
                raise

            backoff = calculate_backoff(
                attempt,
                e.error_info.retry_strategy,
                config,
                e.error_info.retry_after,
            )
            logger.warning(
                f"Retry {attempt + 1}/{config.max_retries} for {name} "
                f"({e.error_info.category.value}), waiting {backoff:.1f}s"
            )
            await asyncio.sleep(backoff)

        except asyncio.CancelledError:
            raise

        except Exception as e:
            if attempt >= config.max_retries:
                raise

            backoff = calculate_backoff(
                attempt,
                RetryStrategy.EXPONENTIAL_BACKOFF,
                config,
            )
            logger.warning(
                f"Retry {attempt + 1}/{config.max_retries} for {name} "
                f"after {type(e).__name__}: {e}, waiting {backoff:.1f}s"
            )
            await asyncio.sleep(backoff)

    raise ExchangeError("Max retries exceeded", operation=name)


def with_async_retry(
    config: Optional[RetryConfig] = None,
) -> Callable:
    """
    Decorator for async functions with automatic retry on recoverable errors.

    Usage:
        @with_async_retry(RetryConfig(max_retries=5))
        async def fetch_price():
            ...
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await retry_async(func, *args, config=config, **kwargs)

        return wrapper
    return decorator
