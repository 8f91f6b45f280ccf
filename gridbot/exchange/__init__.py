"""Exchange gateway interface, adapters and error taxonomy."""

from .errors import (
    ErrorCategory,
    ErrorSeverity,
    RetryStrategy,
    ErrorInfo,
    ExchangeError,
    NetworkError,
    RateLimitError,
    AuthenticationError,
    InsufficientFundsError,
    OrderError,
    OrderNotFoundError,
    ExchangeUnavailableError,
    RetryConfig,
    calculate_backoff,
    retry_async,
    with_async_retry,
)
from .gateway import (
    OrderSide,
    OrderType,
    OrderStatus,
    Balance,
    ExchangeGateway,
    annualized_volatility,
)
from .paper_gateway import PaperExchangeGateway
from .ccxt_gateway import CCXTExchangeGateway
from .registry import create_gateway, supported_exchanges

__all__ = [
    "ErrorCategory",
    "ErrorSeverity",
    "RetryStrategy",
    "ErrorInfo",
    "ExchangeError",
    "NetworkError",
    "RateLimitError",
    "AuthenticationError",
    "InsufficientFundsError",
    "OrderError",
    "OrderNotFoundError",
    "ExchangeUnavailableError",
    "RetryConfig",
    "calculate_backoff",
    "retry_async",
    "with_async_retry",
    "OrderSide",
    "OrderType",
    "OrderStatus",
    "Balance",
    "ExchangeGateway",
    "annualized_volatility",
    "PaperExchangeGateway",
    "CCXTExchangeGateway",
    "create_gateway",
    "supported_exchanges",
]
