"""
Exchange Gateway interface.

The grid engine talks to an exchange only through this capability:
price, volatility, order placement, order status, cancellation and
balances. Adapters (paper simulator, ccxt) implement it.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Sequence

import numpy as np

logger = logging.getLogger(__name__)


class OrderSide(Enum):
    """Order side (buy/sell)."""
    BUY = "buy"
    SELL = "sell"

    @property
    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self == OrderSide.BUY else OrderSide.BUY


class OrderType(Enum):
    """Order types the engine can submit."""
    LIMIT = "limit"
    MARKET = "market"


class OrderStatus(Enum):
    """Order lifecycle as seen by the engine."""
    PENDING = "pending"    # Resting on the book
    FILLED = "filled"      # Fully executed
    CANCELED = "canceled"  # Canceled or expired


@dataclass
class Balance:
    """Free balances for the traded pair."""
    base: Decimal
    quote: Decimal


def annualized_volatility(closes: Sequence[float]) -> float:
    """
    Annualized volatility from daily closing prices.

    Uses daily log returns and population variance:
    sqrt(var(log(p[i] / p[i-1])) * 365).

    Args:
        closes: Daily closing prices, oldest first

    Returns:
        Volatility as a decimal fraction (0.6 = 60%)

    Raises:
        ValueError: If fewer than two prices are supplied
    """
    prices = np.asarray(closes, dtype=float)
    if prices.size < 2:
        raise ValueError("Not enough price data to calculate volatility")

    returns = np.diff(np.log(prices))
    return float(np.sqrt(np.var(returns) * 365))


class ExchangeGateway(ABC):
    """
    Abstract exchange capability consumed by the grid engine.

    Every method may raise ExchangeError. Callers must treat each call
    as fallible and never assume the local view matches the exchange
    order book.
    """

    async def connect(self) -> None:
        """Open connections / load markets. No-op by default."""

    async def close(self) -> None:
        """Release connections. No-op by default."""

    @abstractmethod
    async def get_current_price(self) -> Decimal:
        """Get the last traded price of the configured pair."""

    @abstractmethod
    async def calculate_historical_volatility(self, days: int = 30) -> float:
        """Get annualized volatility over the last `days` daily candles."""

    @abstractmethod
    async def place_order(
        self,
        price: Decimal,
        size: Decimal,
        side: OrderSide,
        order_type: OrderType = OrderType.LIMIT,
    ) -> str:
        """
        Submit an order.

        Returns:
            Exchange-assigned order id
        """

    @abstractmethod
    async def get_order_status(self, exchange_order_id: str) -> OrderStatus:
        """Get the current status of an order."""

    @abstractmethod
    async def cancel_order(self, exchange_order_id: str) -> None:
        """Cancel an order."""

    @abstractmethod
    async def get_account_balance(self) -> Balance:
        """Get free base and quote balances."""
