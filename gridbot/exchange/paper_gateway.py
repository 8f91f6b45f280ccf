"""
Paper trading gateway.

In-memory exchange simulator used for paper trading and tests:
- Limit orders rest until the simulated price crosses them
- Balances settle on fill
- Optional seeded random-walk price path (numpy)
- Fault injection for exercising error handling
"""

import logging
import math
from collections import defaultdict, deque
from dataclasses import dataclass
from decimal import Decimal
from typing import Deque, Dict, List, Optional, Sequence

import numpy as np

from config.settings import ExchangeConfig

from .errors import ExchangeError, InsufficientFundsError, OrderError, OrderNotFoundError
from .gateway import (
    Balance,
    ExchangeGateway,
    OrderSide,
    OrderStatus,
    OrderType,
    annualized_volatility,
)

logger = logging.getLogger(__name__)

PRICE_QUANTUM = Decimal("0.01")


@dataclass
class PaperOrder:
    """An order resting in the simulated book."""
    exchange_order_id: str
    price: Decimal
    size: Decimal
    side: OrderSide
    order_type: OrderType
    status: OrderStatus = OrderStatus.PENDING


class PaperExchangeGateway(ExchangeGateway):
    """
    Simulated exchange for paper trading.

    Example:
        gateway = PaperExchangeGateway(initial_price=Decimal("100"))
        order_id = await gateway.place_order(
            Decimal("95"), Decimal("1"), OrderSide.BUY
        )
        gateway.set_price(Decimal("94"))
        assert await gateway.get_order_status(order_id) == OrderStatus.FILLED
    """

    def __init__(
        self,
        initial_price: Decimal = Decimal("50000"),
        base_balance: Decimal = Decimal("0"),
        quote_balance: Decimal = Decimal("10000"),
        volatility: float = 0.0,
        seed: Optional[int] = None,
        daily_closes: Optional[Sequence[float]] = None,
        enforce_balance: bool = False,
    ):
        """
        Initialize simulator.

        Args:
            initial_price: Starting market price
            base_balance: Starting base asset balance
            quote_balance: Starting quote asset balance
            volatility: Std dev of the per-call log-return random walk (0 = static)
            seed: Seed for the random walk and synthetic history
            daily_closes: Daily close history for volatility (synthetic if None)
            enforce_balance: Reject orders the balance cannot cover
        """
        if initial_price <= 0:
            raise ValueError(f"Initial price must be positive, got {initial_price}")

        self._price = Decimal(initial_price)
        self._base = Decimal(base_balance)
        self._quote = Decimal(quote_balance)
        self._volatility = volatility
        self._enforce_balance = enforce_balance
        self._rng = np.random.default_rng(seed)

        self._orders: Dict[str, PaperOrder] = {}
        self._order_counter = 0
        self._failures: Dict[str, Deque[Exception]] = defaultdict(deque)

        if daily_closes is None:
            daily_closes = self._synthesize_history(float(self._price), days=90)
        self._daily_closes: List[float] = list(daily_closes)

        logger.info(
            f"Paper gateway created (price={self._price}, "
            f"base={self._base}, quote={self._quote})"
        )

    @classmethod
    def from_config(cls, config: ExchangeConfig) -> "PaperExchangeGateway":
        """Build a simulator from exchange configuration."""
        return cls(
            initial_price=Decimal(str(config.paper_initial_price)),
            base_balance=Decimal(str(config.paper_base_balance)),
            quote_balance=Decimal(str(config.paper_quote_balance)),
            volatility=config.paper_volatility,
            seed=config.paper_seed,
        )

    # === Simulation Controls ===

    @property
    def price(self) -> Decimal:
        return self._price

    @property
    def open_orders(self) -> List[PaperOrder]:
        """Orders still resting on the book."""
        return [o for o in self._orders.values() if o.status == OrderStatus.PENDING]

    def set_price(self, price: Decimal) -> None:
        """Move the market to `price` and fill any crossed orders."""
        if price <= 0:
            raise ValueError(f"Price must be positive, got {price}")
        self._price = Decimal(price)
        self._match_orders()

    def fill_order(self, exchange_order_id: str) -> None:
        """Force an order to fill at its limit price."""
        order = self._get_order(exchange_order_id)
        if order.status == OrderStatus.PENDING:
            self._settle(order)

    def fail_next(self, method: str, error: Optional[Exception] = None) -> None:
        """
        Make the next call to `method` raise.

        Args:
            method: Gateway method name, e.g. "get_current_price"
            error: Exception to raise (ExchangeError by default)
        """
        self._failures[method].append(error or ExchangeError("Injected failure", operation=method))

    def get_order(self, exchange_order_id: str) -> PaperOrder:
        return self._get_order(exchange_order_id)

    # === Gateway Interface ===

    async def get_current_price(self) -> Decimal:
        self._raise_injected("get_current_price")

        if self._volatility > 0:
            step = self._rng.normal(0.0, self._volatility)
            new_price = float(self._price) * math.exp(step)
            self._price = Decimal(str(new_price)).quantize(PRICE_QUANTUM)
            self._match_orders()

        return self._price

    async def calculate_historical_volatility(self, days: int = 30) -> float:
        self._raise_injected("calculate_historical_volatility")
        return annualized_volatility(self._daily_closes[-days:])

    async def place_order(
        self,
        price: Decimal,
        size: Decimal,
        side: OrderSide,
        order_type: OrderType = OrderType.LIMIT,
    ) -> str:
        self._raise_injected("place_order")

        if size <= 0:
            raise OrderError(f"Order size must be positive, got {size}", operation="place_order")
        if order_type == OrderType.LIMIT and price <= 0:
            raise OrderError(f"Limit price must be positive, got {price}", operation="place_order")

        if self._enforce_balance:
            if side == OrderSide.BUY and price * size > self._quote:
                raise InsufficientFundsError(
                    f"Need {price * size} quote, have {self._quote}",
                    operation="place_order",
                )
            if side == OrderSide.SELL and size > self._base:
                raise InsufficientFundsError(
                    f"Need {size} base, have {self._base}",
                    operation="place_order",
                )

        self._order_counter += 1
        exchange_order_id = f"paper-{self._order_counter}"
        order = PaperOrder(
            exchange_order_id=exchange_order_id,
            price=price if order_type == OrderType.LIMIT else self._price,
            size=size,
            side=side,
            order_type=order_type,
        )
        self._orders[exchange_order_id] = order

        if order_type == OrderType.MARKET or self._crosses(order):
            self._settle(order)

        logger.debug(f"Paper order {exchange_order_id}: {side.value} {size} @ {order.price}")
        return exchange_order_id

    async def get_order_status(self, exchange_order_id: str) -> OrderStatus:
        self._raise_injected("get_order_status")
        return self._get_order(exchange_order_id).status

    async def cancel_order(self, exchange_order_id: str) -> None:
        self._raise_injected("cancel_order")

        order = self._get_order(exchange_order_id)
        if order.status == OrderStatus.FILLED:
            raise OrderError(
                f"Order {exchange_order_id} already filled",
                operation="cancel_order",
            )
        order.status = OrderStatus.CANCELED

    async def get_account_balance(self) -> Balance:
        self._raise_injected("get_account_balance")
        return Balance(base=self._base, quote=self._quote)

    # === Internals ===

    def _raise_injected(self, method: str) -> None:
        queue = self._failures.get(method)
        if queue:
            raise queue.popleft()

    def _get_order(self, exchange_order_id: str) -> PaperOrder:
        order = self._orders.get(exchange_order_id)
        if order is None:
            raise OrderNotFoundError(
                f"Unknown order {exchange_order_id}",
                operation="get_order",
            )
        return order

    def _crosses(self, order: PaperOrder) -> bool:
        if order.side == OrderSide.BUY:
            return self._price <= order.price
        return self._price >= order.price

    def _match_orders(self) -> None:
        for order in self.open_orders:
            if self._crosses(order):
                self._settle(order)

    def _settle(self, order: PaperOrder) -> None:
        notional = order.price * order.size
        if order.side == OrderSide.BUY:
            self._base += order.size
            self._quote -= notional
        else:
            self._base -= order.size
            self._quote += notional
        order.status = OrderStatus.FILLED
        logger.debug(
            f"Paper fill {order.exchange_order_id}: "
            f"{order.side.value} {order.size} @ {order.price}"
        )

    def _synthesize_history(self, last_price: float, days: int) -> List[float]:
        """Random daily closes ending at last_price."""
        returns = self._rng.normal(0.0, 0.03, size=days - 1)
        path = np.exp(np.concatenate([[0.0], np.cumsum(returns)]))
        path = path / path[-1] * last_price
        return path.tolist()
