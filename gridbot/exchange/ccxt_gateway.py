"""
Live exchange gateway backed by ccxt.

Wraps a synchronous ccxt client. Blocking calls run in a worker thread
via asyncio.to_thread so they never stall the event loop. ccxt's own
rate limiter (enableRateLimit) throttles requests.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

import ccxt
import pandas as pd

from .errors import (
    AuthenticationError,
    ExchangeError,
    ExchangeUnavailableError,
    InsufficientFundsError,
    NetworkError,
    OrderError,
    OrderNotFoundError,
    RateLimitError,
)
from .gateway import (
    Balance,
    ExchangeGateway,
    OrderSide,
    OrderStatus,
    OrderType,
    annualized_volatility,
)

logger = logging.getLogger(__name__)


# Supported ccxt exchanges, resolved at configuration time
CCXT_EXCHANGES: Dict[str, Callable[..., Any]] = {
    "binance": ccxt.binance,
    "kraken": ccxt.kraken,
    "coinbase": ccxt.coinbase,
    "bitget": ccxt.bitget,
    "okx": ccxt.okx,
    "bybit": ccxt.bybit,
}

# ccxt unified status -> engine status
STATUS_MAP: Dict[str, OrderStatus] = {
    "open": OrderStatus.PENDING,
    "closed": OrderStatus.FILLED,
    "filled": OrderStatus.FILLED,
    "canceled": OrderStatus.CANCELED,
    "cancelled": OrderStatus.CANCELED,
    "expired": OrderStatus.CANCELED,
    "rejected": OrderStatus.CANCELED,
}


def translate_ccxt_error(error: Exception, operation: str) -> ExchangeError:
    """
    Map a ccxt exception onto the gateway error taxonomy.

    Order matters: ccxt subclasses are checked before their parents.
    """
    message = str(error)

    if isinstance(error, ccxt.AuthenticationError):
        return AuthenticationError(message, operation=operation)
    if isinstance(error, ccxt.InsufficientFunds):
        return InsufficientFundsError(message, operation=operation)
    if isinstance(error, ccxt.OrderNotFound):
        return OrderNotFoundError(message, operation=operation)
    if isinstance(error, ccxt.InvalidOrder):
        return OrderError(message, operation=operation)
    if isinstance(error, (ccxt.RateLimitExceeded, ccxt.DDoSProtection)):
        return RateLimitError(message, operation=operation)
    if isinstance(error, ccxt.ExchangeNotAvailable):
        return ExchangeUnavailableError(message, operation=operation)
    if isinstance(error, ccxt.NetworkError):
        return NetworkError(message, operation=operation)
    return ExchangeError(message, operation=operation)


class CCXTExchangeGateway(ExchangeGateway):
    """
    Exchange gateway for any supported ccxt exchange.

    Example:
        gateway = CCXTExchangeGateway("kraken", "BTC/USD", api_key, api_secret)
        await gateway.connect()
        price = await gateway.get_current_price()
    """

    def __init__(
        self,
        exchange_id: str,
        symbol: str,
        api_key: str = "",
        api_secret: str = "",
        sandbox: bool = False,
        client: Optional[Any] = None,
    ):
        """
        Initialize gateway.

        Args:
            exchange_id: Key into CCXT_EXCHANGES
            symbol: Unified market symbol, e.g. "BTC/USD"
            api_key: API key (from environment)
            api_secret: API secret (from environment)
            sandbox: Use the exchange testnet
            client: Pre-built ccxt client (tests)
        """
        self.exchange_id = exchange_id
        self.symbol = symbol

        if client is None:
            exchange_class = CCXT_EXCHANGES[exchange_id]
            client = exchange_class({
                "apiKey": api_key,
                "secret": api_secret,
                "enableRateLimit": True,
            })
            if sandbox:
                client.set_sandbox_mode(True)

        self.client = client
        self._markets_loaded = False

    async def _call(self, operation: str, method: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking ccxt call off the event loop, translating errors."""
        try:
            return await asyncio.to_thread(method, *args)
        except ccxt.BaseError as e:
            raise translate_ccxt_error(e, operation) from e

    async def connect(self) -> None:
        if self._markets_loaded:
            return
        await self._call("connect", self.client.load_markets)
        self._markets_loaded = True
        logger.info(f"Connected to {self.exchange_id} ({self.symbol})")

    async def close(self) -> None:
        close = getattr(self.client, "close", None)
        if callable(close):
            await asyncio.to_thread(close)

    async def get_current_price(self) -> Decimal:
        ticker = await self._call("get_current_price", self.client.fetch_ticker, self.symbol)
        last = ticker.get("last") or ticker.get("close")
        if last is None:
            raise ExchangeError(
                f"No last price in ticker for {self.symbol}",
                operation="get_current_price",
            )
        return Decimal(str(last))

    async def calculate_historical_volatility(self, days: int = 30) -> float:
        ohlcv = await self._call(
            "calculate_historical_volatility",
            self.client.fetch_ohlcv,
            self.symbol,
            "1d",
            None,
            days + 1,
        )
        df = pd.DataFrame(
            ohlcv,
            columns=["timestamp", "open", "high", "low", "close", "volume"],
        )
        df["timestamp"] = pd.to_datetime(df["timestamp"], unit="ms", utc=True)
        df = df.set_index("timestamp").sort_index()

        try:
            return annualized_volatility(df["close"].to_numpy())
        except ValueError as e:
            raise ExchangeError(str(e), operation="calculate_historical_volatility") from e

    async def place_order(
        self,
        price: Decimal,
        size: Decimal,
        side: OrderSide,
        order_type: OrderType = OrderType.LIMIT,
    ) -> str:
        amount = float(await self._call(
            "place_order", self.client.amount_to_precision, self.symbol, float(size)
        ))
        limit_price = None
        if order_type == OrderType.LIMIT:
            limit_price = float(await self._call(
                "place_order", self.client.price_to_precision, self.symbol, float(price)
            ))

        order = await self._call(
            "place_order",
            self.client.create_order,
            self.symbol,
            order_type.value,
            side.value,
            amount,
            limit_price,
        )
        order_id = str(order.get("id", ""))
        if not order_id:
            raise OrderError("Exchange returned no order id", operation="place_order")

        logger.debug(f"Placed {side.value} {amount} @ {limit_price}: {order_id}")
        return order_id

    async def get_order_status(self, exchange_order_id: str) -> OrderStatus:
        order = await self._call(
            "get_order_status",
            self.client.fetch_order,
            exchange_order_id,
            self.symbol,
        )
        status = str(order.get("status") or "open").lower()
        return STATUS_MAP.get(status, OrderStatus.PENDING)

    async def cancel_order(self, exchange_order_id: str) -> None:
        await self._call(
            "cancel_order",
            self.client.cancel_order,
            exchange_order_id,
            self.symbol,
        )

    async def get_account_balance(self) -> Balance:
        balance = await self._call("get_account_balance", self.client.fetch_balance)
        free = balance.get("free", {})
        base, quote = self.symbol.split("/")[:2]
        return Balance(
            base=Decimal(str(free.get(base) or 0)),
            quote=Decimal(str(free.get(quote) or 0)),
        )
