"""
Reconciliation Engine.

Owns the live TradingState and keeps it consistent with the exchange:
- Places the initial grid orders
- Polls order status and detects fills
- Realizes P&L by pairing fills on the same grid level
- Replaces every fill with exactly one opposite order
- Cancels orders for shutdown, stop-loss and regeneration

Every gateway call is fallible. Failures are logged and isolated to the
operation that failed; the next cycle retries naturally.
"""

import copy
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Deque, Dict, List, Optional, Sequence

from gridbot.exchange.errors import (
    ExchangeError,
    OrderNotFoundError,
    RetryConfig,
    retry_async,
)
from gridbot.exchange.gateway import ExchangeGateway, OrderSide, OrderStatus
from gridbot.grid.allocation import AllocationEngine
from gridbot.grid.models import GridLevel, HistoricalTrade, Order, TradingState

from .events import EventBus, EventSeverity, EventType
from .performance import PerformanceSnapshot, build_snapshot
from .risk_engine import StopLossResult

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class StateInconsistencyError(Exception):
    """Local state disagrees with what the exchange reported."""


@dataclass
class ExecutionResult:
    """Result of an order placement or cancellation pass."""

    success: bool
    orders_submitted: int = 0
    orders_canceled: int = 0
    orders_failed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def total_actions(self) -> int:
        """Total number of order actions taken."""
        return self.orders_submitted + self.orders_canceled

    def __str__(self) -> str:
        status = "SUCCESS" if self.success else "FAILED"
        return (
            f"ExecutionResult({status}: "
            f"submitted={self.orders_submitted}, "
            f"canceled={self.orders_canceled}, "
            f"failed={self.orders_failed})"
        )


@dataclass
class ReconciliationResult:
    """Result of one market-data refresh."""

    price_updated: bool = False
    current_price: Optional[Decimal] = None

    # Counts
    orders_checked: int = 0
    orders_filled: int = 0
    orders_canceled: int = 0
    opposite_orders_placed: int = 0
    skipped_fills: int = 0
    orders_resubmitted: int = 0

    realized_pnl_delta: Decimal = ZERO
    filled_order_ids: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "price_updated": self.price_updated,
            "current_price": str(self.current_price) if self.current_price is not None else None,
            "orders_checked": self.orders_checked,
            "orders_filled": self.orders_filled,
            "orders_canceled": self.orders_canceled,
            "opposite_orders_placed": self.opposite_orders_placed,
            "skipped_fills": self.skipped_fills,
            "orders_resubmitted": self.orders_resubmitted,
            "realized_pnl_delta": str(self.realized_pnl_delta),
            "errors": list(self.errors),
        }

    def __str__(self) -> str:
        """Human-readable summary."""
        return (
            f"ReconciliationResult("
            f"price={self.current_price}, "
            f"checked={self.orders_checked}, "
            f"filled={self.orders_filled}, "
            f"canceled={self.orders_canceled}, "
            f"replaced={self.opposite_orders_placed})"
        )


class ReconciliationEngine:
    """
    Sole owner of the mutable TradingState.

    Fill pairing is keyed by level index within the current grid
    generation: each level keeps a LIFO stack of unmatched fills, a fill
    pops the most recent opposite-side fill on its level and realizes
    (sell - buy) * size, otherwise it is pushed. load_grid resets the
    stacks.

    Example:
        engine = ReconciliationEngine(gateway, TradingState(price, levels))
        await engine.initialize()

        result = await engine.update_market_data()
        state = engine.get_trading_state()  # deep copy
    """

    def __init__(
        self,
        gateway: ExchangeGateway,
        initial_state: TradingState,
        retry_config: Optional[RetryConfig] = None,
        event_bus: Optional[EventBus] = None,
        allocator: Optional[AllocationEngine] = None,
        price_history_size: int = 1000,
    ):
        """
        Initialize engine.

        Args:
            gateway: Exchange gateway
            initial_state: Starting state (copied)
            retry_config: Retry policy for gateway calls
            event_bus: Optional bus for fill and error events
            allocator: Creates opposite orders (default AllocationEngine)
            price_history_size: Max prices kept for get_price_history
        """
        self._gateway = gateway
        self._state = copy.deepcopy(initial_state)
        self._retry_config = retry_config or RetryConfig()
        self._event_bus = event_bus
        self._allocator = allocator or AllocationEngine()

        self._trades: List[HistoricalTrade] = []
        self._price_history: Deque[Decimal] = deque(maxlen=price_history_size)
        self._unmatched_fills: Dict[int, List[Order]] = {}
        self._snapshot = build_snapshot(self._state, self._trades)

        # Stats
        self._orders_placed = 0
        self._orders_failed = 0
        self._fills_processed = 0
        self._inconsistencies = 0

    # === Lifecycle ===

    async def initialize(self) -> ExecutionResult:
        """
        Fetch the price and place every pending order on active levels.

        Per-order failures are logged and skipped.

        Raises:
            ExchangeError: If the price cannot be fetched
        """
        logger.info("Initializing reconciliation engine")

        price = await self._call(self._gateway.get_current_price)
        self._state.current_price = price
        self._price_history.append(price)

        result = ExecutionResult(success=True)
        for level in self._state.grid_levels:
            if not level.is_active:
                continue
            for order in level.pending_orders():
                if order.exchange_order_id is not None:
                    continue
                if await self._submit(order, result):
                    self._state.active_orders.append(order)

        result.success = result.orders_failed == 0
        self._refresh_metrics()

        logger.info(f"Placed initial grid orders: {result}")
        return result

    def load_grid(self, levels: Sequence[GridLevel]) -> None:
        """
        Install a new grid generation.

        Active orders and pairing stacks reset. Ledger, realized P&L
        and price history persist.
        """
        self._state.grid_levels = copy.deepcopy(list(levels))
        self._state.active_orders = []
        self._unmatched_fills = {}
        self._refresh_metrics()
        logger.info(f"Loaded new grid with {len(levels)} levels")

    # === Market Data ===

    async def update_market_data(self) -> ReconciliationResult:
        """
        Refresh price, poll active orders and process fills.

        A price failure keeps the previous price. Per-order poll
        failures are logged and the order is checked again next cycle.
        """
        result = ReconciliationResult()

        try:
            price = await self._call(self._gateway.get_current_price)
            self._state.current_price = price
            self._price_history.append(price)
            result.price_updated = True
        except Exception as e:
            msg = f"Price refresh failed, keeping {self._state.current_price}: {e}"
            logger.error(msg)
            result.errors.append(msg)
            self._publish_error("get_current_price", e)
        result.current_price = self._state.current_price

        await self._resubmit_unplaced(result)

        filled: List[Order] = []
        canceled: List[Order] = []
        for order in list(self._state.active_orders):
            if order.exchange_order_id is None:
                continue
            result.orders_checked += 1
            try:
                status = await self._call(self._gateway.get_order_status, order.exchange_order_id)
            except Exception as e:
                msg = f"Status check failed for order {order.order_id}: {e}"
                logger.error(msg)
                result.errors.append(msg)
                self._publish_error("get_order_status", e)
                continue

            if status == OrderStatus.FILLED:
                filled.append(order)
            elif status == OrderStatus.CANCELED:
                canceled.append(order)

        for order in filled:
            await self._process_fill(order, result)

        for order in canceled:
            self._remove_canceled(order)
            result.orders_canceled += 1

        self._refresh_metrics()

        if result.orders_filled or result.orders_canceled:
            logger.info(f"Market data updated: {result}")
        else:
            logger.debug(f"Market data updated: {result}")
        return result

    async def _process_fill(self, order: Order, result: ReconciliationResult) -> None:
        """Move a fill to the ledger, realize P&L and place its opposite."""
        self._state.active_orders = [
            o for o in self._state.active_orders if o.order_id != order.order_id
        ]
        order.status = OrderStatus.FILLED
        order.filled_at = time.time()
        self._state.filled_orders.append(order)
        self._fills_processed += 1
        result.orders_filled += 1
        result.filled_order_ids.append(order.order_id)

        logger.info(f"Order filled: {order.side.value} {order.size} at price {order.price}")

        try:
            level = self._locate_level(order)
        except StateInconsistencyError as e:
            self._inconsistencies += 1
            result.skipped_fills += 1
            logger.warning(f"Skipping fill: {e}")
            self._record_trade(order, order.level_index, ZERO)
            if self._event_bus:
                self._event_bus.publish(
                    EventType.STATE_INCONSISTENCY,
                    EventSeverity.WARNING,
                    str(e),
                    {"order": order.to_dict()},
                )
            return

        profit = self._realize(order, level)
        result.realized_pnl_delta += profit

        # Kept on the level even if placement fails; resubmitted next refresh
        opposite = self._allocator.generate_opposite_order(order, level)
        level.clear_orders()
        level.set_order(opposite)
        placement = ExecutionResult(success=True)
        if await self._submit(opposite, placement):
            self._state.active_orders.append(opposite)
            result.opposite_orders_placed += 1
        else:
            result.errors.extend(placement.errors)

        self._record_trade(order, level.index, profit)

        if self._event_bus:
            self._event_bus.publish(
                EventType.ORDER_FILLED,
                EventSeverity.INFO,
                f"{order.side.value} {order.size} @ {order.price}",
                {"order": order.to_dict(), "profit": str(profit)},
            )

    async def _resubmit_unplaced(self, result: ReconciliationResult) -> None:
        """Place pending orders on active levels that never reached the exchange."""
        for level in self._state.grid_levels:
            if not level.is_active:
                continue
            for order in level.pending_orders():
                if order.exchange_order_id is not None:
                    continue
                placement = ExecutionResult(success=True)
                if await self._submit(order, placement):
                    self._state.active_orders.append(order)
                    result.orders_resubmitted += 1
                    logger.info(
                        f"Resubmitted {order.side.value} order at price {order.price} "
                        f"on level {level.index}"
                    )
                else:
                    result.errors.extend(placement.errors)

    def _locate_level(self, order: Order) -> GridLevel:
        """
        Find the level a filled order belongs to.

        Raises:
            StateInconsistencyError: If no current level owns the order
        """
        for level in self._state.grid_levels:
            for attached in (level.buy_order, level.sell_order):
                if attached is not None and attached.order_id == order.order_id:
                    return level

        level = self._state.find_level_for_order(order)
        if level is None or not level.is_active:
            raise StateInconsistencyError(
                f"Filled order {order.order_id} ({order.side.value} @ {order.price}) "
                f"has no matching grid level"
            )
        return level

    def _realize(self, order: Order, level: GridLevel) -> Decimal:
        """Pair order with the latest opposite fill on its level."""
        stack = self._unmatched_fills.setdefault(level.index, [])

        for position in range(len(stack) - 1, -1, -1):
            previous = stack[position]
            if previous.side == order.side:
                continue

            del stack[position]
            if order.side == OrderSide.SELL:
                profit = (order.price - previous.price) * order.size
            else:
                profit = (previous.price - order.price) * order.size

            self._state.realized_pnl += profit
            logger.info(
                f"Realized {profit} on level {level.index}: "
                f"{previous.side.value} @ {previous.price} -> {order.side.value} @ {order.price}"
            )
            return profit

        stack.append(order)
        return ZERO

    def _record_trade(self, order: Order, level_index: Optional[int], profit: Decimal) -> None:
        self._trades.append(HistoricalTrade(
            timestamp=order.filled_at or time.time(),
            price=order.price,
            size=order.size,
            side=order.side,
            level_index=level_index,
            profit=profit,
        ))

    def _remove_canceled(self, order: Order) -> None:
        """Drop an exchange-canceled order from the active set and its level."""
        order.status = OrderStatus.CANCELED
        self._state.active_orders = [
            o for o in self._state.active_orders if o.order_id != order.order_id
        ]
        self._detach(order)
        logger.warning(f"Order {order.order_id} canceled by exchange")

    def _detach(self, order: Order) -> None:
        for level in self._state.grid_levels:
            if level.buy_order is not None and level.buy_order.order_id == order.order_id:
                level.buy_order = None
            if level.sell_order is not None and level.sell_order.order_id == order.order_id:
                level.sell_order = None

    def calculate_unrealized_pnl(self) -> Decimal:
        """
        Mark-to-market of resting orders.

        (current - price) * size for buys, (price - current) * size for sells.
        """
        current = self._state.current_price
        total = ZERO
        for order in self._state.active_orders:
            if not order.is_pending:
                continue
            if order.side == OrderSide.BUY:
                total += (current - order.price) * order.size
            else:
                total += (order.price - current) * order.size
        self._state.unrealized_pnl = total
        return total

    # === Cancellation ===

    async def cancel_all_orders(self) -> ExecutionResult:
        """
        Best-effort cancel of every active order.

        The active set is cleared even if individual cancels fail.
        """
        orders = list(self._state.active_orders)
        result = await self._cancel(orders)

        for order in orders:
            self._detach(order)
        for level in self._state.grid_levels:
            for order in level.pending_orders():
                if order.exchange_order_id is None:
                    self._detach(order)
        self._state.active_orders = []
        self._refresh_metrics()

        logger.info(f"Canceled all orders: {result}")
        return result

    async def cancel_orders(self, orders: Sequence[Order]) -> ExecutionResult:
        """Cancel a specific set of orders, each attempted independently."""
        result = await self._cancel(orders)

        ids = {order.order_id for order in orders}
        self._state.active_orders = [o for o in self._state.active_orders if o.order_id not in ids]
        self._refresh_metrics()
        return result

    async def _cancel(self, orders: Sequence[Order]) -> ExecutionResult:
        result = ExecutionResult(success=True)
        for order in orders:
            if order.exchange_order_id is None:
                continue
            try:
                await self._call(self._gateway.cancel_order, order.exchange_order_id)
                order.status = OrderStatus.CANCELED
                result.orders_canceled += 1
            except OrderNotFoundError:
                logger.warning(f"Order {order.order_id} not found on exchange, treating as canceled")
                order.status = OrderStatus.CANCELED
                result.orders_canceled += 1
            except Exception as e:
                msg = f"Failed to cancel order {order.order_id}: {e}"
                logger.error(msg)
                result.orders_failed += 1
                result.errors.append(msg)
                self._publish_error("cancel_order", e)

        result.success = result.orders_failed == 0
        return result

    def apply_stop_loss(self, stop_result: StopLossResult) -> None:
        """Install the post-stop levels and drop closed orders from the active set."""
        self._state.grid_levels = copy.deepcopy(stop_result.updated_levels)
        closed_ids = {order.order_id for order in stop_result.closed_orders}
        self._state.active_orders = [
            o for o in self._state.active_orders if o.order_id not in closed_ids
        ]
        self._refresh_metrics()

    def set_stop_loss_level(self, price: Optional[Decimal]) -> None:
        self._state.current_stop_loss = price
        self._snapshot = build_snapshot(self._state, self._trades)

    # === Read Model ===

    @property
    def current_price(self) -> Decimal:
        return self._state.current_price

    def get_trading_state(self) -> TradingState:
        """Deep copy of the trading state."""
        return self._state.copy()

    def get_performance_snapshot(self) -> PerformanceSnapshot:
        return self._snapshot

    def get_historical_trades(self) -> List[HistoricalTrade]:
        return list(self._trades)

    def get_price_history(self) -> List[Decimal]:
        return list(self._price_history)

    def get_stats(self) -> Dict[str, Any]:
        """Get engine statistics."""
        return {
            "current_price": str(self._state.current_price),
            "active_orders": len(self._state.active_orders),
            "filled_orders": len(self._state.filled_orders),
            "realized_pnl": str(self._state.realized_pnl),
            "unrealized_pnl": str(self._state.unrealized_pnl),
            "orders_placed": self._orders_placed,
            "orders_failed": self._orders_failed,
            "fills_processed": self._fills_processed,
            "state_inconsistencies": self._inconsistencies,
            "trade_count": len(self._trades),
        }

    # === Internals ===

    async def _call(self, func, *args):
        return await retry_async(func, *args, config=self._retry_config)

    async def _submit(self, order: Order, result: ExecutionResult) -> bool:
        """Place one order; record the exchange id or the failure."""
        try:
            exchange_id = await self._call(
                self._gateway.place_order,
                order.price,
                order.size,
                order.side,
                order.order_type,
            )
        except Exception as e:
            msg = f"Failed to place {order.side.value} order at price {order.price}: {e}"
            logger.error(msg)
            result.orders_failed += 1
            result.errors.append(msg)
            self._orders_failed += 1
            self._publish_error("place_order", e)
            return False

        order.exchange_order_id = exchange_id
        order.status = OrderStatus.PENDING
        result.orders_submitted += 1
        self._orders_placed += 1
        logger.debug(f"Placed {order.side.value} order of {order.size} at price {order.price}")
        return True

    def _refresh_metrics(self) -> None:
        self.calculate_unrealized_pnl()
        self._snapshot = build_snapshot(self._state, self._trades)

    def _publish_error(self, operation: str, error: Exception) -> None:
        if self._event_bus is None:
            return
        category = error.error_info.category.value if isinstance(error, ExchangeError) else "unknown"
        self._event_bus.publish(
            EventType.EXCHANGE_ERROR,
            EventSeverity.WARNING,
            f"{operation} failed: {error}",
            {"operation": operation, "category": category},
        )
