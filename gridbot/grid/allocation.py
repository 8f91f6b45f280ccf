"""
Allocation Engine.

Splits capital across grid levels and turns levels into orders:
- Equal, weighted (triangular) or custom capital split
- Initial buy/sell orders around the current price
- Opposite order after a fill (keeps the grid self-healing)
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from config.settings import AllocationMethod
from gridbot.exchange.gateway import OrderSide, OrderStatus, OrderType

from .models import GridLevel, Order

logger = logging.getLogger(__name__)


@dataclass
class LevelAllocation:
    """Capital and order size assigned to one level."""

    level_index: int
    capital: Decimal  # Quote currency
    buy_size: Decimal  # Base currency
    sell_size: Decimal  # Base currency, always equal to buy_size


class AllocationEngine:
    """
    Sizes grid orders.

    Example:
        engine = AllocationEngine()
        allocations = engine.allocate(levels, AllocationMethod.EQUAL, 1000, 1)
        levels = engine.generate_grid_orders(
            levels, Decimal("100"), AllocationMethod.EQUAL, 1000, 1
        )
    """

    def allocate(
        self,
        levels: List[GridLevel],
        method: AllocationMethod,
        total_capital: float,
        leverage: float = 1.0,
        custom_pattern: Optional[Sequence[float]] = None,
    ) -> List[LevelAllocation]:
        """
        Split total_capital * leverage across levels.

        Args:
            levels: Grid levels (all of them, active or not)
            method: Allocation method
            total_capital: Capital in quote currency
            leverage: Leverage multiplier
            custom_pattern: Weights for CUSTOM, one per level

        Returns:
            One allocation per level, in level order
        """
        if not levels:
            return []

        pool = Decimal(str(total_capital)) * Decimal(str(leverage))
        weights = self._weights(len(levels), method, custom_pattern)

        allocations = []
        for level, weight in zip(levels, weights):
            capital = pool * weight
            size = capital / level.price
            allocations.append(LevelAllocation(
                level_index=level.index,
                capital=capital,
                buy_size=size,
                sell_size=size,
            ))

        logger.debug(
            f"Allocated {pool} across {len(levels)} levels ({method.value})"
        )
        return allocations

    def generate_grid_orders(
        self,
        levels: List[GridLevel],
        current_price: Decimal,
        method: AllocationMethod = AllocationMethod.EQUAL,
        total_capital: float = 0.0,
        leverage: float = 1.0,
        custom_pattern: Optional[Sequence[float]] = None,
        order_type: OrderType = OrderType.LIMIT,
    ) -> List[GridLevel]:
        """
        Attach initial orders to levels.

        Active levels below the price get a buy, above the price a sell.
        Inactive levels and zero-size allocations get nothing.

        Returns:
            Copies of the levels with orders attached
        """
        allocations: Dict[int, LevelAllocation] = {
            a.level_index: a
            for a in self.allocate(levels, method, total_capital, leverage, custom_pattern)
        }

        result = []
        for level in levels:
            new_level = GridLevel(index=level.index, price=level.price, is_active=level.is_active)
            allocation = allocations[level.index]

            if level.is_active and level.price != current_price:
                side = OrderSide.BUY if level.price < current_price else OrderSide.SELL
                size = allocation.buy_size if side == OrderSide.BUY else allocation.sell_size
                if size > 0:
                    new_level.set_order(self._new_order(level, size, side, order_type))
                else:
                    logger.debug(f"Level {level.index} has no capital, skipping order")

            result.append(new_level)

        return result

    def generate_opposite_order(self, filled_order: Order, level: GridLevel) -> Order:
        """
        Create the replacement order for a fill.

        Same level price and size, opposite side, pending.
        """
        return self._new_order(
            level,
            filled_order.size,
            filled_order.side.opposite,
            filled_order.order_type,
        )

    # === Internals ===

    @staticmethod
    def _new_order(
        level: GridLevel,
        size: Decimal,
        side: OrderSide,
        order_type: OrderType,
    ) -> Order:
        return Order(
            order_id=str(uuid.uuid4()),
            price=level.price,
            size=size,
            side=side,
            order_type=order_type,
            status=OrderStatus.PENDING,
            level_index=level.index,
        )

    def _weights(
        self,
        n: int,
        method: AllocationMethod,
        custom_pattern: Optional[Sequence[float]],
    ) -> List[Decimal]:
        """Normalized weights summing to 1."""
        equal = [Decimal(1) / Decimal(n)] * n

        if method == AllocationMethod.WEIGHTED:
            if n == 1:
                return [Decimal(1)]
            raw = [
                Decimal(1) - abs(Decimal(i) / Decimal(n - 1) - Decimal("0.5")) * 2
                for i in range(n)
            ]
            total = sum(raw)
            if total <= 0:
                return equal
            return [w / total for w in raw]

        if method == AllocationMethod.CUSTOM:
            if not custom_pattern or len(custom_pattern) != n:
                logger.error(
                    "Custom allocation pattern is missing or has incorrect length, "
                    "falling back to equal allocation"
                )
                return equal
            raw = [Decimal(str(w)) for w in custom_pattern]
            total = sum(raw)
            if total <= 0:
                logger.error("Custom allocation pattern sums to zero, falling back to equal allocation")
                return equal
            return [w / total for w in raw]

        return equal
