"""
Grid data model.

Orders, grid levels, the trading-state aggregate and the trade ledger
record. Prices, sizes and P&L are Decimal throughout.
"""

import copy
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from gridbot.exchange.gateway import OrderSide, OrderStatus, OrderType


@dataclass
class Order:
    """A grid order, tracked from creation until filled or canceled."""

    order_id: str
    price: Decimal
    size: Decimal
    side: OrderSide
    order_type: OrderType = OrderType.LIMIT
    status: OrderStatus = OrderStatus.PENDING
    exchange_order_id: Optional[str] = None
    level_index: Optional[int] = None
    created_at: float = field(default_factory=time.time)
    filled_at: Optional[float] = None

    def __post_init__(self):
        """Validate order."""
        if self.price <= 0:
            raise ValueError(f"Price must be positive, got {self.price}")
        if self.size <= 0:
            raise ValueError(f"Size must be positive, got {self.size}")

    @property
    def is_pending(self) -> bool:
        return self.status == OrderStatus.PENDING

    @property
    def notional(self) -> Decimal:
        """Order value in quote currency."""
        return self.price * self.size

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "price": str(self.price),
            "size": str(self.size),
            "side": self.side.value,
            "order_type": self.order_type.value,
            "status": self.status.value,
            "exchange_order_id": self.exchange_order_id,
            "level_index": self.level_index,
            "created_at": self.created_at,
            "filled_at": self.filled_at,
        }


@dataclass
class GridLevel:
    """A grid price point carrying at most one buy and one sell order."""

    index: int  # 0 = lowest price
    price: Decimal
    is_active: bool = True  # False for the level sitting on the current price
    buy_order: Optional[Order] = None
    sell_order: Optional[Order] = None

    def __post_init__(self):
        """Validate grid level."""
        if self.price <= 0:
            raise ValueError(f"Price must be positive, got {self.price}")

    def pending_orders(self) -> List[Order]:
        """Orders attached to this level that are still pending."""
        return [
            order for order in (self.buy_order, self.sell_order)
            if order is not None and order.is_pending
        ]

    def clear_orders(self) -> None:
        self.buy_order = None
        self.sell_order = None

    def set_order(self, order: Order) -> None:
        """Attach order on its side."""
        if order.side == OrderSide.BUY:
            self.buy_order = order
        else:
            self.sell_order = order

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "price": str(self.price),
            "is_active": self.is_active,
            "buy_order": self.buy_order.to_dict() if self.buy_order else None,
            "sell_order": self.sell_order.to_dict() if self.sell_order else None,
        }


@dataclass
class TradingState:
    """
    Live trading aggregate.

    Owned by the ReconciliationEngine. Everyone else receives copies.
    """

    current_price: Decimal
    grid_levels: List[GridLevel] = field(default_factory=list)
    active_orders: List[Order] = field(default_factory=list)
    filled_orders: List[Order] = field(default_factory=list)
    realized_pnl: Decimal = Decimal("0")
    unrealized_pnl: Decimal = Decimal("0")
    current_stop_loss: Optional[Decimal] = None

    @property
    def total_pnl(self) -> Decimal:
        return self.realized_pnl + self.unrealized_pnl

    def copy(self) -> "TradingState":
        """Deep copy for handing to readers."""
        return copy.deepcopy(self)

    def find_level_for_order(self, order: Order) -> Optional[GridLevel]:
        """
        Locate the level an order belongs to.

        Matches on level index first, then on exact price.
        """
        if order.level_index is not None:
            for level in self.grid_levels:
                if level.index == order.level_index and level.price == order.price:
                    return level
        for level in self.grid_levels:
            if level.price == order.price:
                return level
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_price": str(self.current_price),
            "grid_levels": [level.to_dict() for level in self.grid_levels],
            "active_orders": [order.to_dict() for order in self.active_orders],
            "filled_orders": len(self.filled_orders),
            "realized_pnl": str(self.realized_pnl),
            "unrealized_pnl": str(self.unrealized_pnl),
            "current_stop_loss": (
                str(self.current_stop_loss) if self.current_stop_loss is not None else None
            ),
        }


@dataclass(frozen=True)
class HistoricalTrade:
    """Immutable ledger entry for one fill."""

    timestamp: float
    price: Decimal
    size: Decimal
    side: OrderSide
    level_index: Optional[int]
    profit: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "price": str(self.price),
            "size": str(self.size),
            "side": self.side.value,
            "level_index": self.level_index,
            "profit": str(self.profit),
        }
