"""
Risk Engine.

Stop-loss and reversal state machine for one trading session:
- Basic stop: fixed percentage below the current price
- Dynamic stop: percentage widens with accumulated profit
- Trailing stop: ratchets upward once price clears the activation threshold
- Hard/soft stop-loss execution
- Heuristic reversal detection over a rolling price window
"""

import copy
import logging
import math
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple

from config.settings import RiskConfig, StopLossMethod
from gridbot.grid.models import GridLevel, Order, TradingState

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
ONE = Decimal("1")


def _pct(value: float) -> Decimal:
    return Decimal(str(value)) / HUNDRED


@dataclass(frozen=True)
class RiskState:
    """Read-only snapshot of the risk engine."""

    initial_price: Decimal
    stop_loss_price: Optional[Decimal]
    trailing_stop_price: Optional[Decimal]
    price_history: Tuple[Decimal, ...] = ()

    @property
    def trailing_active(self) -> bool:
        return self.trailing_stop_price is not None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "initial_price": str(self.initial_price),
            "stop_loss_price": str(self.stop_loss_price) if self.stop_loss_price is not None else None,
            "trailing_stop_price": (
                str(self.trailing_stop_price) if self.trailing_stop_price is not None else None
            ),
            "trailing_active": self.trailing_active,
            "history_size": len(self.price_history),
        }


@dataclass
class StopLossResult:
    """Outcome of a stop-loss execution, to be applied by the reconciliation engine."""

    updated_levels: List[GridLevel]
    closed_orders: List[Order]
    method: StopLossMethod
    closed_level_indices: List[int] = field(default_factory=list)

    def __str__(self) -> str:
        return (
            f"StopLossResult({self.method.value}: "
            f"orders={len(self.closed_orders)}, levels={len(self.closed_level_indices)})"
        )


class RiskEngine:
    """
    Stop-loss and reversal detector.

    Call update_stop_loss once per cycle with the latest trading state,
    then check is_stop_loss_triggered against the current price.

    Example:
        risk = RiskEngine(config.risk, initial_price=Decimal("100"))
        risk.record_price(Decimal("101"))
        stop = risk.update_stop_loss(state)
        if risk.is_stop_loss_triggered(state.current_price):
            result = risk.execute_stop_loss(state)
    """

    def __init__(self, config: RiskConfig, initial_price: Decimal):
        """
        Initialize risk engine.

        Args:
            config: Risk configuration
            initial_price: Reference price for trailing activation
        """
        if initial_price <= 0:
            raise ValueError(f"Initial price must be positive, got {initial_price}")

        self._config = config
        self._initial_price = initial_price
        self._stop_loss_price: Optional[Decimal] = None
        self._trailing_stop_price: Optional[Decimal] = None
        self._current_profit = Decimal("0")
        self._price_history: Deque[Decimal] = deque(maxlen=config.price_history_size)

        # Counters
        self._triggers = 0
        self._reversals = 0

        if config.basic_stop_loss.enabled:
            self._stop_loss_price = self.basic_stop_price(initial_price)

        logger.info(
            f"RiskEngine initialized: initial_price={initial_price}, "
            f"stop={self._stop_loss_price}"
        )

    # === Stop Calculations ===

    def basic_stop_price(self, price: Decimal) -> Decimal:
        """price * (1 - pct/100)."""
        return price * (ONE - _pct(self._config.basic_stop_loss.percentage))

    def dynamic_stop_price(self, price: Decimal, profit: Decimal) -> Decimal:
        """
        Stop whose percentage widens with profit.

        percentage = threshold + min(profit * factor, max), expansion floored at 0.
        """
        dynamic = self._config.dynamic_stop_loss
        expansion = min(
            profit * Decimal(str(dynamic.expansion_factor)),
            Decimal(str(dynamic.maximum_expansion)),
        )
        expansion = max(expansion, Decimal("0"))
        percentage = Decimal(str(dynamic.initial_risk_threshold)) + expansion
        return price * (ONE - percentage / HUNDRED)

    def update_stop_loss(self, state: TradingState) -> Optional[Decimal]:
        """
        Recompute stop levels from the current state.

        Args:
            state: Current trading state (read only)

        Returns:
            Effective stop-loss price, or None if no stop is set
        """
        price = state.current_price
        self._current_profit = state.realized_pnl + state.unrealized_pnl

        if self._config.basic_stop_loss.enabled:
            self._stop_loss_price = self.basic_stop_price(price)

        if self._config.dynamic_stop_loss.enabled:
            self._stop_loss_price = self.dynamic_stop_price(price, self._current_profit)

        if self._config.trailing_stop_loss.enabled:
            self._update_trailing_stop(price)

        logger.debug(f"Updated stop loss price: {self._stop_loss_price}")
        return self._stop_loss_price

    def _update_trailing_stop(self, price: Decimal) -> None:
        """Ratchet the trailing stop and fold it into the effective stop."""
        trailing = self._config.trailing_stop_loss
        gain_percent = (price / self._initial_price - ONE) * HUNDRED

        if gain_percent >= Decimal(str(trailing.activation_threshold)):
            distance = _pct(trailing.trailing_distance)
            candidate = price * (ONE - distance)

            previous = self._trailing_stop_price
            if previous is None:
                should_update = True
            elif trailing.is_discrete:
                should_update = candidate >= previous * (ONE + distance)
            else:
                should_update = candidate > previous

            if should_update:
                self._trailing_stop_price = candidate
                logger.info(f"Updated trailing stop price to {candidate:.2f}")

        if self._trailing_stop_price is not None and (
            self._stop_loss_price is None
            or self._trailing_stop_price > self._stop_loss_price
        ):
            self._stop_loss_price = self._trailing_stop_price

    def is_stop_loss_triggered(self, price: Decimal) -> bool:
        """True iff a stop is set and price is at or below it."""
        if self._stop_loss_price is None:
            return False
        return price <= self._stop_loss_price

    # === Stop Execution ===

    def execute_stop_loss(self, state: TradingState) -> StopLossResult:
        """
        Compute which levels and orders to close.

        Hard closes every level. Soft closes the farthest ceil(n/2)
        levels from the current price. The input state is not modified.

        Args:
            state: Current trading state

        Returns:
            StopLossResult with updated level copies and orders to cancel
        """
        method = self._config.basic_stop_loss.method
        self._triggers += 1
        logger.warning(f"Executing {method.value} stop loss at price {state.current_price}")

        if method == StopLossMethod.HARD:
            return self._execute_hard(state)
        return self._execute_soft(state)

    def _execute_hard(self, state: TradingState) -> StopLossResult:
        updated = []
        for level in state.grid_levels:
            closed = copy.deepcopy(level)
            closed.is_active = False
            closed.clear_orders()
            updated.append(closed)

        closed_orders = copy.deepcopy(state.active_orders)
        logger.warning(f"Hard stop loss executed: closing {len(closed_orders)} orders")

        return StopLossResult(
            updated_levels=updated,
            closed_orders=closed_orders,
            method=StopLossMethod.HARD,
            closed_level_indices=[level.index for level in state.grid_levels],
        )

    def _execute_soft(self, state: TradingState) -> StopLossResult:
        price = state.current_price
        by_distance = sorted(
            state.grid_levels,
            key=lambda level: abs(level.price - price),
            reverse=True,
        )
        closure_count = math.ceil(len(by_distance) / 2)
        to_close = {level.index for level in by_distance[:closure_count]}

        updated = []
        for level in state.grid_levels:
            new_level = copy.deepcopy(level)
            if level.index in to_close:
                new_level.is_active = False
                new_level.clear_orders()
            updated.append(new_level)

        # Orders attached to a closed level
        closed_order_ids = set()
        for level in state.grid_levels:
            if level.index in to_close:
                for order in (level.buy_order, level.sell_order):
                    if order is not None:
                        closed_order_ids.add(order.order_id)

        closed_orders = [
            copy.deepcopy(order)
            for order in state.active_orders
            if order.order_id in closed_order_ids
        ]

        logger.warning(
            f"Soft stop loss executed: closing {len(closed_orders)} orders "
            f"from {closure_count} grid levels"
        )

        return StopLossResult(
            updated_levels=updated,
            closed_orders=closed_orders,
            method=StopLossMethod.SOFT,
            closed_level_indices=sorted(to_close),
        )

    # === Reversal Detection ===

    def record_price(self, price: Decimal) -> None:
        """Append a price to the rolling window."""
        self._price_history.append(price)

    def detect_reversal(self, history: Optional[Sequence[Decimal]] = None) -> bool:
        """
        Heuristic trend-reversal check.

        Fires when the short-term average is above the medium-term
        average, recent momentum is large relative to the medium-term
        average, and the last move contradicts that momentum.

        Args:
            history: Prices oldest first (defaults to the rolling window)

        Returns:
            True if a reversal is detected
        """
        prices = list(self._price_history if history is None else history)
        short_n = self._config.reversal_short_window
        medium_n = self._config.reversal_medium_window
        momentum_n = self._config.reversal_momentum_window

        if len(prices) < max(medium_n, short_n, momentum_n, 2):
            return False

        prices = [Decimal(str(p)) for p in prices]
        short_avg = sum(prices[-short_n:]) / Decimal(short_n)
        medium_avg = sum(prices[-medium_n:]) / Decimal(medium_n)

        recent = prices[-momentum_n:]
        momentum = recent[-1] - recent[0]

        short_higher = short_avg > medium_avg
        significant = abs(momentum) > medium_avg * Decimal(str(self._config.reversal_momentum_threshold))

        current, prior = prices[-1], prices[-2]
        direction_changed = (
            (current > prior and momentum < 0)
            or (current < prior and momentum > 0)
        )

        detected = short_higher and significant and direction_changed
        if detected:
            self._reversals += 1
            logger.info("Potential market reversal detected")
        return detected

    # === Read Model ===

    @property
    def stop_loss_price(self) -> Optional[Decimal]:
        return self._stop_loss_price

    @property
    def trailing_stop_price(self) -> Optional[Decimal]:
        return self._trailing_stop_price

    def get_risk_state(self) -> RiskState:
        """Frozen snapshot of the current risk state."""
        return RiskState(
            initial_price=self._initial_price,
            stop_loss_price=self._stop_loss_price,
            trailing_stop_price=self._trailing_stop_price,
            price_history=tuple(self._price_history),
        )

    def get_stats(self) -> Dict[str, Any]:
        """Get risk engine statistics."""
        return {
            "initial_price": str(self._initial_price),
            "stop_loss_price": str(self._stop_loss_price) if self._stop_loss_price is not None else None,
            "trailing_stop_price": (
                str(self._trailing_stop_price) if self._trailing_stop_price is not None else None
            ),
            "current_profit": str(self._current_profit),
            "history_size": len(self._price_history),
            "stop_loss_triggers": self._triggers,
            "reversals_detected": self._reversals,
        }
