"""
Grid Controller - Central Coordinator for a grid trading session.

Provides:
- Component initialization and wiring
- Trading cycle sequencing (market data, stop-loss, reversal, adjustment)
- Grid regeneration around the current price
- Drift checks on their own interval
- Graceful startup and shutdown
- Read model and event subscription for observers
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, auto
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional

from config.settings import AdjustmentTrigger, BotConfig
from gridbot.exchange.errors import RetryConfig, retry_async
from gridbot.exchange.gateway import ExchangeGateway, OrderType
from gridbot.grid.allocation import AllocationEngine
from gridbot.grid.grid_generator import GridLevelGenerator
from gridbot.grid.models import GridLevel, HistoricalTrade, TradingState

from .drift import DriftCorrector, DriftReport
from .events import (
    CallbackSubscriber,
    EventBus,
    EventSeverity,
    EventSubscriber,
    EventType,
    LoggingSubscriber,
)
from .performance import PerformanceMonitor, PerformanceSnapshot
from .reconciliation import ExecutionResult, ReconciliationEngine, ReconciliationResult
from .risk_engine import RiskEngine, RiskState

logger = logging.getLogger(__name__)


class ControllerState(Enum):
    """Controller lifecycle states."""

    CREATED = auto()
    INITIALIZING = auto()
    READY = auto()
    RUNNING = auto()
    SHUTTING_DOWN = auto()
    STOPPED = auto()
    ERROR = auto()


@dataclass
class CycleReport:
    """What happened during one trading cycle."""

    cycle_number: int
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    price: Optional[Decimal] = None
    reconciliation: Optional[ReconciliationResult] = None
    stop_loss_triggered: bool = False
    stop_loss_price: Optional[Decimal] = None
    reversal_detected: bool = False
    adjustment_triggered: bool = False
    grid_regenerated: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle_number": self.cycle_number,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "price": str(self.price) if self.price is not None else None,
            "reconciliation": self.reconciliation.to_dict() if self.reconciliation else None,
            "stop_loss_triggered": self.stop_loss_triggered,
            "stop_loss_price": str(self.stop_loss_price) if self.stop_loss_price is not None else None,
            "reversal_detected": self.reversal_detected,
            "adjustment_triggered": self.adjustment_triggered,
            "grid_regenerated": self.grid_regenerated,
            "errors": list(self.errors),
        }

    def __str__(self) -> str:
        status = "OK" if self.success else f"{len(self.errors)} errors"
        flags = []
        if self.stop_loss_triggered:
            flags.append("stop-loss")
        if self.reversal_detected:
            flags.append("reversal")
        if self.adjustment_triggered:
            flags.append("adjustment")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        return f"Cycle #{self.cycle_number} ({status}) price={self.price}{suffix}"


class GridController:
    """
    Central coordinator for one grid trading session.

    Responsibilities:
    - Build the grid, risk engine and reconciliation engine
    - Run one trading cycle at a time on a fixed interval
    - Regenerate the grid on reversal or adjustment triggers
    - Cancel orders and close the gateway on shutdown

    Usage:
        controller = GridController(config, gateway)

        await controller.initialize()
        await controller.start()

        # Session runs until stopped
        await controller.stop()
    """

    def __init__(
        self,
        config: BotConfig,
        gateway: ExchangeGateway,
        event_bus: Optional[EventBus] = None,
    ):
        """
        Initialize controller.

        Args:
            config: Bot configuration (validated here)
            gateway: Exchange gateway
            event_bus: Event bus (a new one with a LoggingSubscriber if None)

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        config.ensure_valid()

        self._config = config
        self._gateway = gateway
        self._state = ControllerState.CREATED

        if event_bus is None:
            event_bus = EventBus()
            event_bus.subscribe(LoggingSubscriber())
        self._event_bus = event_bus

        # Components
        self._generator = GridLevelGenerator()
        self._allocator = AllocationEngine()
        self._monitor = PerformanceMonitor(config.engine.metrics_history_size)
        self._risk: Optional[RiskEngine] = None
        self._engine: Optional[ReconciliationEngine] = None
        self._retry_config = self._build_retry_config(config)
        self._drift = DriftCorrector(config.position.drift_threshold, self._retry_config)

        # Tasks
        self._tasks: List[asyncio.Task] = []
        self._cycle_lock = asyncio.Lock()
        self._shutdown_event = asyncio.Event()

        # Runtime state
        self._price_history: Deque[Decimal] = deque(maxlen=config.risk.price_history_size)
        self._volatility: Optional[float] = None
        self._last_adjustment_time = time.time()
        self._pending_regeneration = False
        self._consecutive_failures = 0
        self._cycle_count = 0
        self._regeneration_count = 0
        self._stop_loss_count = 0
        self._last_report: Optional[CycleReport] = None

        logger.info(
            f"GridController created ({config.investment.asset_pair}, "
            f"{config.grid.num_levels} levels, {config.grid.distribution.value})"
        )

    @staticmethod
    def _build_retry_config(config: BotConfig) -> RetryConfig:
        return RetryConfig(
            max_retries=config.engine.max_retries,
            base_delay=config.engine.retry_base_delay,
            max_delay=config.engine.cycle_interval,
        )

    # === Properties ===

    @property
    def state(self) -> ControllerState:
        """Get current controller state."""
        return self._state

    @property
    def config(self) -> BotConfig:
        return self._config

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def monitor(self) -> PerformanceMonitor:
        return self._monitor

    @property
    def is_running(self) -> bool:
        return self._state == ControllerState.RUNNING

    @property
    def last_report(self) -> Optional[CycleReport]:
        return self._last_report

    # === Lifecycle Methods ===

    async def initialize(self) -> ExecutionResult:
        """
        Build the initial grid and place its orders.

        Raises:
            ConfigurationError: If the configuration is invalid
            ExchangeError: If the price cannot be fetched
        """
        if self._state not in (
            ControllerState.CREATED,
            ControllerState.STOPPED,
            ControllerState.ERROR,
        ):
            raise RuntimeError(f"Cannot initialize from state {self._state.name}")

        logger.info("Initializing grid controller...")
        self._state = ControllerState.INITIALIZING

        try:
            self._config.ensure_valid()
            await self._gateway.connect()

            price = await retry_async(self._gateway.get_current_price, config=self._retry_config)
            self._price_history.append(price)

            self._volatility = await self._fetch_volatility()
            levels = self._build_grid(price, self._volatility)

            self._risk = RiskEngine(self._config.risk, price)
            self._risk.record_price(price)
            self._engine = ReconciliationEngine(
                gateway=self._gateway,
                initial_state=TradingState(current_price=price, grid_levels=levels),
                retry_config=self._retry_config,
                event_bus=self._event_bus,
                allocator=self._allocator,
                price_history_size=self._config.engine.metrics_history_size,
            )

            result = await self._engine.initialize()
            self._engine.set_stop_loss_level(self._risk.stop_loss_price)

        except Exception:
            self._state = ControllerState.ERROR
            raise

        self._last_adjustment_time = time.time()
        self._pending_regeneration = False
        self._shutdown_event.clear()
        self._state = ControllerState.READY

        logger.info(f"Grid controller ready: {result}")
        return result

    async def start(self) -> None:
        """
        Start the recurring trading cycle.

        Creates async tasks for:
        - The trading cycle
        - Periodic drift checks (when enabled)
        """
        if self._state != ControllerState.READY:
            raise RuntimeError(
                f"Cannot start from state {self._state.name}, must be READY"
            )

        logger.info("Starting grid controller...")
        self._shutdown_event.clear()

        self._tasks = [asyncio.create_task(self._cycle_task(), name="trading_cycle")]
        if self._config.position.drift_correction_enabled:
            self._tasks.append(asyncio.create_task(self._drift_task(), name="drift_check"))

        self._state = ControllerState.RUNNING
        self._event_bus.publish(
            EventType.SESSION_STARTED,
            EventSeverity.INFO,
            f"Session started for {self._config.investment.asset_pair}",
            {"cycle_interval": self._config.engine.cycle_interval},
            force=True,
        )
        logger.info("Grid controller started")

    async def stop(self) -> None:
        """
        Gracefully stop the session.

        Cancels the tasks, cancels every open order (best effort) and
        closes the gateway. Safe to call more than once.
        """
        if self._state in (ControllerState.STOPPED, ControllerState.SHUTTING_DOWN):
            return

        logger.info("Stopping grid controller...")
        self._state = ControllerState.SHUTTING_DOWN
        self._shutdown_event.set()

        # Cancel all tasks
        for task in self._tasks:
            task.cancel()

        if self._tasks:
            done, pending = await asyncio.wait(
                self._tasks,
                timeout=self._config.engine.shutdown_timeout,
            )
            if pending:
                logger.warning(f"{len(pending)} tasks did not complete within timeout")
        self._tasks = []

        if self._engine is not None:
            logger.info("Canceling all orders...")
            try:
                result = await self._engine.cancel_all_orders()
                logger.info(f"Canceled orders: {result}")
            except Exception as e:
                logger.error(f"Failed to cancel orders during shutdown: {e}")

        try:
            await self._gateway.close()
        except Exception as e:
            logger.error(f"Failed to close gateway: {e}")

        self._state = ControllerState.STOPPED
        self._event_bus.publish(
            EventType.SESSION_STOPPED,
            EventSeverity.INFO,
            "Session stopped",
            {"cycles": self._cycle_count},
            force=True,
        )
        logger.info("Grid controller stopped")

    def reconfigure(self, config: BotConfig) -> None:
        """
        Swap in a new configuration.

        The grid is regenerated on the next cycle. Not allowed while
        the session is running.

        Raises:
            RuntimeError: If the session is running
            ConfigurationError: If the new configuration is invalid
        """
        if self._state in (ControllerState.RUNNING, ControllerState.SHUTTING_DOWN):
            raise RuntimeError("Cannot reconfigure a running session; stop it first")

        config.ensure_valid()
        self._config = config
        self._retry_config = self._build_retry_config(config)
        self._drift = DriftCorrector(config.position.drift_threshold, self._retry_config)
        self._price_history = deque(self._price_history, maxlen=config.risk.price_history_size)

        if self._engine is not None:
            self._risk = RiskEngine(config.risk, self._engine.current_price)
            self._pending_regeneration = True

        logger.info("Configuration updated, grid will be regenerated on the next cycle")

    # === Main Loop Tasks ===

    async def _wait_for_shutdown(self, timeout: float) -> bool:
        """Sleep up to timeout; True if shutdown was requested."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def _cycle_task(self) -> None:
        """Run trading cycles until shutdown."""
        logger.info("Trading cycle task started")

        try:
            while not self._shutdown_event.is_set():
                try:
                    await self.run_cycle()
                except Exception as e:
                    logger.error(f"Trading cycle error: {e}")

                if await self._wait_for_shutdown(self._config.engine.cycle_interval):
                    break

        except asyncio.CancelledError:
            logger.info("Trading cycle task cancelled")

    async def _drift_task(self) -> None:
        """Periodic drift checks."""
        logger.info("Drift check task started")

        try:
            while not self._shutdown_event.is_set():
                if await self._wait_for_shutdown(self._config.position.drift_check_interval):
                    break

                try:
                    await self.check_drift()
                except Exception as e:
                    logger.error(f"Drift check error: {e}")

        except asyncio.CancelledError:
            logger.info("Drift check task cancelled")

    # === Trading Cycle ===

    async def run_cycle(self) -> CycleReport:
        """
        Run one trading cycle. Never overlaps another cycle.

        Steps:
        1. Refresh market data and process fills
        2. Execute stop-loss if triggered
        3. Update stop-loss levels (always)
        4. Regenerate on reversal
        5. Regenerate on the configured adjustment trigger

        A cycle that executed a stop-loss ends after step 3. A breach on
        an already closed grid falls through so the adjustment trigger
        can rebuild it. A failing step is recorded in the report and
        never stops the loop.
        """
        engine = self._require_engine()
        async with self._cycle_lock:
            self._cycle_count += 1
            report = CycleReport(cycle_number=self._cycle_count)

            if self._pending_regeneration:
                await self._safe_regenerate(report, "reconfigured")

            # 1. Market data
            try:
                recon = await engine.update_market_data()
                report.reconciliation = recon
                report.errors.extend(recon.errors)
                self._track_price(recon)
            except Exception as e:
                self._record_error(report, "Market data update failed", e)
            report.price = engine.current_price

            # 2. Stop-loss
            stop_loss_executed = False
            if self._risk.is_stop_loss_triggered(engine.current_price):
                stop_loss_executed = await self._handle_stop_loss(report)

            # 3. Stop-loss levels
            try:
                stop = self._risk.update_stop_loss(engine.get_trading_state())
                engine.set_stop_loss_level(stop)
                if not stop_loss_executed:
                    report.stop_loss_price = stop
            except Exception as e:
                self._record_error(report, "Stop-loss update failed", e)

            if stop_loss_executed:
                return self._finish_cycle(report)

            # 4. Reversal
            try:
                if self._risk.detect_reversal():
                    report.reversal_detected = True
                    self._event_bus.publish(
                        EventType.REVERSAL_DETECTED,
                        EventSeverity.WARNING,
                        f"Reversal detected at {engine.current_price}",
                        {"price": str(engine.current_price)},
                    )
                    await self._regenerate("reversal")
                    report.grid_regenerated = True
            except Exception as e:
                self._record_error(report, "Reversal handling failed", e)

            # 5. Adjustment trigger
            try:
                if self.should_adjust_grid():
                    report.adjustment_triggered = True
                    await self._regenerate("adjustment")
                    report.grid_regenerated = True
                    self._last_adjustment_time = time.time()
            except Exception as e:
                self._record_error(report, "Grid adjustment failed", e)

            return self._finish_cycle(report)

    def _track_price(self, recon: ReconciliationResult) -> None:
        """Feed fresh prices to the risk window; count failed refreshes."""
        if recon.price_updated:
            self._consecutive_failures = 0
            self._risk.record_price(recon.current_price)
            self._price_history.append(recon.current_price)
            return

        self._consecutive_failures += 1
        limit = self._config.engine.max_consecutive_failures
        if limit > 0 and self._consecutive_failures % limit == 0:
            self._event_bus.publish(
                EventType.EXCHANGE_ERROR,
                EventSeverity.CRITICAL,
                f"Price refresh failed {self._consecutive_failures} cycles in a row",
                {"consecutive_failures": self._consecutive_failures},
            )

    async def _handle_stop_loss(self, report: CycleReport) -> bool:
        """Close the grid on a breach; False if it was already closed."""
        engine = self._engine
        state = engine.get_trading_state()

        if not state.active_orders and not any(level.is_active for level in state.grid_levels):
            logger.debug("Stop-loss level breached, grid already closed")
            return False

        report.stop_loss_triggered = True
        report.stop_loss_price = self._risk.stop_loss_price
        try:
            result = self._risk.execute_stop_loss(state)
            engine.apply_stop_loss(result)
            cancel_result = await engine.cancel_orders(result.closed_orders)
            report.errors.extend(cancel_result.errors)
            self._stop_loss_count += 1

            self._event_bus.publish(
                EventType.STOP_LOSS_TRIGGERED,
                EventSeverity.CRITICAL,
                f"{result.method.value} stop-loss at {state.current_price} "
                f"(stop {self._risk.stop_loss_price})",
                {
                    "method": result.method.value,
                    "price": str(state.current_price),
                    "stop_loss_price": str(self._risk.stop_loss_price),
                    "closed_orders": len(result.closed_orders),
                    "closed_levels": result.closed_level_indices,
                    "canceled": cancel_result.orders_canceled,
                    "failed": cancel_result.orders_failed,
                },
                force=True,
            )
        except Exception as e:
            self._record_error(report, "Stop-loss execution failed", e)
        return True

    def _finish_cycle(self, report: CycleReport) -> CycleReport:
        engine = self._engine
        snapshot = engine.get_performance_snapshot()
        self._monitor.record(snapshot)
        self._monitor.record_trades(engine.get_historical_trades())

        report.finished_at = time.time()
        self._last_report = report

        self._event_bus.publish(
            EventType.CYCLE_COMPLETED,
            EventSeverity.INFO,
            str(report),
            {"report": report.to_dict(), "snapshot": snapshot.to_dict()},
        )
        logger.debug(str(report))
        return report

    @staticmethod
    def _record_error(report: CycleReport, context: str, error: Exception) -> None:
        msg = f"{context}: {error}"
        logger.error(msg)
        report.errors.append(msg)

    # === Grid Adjustment ===

    def should_adjust_grid(self) -> bool:
        """Evaluate the configured adjustment trigger."""
        adjustment = self._config.position.grid_adjustment
        if not adjustment.enabled:
            return False

        if adjustment.trigger == AdjustmentTrigger.TIME_BASED:
            return time.time() - self._last_adjustment_time >= adjustment.time_interval

        if adjustment.trigger == AdjustmentTrigger.VOLATILITY_BASED:
            recent = list(self._price_history)[-adjustment.volatility_window:]
            if len(recent) < 2:
                return False
            low, high = min(recent), max(recent)
            volatility_percent = (high - low) / low * 100
            if volatility_percent >= Decimal(str(adjustment.volatility_threshold)):
                logger.info(
                    f"Volatility-based grid adjustment triggered: "
                    f"{volatility_percent:.2f}% range"
                )
                return True
            return False

        if adjustment.trigger == AdjustmentTrigger.PROFIT_THRESHOLD:
            state = self._require_engine().get_trading_state()
            investment = Decimal(str(self._config.investment.total_investment))
            profit_percent = state.total_pnl / investment * 100
            if profit_percent >= Decimal(str(adjustment.profit_threshold)):
                logger.info(f"Profit-based grid adjustment triggered: {profit_percent:.2f}%")
                return True
            return False

        return False

    async def regenerate_grid(self, reason: str = "manual") -> ExecutionResult:
        """Regenerate the grid around the current price, outside a cycle."""
        self._require_engine()
        async with self._cycle_lock:
            return await self._regenerate(reason)

    async def _safe_regenerate(self, report: CycleReport, reason: str) -> None:
        try:
            await self._regenerate(reason)
            report.grid_regenerated = True
        except Exception as e:
            self._record_error(report, "Grid regeneration failed", e)

    async def _regenerate(self, reason: str) -> ExecutionResult:
        """
        Cancel all orders and rebuild the grid around the current price.

        A failure leaves the regeneration pending for the next cycle.
        """
        engine = self._engine
        logger.info(f"Regenerating grid ({reason}) around {engine.current_price}")
        self._pending_regeneration = True

        cancel_result = await engine.cancel_all_orders()
        self._volatility = await self._fetch_volatility()

        price = engine.current_price
        levels = self._build_grid(price, self._volatility)
        engine.load_grid(levels)
        result = await engine.initialize()

        self._pending_regeneration = False
        self._regeneration_count += 1
        self._event_bus.publish(
            EventType.GRID_REGENERATED,
            EventSeverity.INFO,
            f"Grid regenerated ({reason}) around {engine.current_price}",
            {
                "reason": reason,
                "price": str(engine.current_price),
                "levels": len(levels),
                "canceled": cancel_result.orders_canceled,
                "submitted": result.orders_submitted,
                "failed": result.orders_failed,
            },
        )
        return result

    def _build_grid(self, price: Decimal, volatility: Optional[float]) -> List[GridLevel]:
        """Generate, deactivate the nearest level, then attach orders."""
        levels = self._generator.generate(self._config.grid, price, volatility)
        levels = self._generator.update_grid_levels(levels, price)
        return self._allocator.generate_grid_orders(
            levels,
            price,
            self._config.order.allocation_method,
            self._config.investment.total_investment,
            self._config.investment.leverage,
            self._config.order.custom_allocation_pattern,
            OrderType(self._config.order.order_type),
        )

    async def _fetch_volatility(self) -> Optional[float]:
        """Historical volatility, or None if unavailable."""
        try:
            return await retry_async(
                self._gateway.calculate_historical_volatility,
                self._config.exchange.volatility_days,
                config=self._retry_config,
            )
        except Exception as e:
            logger.warning(f"Volatility unavailable, continuing without it: {e}")
            return None

    # === Drift Correction ===

    async def check_drift(self) -> DriftReport:
        """Compare held base balance with the grid's expectation and correct it."""
        engine = self._require_engine()
        async with self._cycle_lock:
            balance = await retry_async(
                self._gateway.get_account_balance,
                config=self._retry_config,
            )
            report = self._drift.evaluate(balance, engine.get_trading_state())

            if report.needs_correction:
                self._event_bus.publish(
                    EventType.DRIFT_DETECTED,
                    EventSeverity.WARNING,
                    str(report),
                    report.to_dict(),
                )
                await self._drift.correct(self._gateway, report, engine.current_price)

            return report

    # === Subscriptions ===

    def subscribe(
        self,
        callback: Callable[[Dict[str, Any]], None],
        event_types: Optional[Iterable[EventType]] = None,
        min_severity: EventSeverity = EventSeverity.INFO,
    ) -> EventSubscriber:
        """Register a callback for event dicts. Returns a handle for unsubscribe."""
        return self._event_bus.subscribe(CallbackSubscriber(callback, event_types, min_severity))

    def unsubscribe(self, subscriber: EventSubscriber) -> bool:
        return self._event_bus.unsubscribe(subscriber)

    # === Read Model ===

    def _require_engine(self) -> ReconciliationEngine:
        if self._engine is None or self._risk is None:
            raise RuntimeError("Controller not initialized")
        return self._engine

    def get_trading_state(self) -> TradingState:
        return self._require_engine().get_trading_state()

    def get_performance_snapshot(self) -> PerformanceSnapshot:
        return self._require_engine().get_performance_snapshot()

    def get_historical_trades(self) -> List[HistoricalTrade]:
        return self._require_engine().get_historical_trades()

    def get_risk_state(self) -> RiskState:
        self._require_engine()
        return self._risk.get_risk_state()

    def get_status_summary(self) -> Dict[str, Any]:
        """Headline numbers for a status panel."""
        state = self.get_trading_state()
        return {
            "state": self._state.name,
            "is_running": self.is_running,
            "current_price": str(state.current_price),
            "unrealized_pnl": str(state.unrealized_pnl),
            "realized_pnl": str(state.realized_pnl),
            "active_orders_count": len(state.active_orders),
            "filled_orders_count": len(state.filled_orders),
            "current_stop_loss": (
                str(state.current_stop_loss) if state.current_stop_loss is not None else None
            ),
            "cycle_count": self._cycle_count,
        }

    def get_grid_visualization(self) -> Dict[str, Any]:
        """Simplified grid for charting."""
        state = self.get_trading_state()
        return {
            "current_price": str(state.current_price),
            "grid_levels": [
                {
                    "index": level.index,
                    "price": str(level.price),
                    "is_active": level.is_active,
                    "has_buy_order": level.buy_order is not None,
                    "has_sell_order": level.sell_order is not None,
                }
                for level in state.grid_levels
            ],
            "active_orders": [
                {
                    "order_id": order.order_id,
                    "price": str(order.price),
                    "size": str(order.size),
                    "side": order.side.value,
                    "status": order.status.value,
                }
                for order in state.active_orders
            ],
        }

    def get_performance_summary(self, window: int = 100) -> Dict[str, Any]:
        """Current metrics plus P&L trend over the last `window` cycles."""
        snapshot = self.get_performance_snapshot()
        return {
            "current_metrics": snapshot.to_dict(),
            "pnl_trend": str(self._monitor.pnl_trend(window)),
            "historical_metrics": [
                s.to_dict() for s in self._monitor.get_metrics_history(window)
            ],
        }

    def get_trade_analysis(self) -> Dict[str, Any]:
        """Heatmap-based trade summary."""
        engine = self._require_engine()
        self._monitor.record_trades(engine.get_historical_trades())
        return self._monitor.trade_analysis(engine.get_trading_state().grid_levels)

    def get_stats(self) -> Dict[str, Any]:
        """Get comprehensive statistics."""
        stats: Dict[str, Any] = {
            "state": self._state.name,
            "cycle_count": self._cycle_count,
            "regeneration_count": self._regeneration_count,
            "stop_loss_count": self._stop_loss_count,
            "consecutive_failures": self._consecutive_failures,
            "drift_corrections": self._drift.corrections,
            "volatility": self._volatility,
            "events": self._event_bus.get_stats(),
            "performance": self._monitor.get_stats(),
        }

        if self._engine is not None:
            stats["engine"] = self._engine.get_stats()

        if self._risk is not None:
            stats["risk"] = self._risk.get_stats()

        return stats
