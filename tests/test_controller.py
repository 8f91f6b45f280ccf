"""
Tests for GridController module.

Tests:
- Initialization and lifecycle
- Trading cycle sequencing
- Stop-loss handling
- Reversal regeneration
- Grid adjustment triggers
- Drift correction
- Subscriptions and read model
"""

import asyncio
import pytest
from decimal import Decimal
from unittest.mock import Mock

from gridbot.core import (
    ControllerState,
    CycleReport,
    EventBus,
    EventSeverity,
    EventType,
    GridController,
)
from gridbot.exchange import OrderError, PaperExchangeGateway
from config.settings import (
    AdjustmentTrigger,
    BasicStopLossConfig,
    BotConfig,
    ConfigurationError,
    DynamicStopLossConfig,
    EngineConfig,
    GridAdjustmentConfig,
    GridConfig,
    InvestmentConfig,
    PositionConfig,
    RiskConfig,
    TrailingStopLossConfig,
)


def make_config(
    stop_percentage=20.0,
    adjustment=None,
    max_consecutive_failures=5,
):
    """Five-level grid 80..120, fixed stops, no retries."""
    return BotConfig(
        investment=InvestmentConfig(total_investment=1000.0),
        grid=GridConfig(num_levels=5, lower_bound=80.0, upper_bound=120.0, auto_range=False),
        risk=RiskConfig(
            basic_stop_loss=BasicStopLossConfig(percentage=stop_percentage),
            dynamic_stop_loss=DynamicStopLossConfig(enabled=False),
            trailing_stop_loss=TrailingStopLossConfig(enabled=False),
        ),
        position=PositionConfig(
            drift_check_interval=3600.0,
            grid_adjustment=adjustment or GridAdjustmentConfig(enabled=False),
        ),
        engine=EngineConfig(
            cycle_interval=0.05,
            shutdown_timeout=1.0,
            max_retries=0,
            retry_base_delay=0.0,
            max_consecutive_failures=max_consecutive_failures,
        ),
    )


@pytest.fixture
def gateway():
    return PaperExchangeGateway(initial_price=Decimal("100"))


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def controller(gateway, event_bus):
    return GridController(make_config(), gateway, event_bus)


class TestControllerCreation:
    """Tests for GridController creation."""

    def test_creation(self, controller):
        """Test controller starts in CREATED state."""
        assert controller.state == ControllerState.CREATED
        assert controller.is_running is False
        assert controller.last_report is None

    def test_invalid_config_rejected(self, gateway):
        """Test configuration is validated up front."""
        config = make_config()
        config.grid.num_levels = 2

        with pytest.raises(ConfigurationError, match="at least 5"):
            GridController(config, gateway)

    def test_default_event_bus_logs(self, gateway):
        """Test a logging subscriber is attached by default."""
        controller = GridController(make_config(), gateway)

        assert controller.event_bus.subscriber_count == 1

    @pytest.mark.asyncio
    async def test_run_cycle_requires_initialize(self, controller):
        """Test cycles need an initialized controller."""
        with pytest.raises(RuntimeError, match="not initialized"):
            await controller.run_cycle()


class TestInitialization:
    """Tests for controller initialization."""

    @pytest.mark.asyncio
    async def test_initialize_places_grid(self, controller, gateway):
        """Test initialize builds the grid and places orders."""
        result = await controller.initialize()

        assert controller.state == ControllerState.READY
        assert result.orders_submitted == 4
        assert len(gateway.open_orders) == 4

        state = controller.get_trading_state()
        assert len(state.grid_levels) == 5
        assert state.grid_levels[2].is_active is False
        assert state.current_stop_loss == Decimal("80")

    @pytest.mark.asyncio
    async def test_initialize_twice_rejected(self, controller):
        """Test initialize is not allowed from READY."""
        await controller.initialize()

        with pytest.raises(RuntimeError, match="Cannot initialize"):
            await controller.initialize()

    @pytest.mark.asyncio
    async def test_initialize_failure_sets_error(self, controller, gateway):
        """Test a missing price puts the controller in ERROR."""
        gateway.fail_next("get_current_price", OrderError("down"))

        with pytest.raises(OrderError):
            await controller.initialize()

        assert controller.state == ControllerState.ERROR

    @pytest.mark.asyncio
    async def test_volatility_failure_tolerated(self, controller, gateway):
        """Test missing volatility does not block initialization."""
        gateway.fail_next("calculate_historical_volatility", OrderError("no candles"))

        await controller.initialize()

        assert controller.state == ControllerState.READY
        assert controller.get_stats()["volatility"] is None


class TestTradingCycle:
    """Tests for run_cycle."""

    @pytest.mark.asyncio
    async def test_quiet_cycle(self, controller):
        """Test a cycle with no fills succeeds and updates the stop."""
        await controller.initialize()

        report = await controller.run_cycle()

        assert isinstance(report, CycleReport)
        assert report.success is True
        assert report.cycle_number == 1
        assert report.price == Decimal("100")
        assert report.stop_loss_price == Decimal("80")
        assert report.stop_loss_triggered is False
        assert controller.last_report is report

    @pytest.mark.asyncio
    async def test_fill_processed(self, controller, gateway, event_bus):
        """Test fills flow through the cycle."""
        await controller.initialize()
        gateway.set_price(Decimal("89"))

        report = await controller.run_cycle()

        assert report.reconciliation.orders_filled == 1
        assert len(controller.get_historical_trades()) == 1
        assert len(event_bus.get_recent(event_type=EventType.ORDER_FILLED)) == 1
        assert report.stop_loss_price == Decimal("71.2")

    @pytest.mark.asyncio
    async def test_cycle_completed_event(self, controller, event_bus):
        """Test each cycle publishes report and snapshot payloads."""
        await controller.initialize()
        await controller.run_cycle()

        events = event_bus.get_recent(event_type=EventType.CYCLE_COMPLETED)
        assert len(events) == 1
        assert events[0].payload["report"]["cycle_number"] == 1
        assert "grid_utilization" in events[0].payload["snapshot"]

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, controller):
        """Test each cycle appends a snapshot to history."""
        await controller.initialize()
        await controller.run_cycle()
        await controller.run_cycle()

        assert len(controller.monitor.get_metrics_history()) == 2

    @pytest.mark.asyncio
    async def test_price_failure_recorded(self, controller, gateway):
        """Test a failed price refresh is reported, not raised."""
        await controller.initialize()
        gateway.fail_next("get_current_price", OrderError("down"))

        report = await controller.run_cycle()

        assert report.success is False
        assert report.price == Decimal("100")
        assert controller.get_stats()["consecutive_failures"] == 1

    @pytest.mark.asyncio
    async def test_repeated_price_failures_escalate(self, gateway, event_bus):
        """Test consecutive failures raise a critical exchange event."""
        controller = GridController(make_config(max_consecutive_failures=2), gateway, event_bus)
        await controller.initialize()

        for _ in range(2):
            gateway.fail_next("get_current_price", OrderError("down"))
            await controller.run_cycle()

        critical = event_bus.get_recent(
            event_type=EventType.EXCHANGE_ERROR,
            min_severity=EventSeverity.CRITICAL,
        )
        assert len(critical) == 1

    @pytest.mark.asyncio
    async def test_failure_counter_resets(self, controller, gateway):
        """Test a good refresh resets the failure count."""
        await controller.initialize()
        gateway.fail_next("get_current_price", OrderError("down"))
        await controller.run_cycle()

        await controller.run_cycle()

        assert controller.get_stats()["consecutive_failures"] == 0


class TestStopLoss:
    """Tests for stop-loss handling in the cycle."""

    @pytest.fixture
    def controller(self, gateway, event_bus):
        return GridController(make_config(stop_percentage=5.0), gateway, event_bus)

    @pytest.mark.asyncio
    async def test_hard_stop_closes_grid(self, controller, gateway, event_bus):
        """Test a breach cancels every order and deactivates the grid."""
        await controller.initialize()
        gateway.set_price(Decimal("94"))

        report = await controller.run_cycle()

        assert report.stop_loss_triggered is True
        assert report.stop_loss_price == Decimal("95")
        assert gateway.open_orders == []

        state = controller.get_trading_state()
        assert state.active_orders == []
        assert all(not level.is_active for level in state.grid_levels)

        events = event_bus.get_recent(event_type=EventType.STOP_LOSS_TRIGGERED)
        assert len(events) == 1
        assert events[0].severity == EventSeverity.CRITICAL

    @pytest.mark.asyncio
    async def test_closed_grid_not_stopped_again(self, controller, gateway, event_bus):
        """Test a closed grid does not re-execute the stop."""
        await controller.initialize()
        gateway.set_price(Decimal("94"))
        await controller.run_cycle()

        report = await controller.run_cycle()

        assert report.stop_loss_triggered is False
        assert len(event_bus.get_recent(event_type=EventType.STOP_LOSS_TRIGGERED)) == 1
        assert controller.get_stats()["stop_loss_count"] == 1

    @pytest.mark.asyncio
    async def test_stop_follows_price_after_breach(self, controller, gateway):
        """Test the stop is recomputed from the breach price."""
        await controller.initialize()
        gateway.set_price(Decimal("94"))

        await controller.run_cycle()

        assert controller.get_risk_state().stop_loss_price == Decimal("89.3")
        assert controller.get_trading_state().current_stop_loss == Decimal("89.3")

        report = await controller.run_cycle()

        assert report.stop_loss_price == Decimal("89.3")

    @pytest.mark.asyncio
    async def test_adjustment_rebuilds_closed_grid(self, gateway, event_bus):
        """Test the adjustment trigger restarts trading after a stop."""
        adjustment = GridAdjustmentConfig(
            trigger=AdjustmentTrigger.TIME_BASED,
            time_interval=0.0,
        )
        controller = GridController(
            make_config(stop_percentage=5.0, adjustment=adjustment), gateway, event_bus
        )
        await controller.initialize()
        gateway.set_price(Decimal("94"))

        first = await controller.run_cycle()
        second = await controller.run_cycle()

        assert first.stop_loss_triggered is True
        assert first.grid_regenerated is False
        assert second.stop_loss_triggered is False
        assert second.grid_regenerated is True
        assert len(gateway.open_orders) == 4
        state = controller.get_trading_state()
        assert len(state.active_orders) == 4
        assert any(level.is_active for level in state.grid_levels)


class TestReversal:
    """Tests for reversal-driven regeneration."""

    @pytest.fixture
    def controller(self, gateway, event_bus):
        config = make_config()
        config.risk.reversal_short_window = 2
        config.risk.reversal_medium_window = 4
        config.risk.reversal_momentum_window = 3
        config.risk.reversal_momentum_threshold = 0.02
        return GridController(config, gateway, event_bus)

    @pytest.mark.asyncio
    async def test_reversal_regenerates_grid(self, controller, gateway, event_bus):
        """Test a rally that turns down rebuilds the grid."""
        await controller.initialize()

        # Window after each cycle: [100, 100], [100, 100, 109], [100, 100, 109, 107]
        reports = []
        for price in ("100", "109", "107"):
            gateway.set_price(Decimal(price))
            reports.append(await controller.run_cycle())

        assert [r.reversal_detected for r in reports] == [False, False, True]
        assert reports[-1].grid_regenerated is True
        assert reports[-1].stop_loss_triggered is False

        assert len(event_bus.get_recent(event_type=EventType.REVERSAL_DETECTED)) == 1
        regenerated = event_bus.get_recent(event_type=EventType.GRID_REGENERATED)
        assert len(regenerated) == 1
        assert regenerated[0].payload["reason"] == "reversal"
        assert controller.get_stats()["regeneration_count"] == 1
        assert len(gateway.open_orders) == 4

    @pytest.mark.asyncio
    async def test_steady_rally_not_a_reversal(self, controller, gateway, event_bus):
        """Test momentum in one direction does not regenerate."""
        await controller.initialize()

        for price in ("102", "105", "108"):
            gateway.set_price(Decimal(price))
            report = await controller.run_cycle()
            assert report.reversal_detected is False

        assert event_bus.get_recent(event_type=EventType.REVERSAL_DETECTED) == []
        assert controller.get_stats()["regeneration_count"] == 0


class TestGridAdjustment:
    """Tests for adjustment triggers and regeneration."""

    @pytest.mark.asyncio
    async def test_disabled_never_adjusts(self, controller):
        """Test adjustment is off when disabled."""
        await controller.initialize()

        assert controller.should_adjust_grid() is False

    @pytest.mark.asyncio
    async def test_time_trigger(self, gateway, event_bus):
        """Test the time trigger fires after the interval."""
        adjustment = GridAdjustmentConfig(
            trigger=AdjustmentTrigger.TIME_BASED,
            time_interval=0.0,
        )
        controller = GridController(make_config(adjustment=adjustment), gateway, event_bus)
        await controller.initialize()

        report = await controller.run_cycle()

        assert report.adjustment_triggered is True
        assert report.grid_regenerated is True
        assert controller.get_stats()["regeneration_count"] == 1
        assert len(event_bus.get_recent(event_type=EventType.GRID_REGENERATED)) == 1
        assert len(gateway.open_orders) == 4

    @pytest.mark.asyncio
    async def test_time_trigger_waits(self, gateway, event_bus):
        """Test the time trigger does not fire early."""
        adjustment = GridAdjustmentConfig(
            trigger=AdjustmentTrigger.TIME_BASED,
            time_interval=3600.0,
        )
        controller = GridController(make_config(adjustment=adjustment), gateway, event_bus)
        await controller.initialize()

        assert controller.should_adjust_grid() is False

    @pytest.mark.asyncio
    async def test_volatility_trigger(self, gateway, event_bus):
        """Test a wide recent range regenerates the grid."""
        adjustment = GridAdjustmentConfig(
            trigger=AdjustmentTrigger.VOLATILITY_BASED,
            volatility_threshold=5.0,
            volatility_window=10,
        )
        controller = GridController(make_config(adjustment=adjustment), gateway, event_bus)
        await controller.initialize()
        assert controller.should_adjust_grid() is False

        gateway.set_price(Decimal("106"))
        report = await controller.run_cycle()

        assert report.adjustment_triggered is True
        state = controller.get_trading_state()
        assert state.current_price == Decimal("106")

    @pytest.mark.asyncio
    async def test_profit_trigger(self, gateway, event_bus):
        """Test total P&L over the investment threshold fires."""
        adjustment = GridAdjustmentConfig(
            trigger=AdjustmentTrigger.PROFIT_THRESHOLD,
            profit_threshold=2.0,
        )
        controller = GridController(make_config(adjustment=adjustment), gateway, event_bus)
        await controller.initialize()

        # Resting orders are marked to market at about 123.7 on 1000 invested
        assert controller.should_adjust_grid() is True

        controller.config.position.grid_adjustment.profit_threshold = 50.0
        assert controller.should_adjust_grid() is False

    @pytest.mark.asyncio
    async def test_manual_regeneration(self, controller, gateway):
        """Test regenerate_grid cancels and replaces every order."""
        await controller.initialize()
        old_ids = {o.exchange_order_id for o in gateway.open_orders}

        result = await controller.regenerate_grid()

        assert result.orders_submitted == 4
        new_ids = {o.exchange_order_id for o in gateway.open_orders}
        assert new_ids.isdisjoint(old_ids)

    @pytest.mark.asyncio
    async def test_failed_regeneration_retried_next_cycle(self, controller, gateway):
        """Test a failed regeneration stays pending."""
        await controller.initialize()
        controller._engine.load_grid = Mock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError, match="boom"):
            await controller.regenerate_grid()

        assert controller._pending_regeneration is True


class TestReconfigure:
    """Tests for reconfiguration."""

    @pytest.mark.asyncio
    async def test_reconfigure_regenerates_next_cycle(self, controller, gateway):
        """Test a new config takes effect on the next cycle."""
        await controller.initialize()
        config = make_config()
        config.grid.num_levels = 7

        controller.reconfigure(config)
        report = await controller.run_cycle()

        assert report.grid_regenerated is True
        assert len(controller.get_trading_state().grid_levels) == 7

    @pytest.mark.asyncio
    async def test_reconfigure_rejects_invalid(self, controller):
        """Test invalid configs are refused."""
        config = make_config()
        config.investment.total_investment = 0

        with pytest.raises(ConfigurationError):
            controller.reconfigure(config)

    @pytest.mark.asyncio
    async def test_reconfigure_refused_while_running(self, controller):
        """Test reconfigure needs a stopped session."""
        await controller.initialize()
        await controller.start()

        try:
            with pytest.raises(RuntimeError, match="running"):
                controller.reconfigure(make_config())
        finally:
            await controller.stop()


class TestDriftCorrection:
    """Tests for check_drift."""

    @pytest.mark.asyncio
    async def test_drift_corrected(self, controller, gateway, event_bus):
        """Test missing base is bought back."""
        await controller.initialize()

        report = await controller.check_drift()

        assert report.needs_correction is True
        assert controller.get_stats()["drift_corrections"] == 1
        assert len(event_bus.get_recent(event_type=EventType.DRIFT_DETECTED)) == 1

        balance = await gateway.get_account_balance()
        assert balance.base == report.expected_base


class TestLifecycle:
    """Tests for start and stop."""

    @pytest.mark.asyncio
    async def test_start_requires_ready(self, controller):
        """Test start refuses an uninitialized controller."""
        with pytest.raises(RuntimeError, match="must be READY"):
            await controller.start()

    @pytest.mark.asyncio
    async def test_start_and_stop(self, controller, gateway, event_bus):
        """Test the session runs cycles and shuts down cleanly."""
        await controller.initialize()
        await controller.start()
        assert controller.state == ControllerState.RUNNING

        await asyncio.sleep(0.2)
        await controller.stop()

        assert controller.state == ControllerState.STOPPED
        assert controller.get_stats()["cycle_count"] >= 1
        assert gateway.open_orders == []
        assert len(event_bus.get_recent(event_type=EventType.SESSION_STARTED)) == 1
        assert len(event_bus.get_recent(event_type=EventType.SESSION_STOPPED)) == 1

    @pytest.mark.asyncio
    async def test_stop_idempotent(self, controller, event_bus):
        """Test stopping twice is harmless."""
        await controller.initialize()
        await controller.start()

        await controller.stop()
        await controller.stop()

        assert len(event_bus.get_recent(event_type=EventType.SESSION_STOPPED)) == 1

    @pytest.mark.asyncio
    async def test_reinitialize_after_stop(self, controller):
        """Test a stopped controller can start a new session."""
        await controller.initialize()
        await controller.stop()

        await controller.initialize()

        assert controller.state == ControllerState.READY


class TestSubscriptionsAndReadModel:
    """Tests for callbacks and read-only views."""

    @pytest.mark.asyncio
    async def test_subscribe_callback(self, controller):
        """Test callbacks receive event dicts."""
        received = []
        controller.subscribe(received.append, [EventType.CYCLE_COMPLETED])
        await controller.initialize()

        await controller.run_cycle()

        assert len(received) == 1
        assert received[0]["event_type"] == "CYCLE_COMPLETED"

    @pytest.mark.asyncio
    async def test_unsubscribe(self, controller):
        """Test unsubscribed callbacks stop receiving events."""
        received = []
        handle = controller.subscribe(received.append)
        assert controller.unsubscribe(handle) is True
        await controller.initialize()

        await controller.run_cycle()

        assert received == []

    @pytest.mark.asyncio
    async def test_grid_visualization(self, controller):
        """Test the grid view lists levels and orders."""
        await controller.initialize()

        view = controller.get_grid_visualization()

        assert len(view["grid_levels"]) == 5
        assert view["grid_levels"][0]["has_buy_order"] is True
        assert view["grid_levels"][4]["has_sell_order"] is True
        assert len(view["active_orders"]) == 4

    @pytest.mark.asyncio
    async def test_status_and_performance(self, controller):
        """Test summaries are available after a cycle."""
        await controller.initialize()
        await controller.run_cycle()

        status = controller.get_status_summary()
        assert status["state"] == "READY"
        assert status["active_orders_count"] == 4

        performance = controller.get_performance_summary()
        assert len(performance["historical_metrics"]) == 1

        analysis = controller.get_trade_analysis()
        assert analysis["trade_count"] == 0

        assert controller.get_risk_state().stop_loss_price == Decimal("80")
        assert "engine" in controller.get_stats()
