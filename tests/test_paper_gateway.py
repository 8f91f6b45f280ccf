"""
Tests for the paper trading gateway.

Tests:
- Order placement, matching and settlement
- Cancellation rules
- Balance enforcement
- Seeded random walk and volatility
- Fault injection
"""

import pytest
from decimal import Decimal

from config.settings import ExchangeConfig
from gridbot.exchange import (
    ExchangeError,
    InsufficientFundsError,
    NetworkError,
    OrderError,
    OrderNotFoundError,
    OrderSide,
    OrderStatus,
    OrderType,
    PaperExchangeGateway,
)


@pytest.fixture
def gateway():
    return PaperExchangeGateway(
        initial_price=Decimal("100"),
        base_balance=Decimal("0"),
        quote_balance=Decimal("1000"),
    )


class TestOrders:
    """Tests for order placement and fills."""

    @pytest.mark.asyncio
    async def test_limit_order_rests(self, gateway):
        """Test an uncrossed limit order stays pending."""
        order_id = await gateway.place_order(Decimal("95"), Decimal("1"), OrderSide.BUY)

        assert await gateway.get_order_status(order_id) == OrderStatus.PENDING
        assert len(gateway.open_orders) == 1

    @pytest.mark.asyncio
    async def test_price_cross_fills_and_settles(self, gateway):
        """Test moving through the limit fills the order."""
        order_id = await gateway.place_order(Decimal("95"), Decimal("1"), OrderSide.BUY)

        gateway.set_price(Decimal("94"))

        assert await gateway.get_order_status(order_id) == OrderStatus.FILLED
        balance = await gateway.get_account_balance()
        assert balance.base == Decimal("1")
        assert balance.quote == Decimal("905")

    @pytest.mark.asyncio
    async def test_sell_fills_on_rise(self, gateway):
        """Test sells fill when price rises to the limit."""
        order_id = await gateway.place_order(Decimal("105"), Decimal("2"), OrderSide.SELL)

        gateway.set_price(Decimal("105"))

        assert await gateway.get_order_status(order_id) == OrderStatus.FILLED
        balance = await gateway.get_account_balance()
        assert balance.base == Decimal("-2")
        assert balance.quote == Decimal("1210")

    @pytest.mark.asyncio
    async def test_market_order_settles_immediately(self, gateway):
        """Test market orders fill at the current price."""
        order_id = await gateway.place_order(
            Decimal("0"), Decimal("1"), OrderSide.BUY, OrderType.MARKET
        )

        assert await gateway.get_order_status(order_id) == OrderStatus.FILLED
        assert gateway.get_order(order_id).price == Decimal("100")

    @pytest.mark.asyncio
    async def test_marketable_limit_fills_on_placement(self, gateway):
        """Test a limit buy above market fills at once."""
        order_id = await gateway.place_order(Decimal("101"), Decimal("1"), OrderSide.BUY)

        assert await gateway.get_order_status(order_id) == OrderStatus.FILLED

    @pytest.mark.asyncio
    async def test_invalid_size_rejected(self, gateway):
        """Test non-positive sizes raise OrderError."""
        with pytest.raises(OrderError, match="size must be positive"):
            await gateway.place_order(Decimal("95"), Decimal("0"), OrderSide.BUY)

    @pytest.mark.asyncio
    async def test_fill_order_forces_fill(self, gateway):
        """Test fill_order settles at the limit price."""
        order_id = await gateway.place_order(Decimal("90"), Decimal("1"), OrderSide.BUY)

        gateway.fill_order(order_id)

        assert await gateway.get_order_status(order_id) == OrderStatus.FILLED
        assert (await gateway.get_account_balance()).quote == Decimal("910")


class TestCancellation:
    """Tests for order cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_pending(self, gateway):
        """Test canceling a resting order."""
        order_id = await gateway.place_order(Decimal("95"), Decimal("1"), OrderSide.BUY)

        await gateway.cancel_order(order_id)

        assert await gateway.get_order_status(order_id) == OrderStatus.CANCELED
        assert gateway.open_orders == []

    @pytest.mark.asyncio
    async def test_cancel_filled_raises(self, gateway):
        """Test filled orders cannot be canceled."""
        order_id = await gateway.place_order(Decimal("95"), Decimal("1"), OrderSide.BUY)
        gateway.set_price(Decimal("90"))

        with pytest.raises(OrderError, match="already filled"):
            await gateway.cancel_order(order_id)

    @pytest.mark.asyncio
    async def test_unknown_order(self, gateway):
        """Test unknown ids raise OrderNotFoundError."""
        with pytest.raises(OrderNotFoundError):
            await gateway.get_order_status("missing")
        with pytest.raises(OrderNotFoundError):
            await gateway.cancel_order("missing")


class TestBalanceEnforcement:
    """Tests for enforce_balance."""

    @pytest.mark.asyncio
    async def test_buy_exceeding_quote(self):
        """Test buys beyond the quote balance are rejected."""
        gateway = PaperExchangeGateway(
            initial_price=Decimal("100"),
            quote_balance=Decimal("50"),
            enforce_balance=True,
        )

        with pytest.raises(InsufficientFundsError):
            await gateway.place_order(Decimal("95"), Decimal("1"), OrderSide.BUY)

    @pytest.mark.asyncio
    async def test_sell_exceeding_base(self):
        """Test sells beyond the base balance are rejected."""
        gateway = PaperExchangeGateway(
            initial_price=Decimal("100"),
            base_balance=Decimal("0.5"),
            enforce_balance=True,
        )

        with pytest.raises(InsufficientFundsError):
            await gateway.place_order(Decimal("105"), Decimal("1"), OrderSide.SELL)


class TestMarketSimulation:
    """Tests for price path and volatility."""

    @pytest.mark.asyncio
    async def test_static_price(self, gateway):
        """Test zero volatility keeps the price fixed."""
        assert await gateway.get_current_price() == Decimal("100")
        assert await gateway.get_current_price() == Decimal("100")

    @pytest.mark.asyncio
    async def test_seeded_walk_reproducible(self):
        """Test the same seed yields the same path."""
        first = PaperExchangeGateway(initial_price=Decimal("100"), volatility=0.01, seed=7)
        second = PaperExchangeGateway(initial_price=Decimal("100"), volatility=0.01, seed=7)

        path_a = [await first.get_current_price() for _ in range(5)]
        path_b = [await second.get_current_price() for _ in range(5)]

        assert path_a == path_b
        assert len(set(path_a)) > 1

    @pytest.mark.asyncio
    async def test_volatility_of_constant_returns(self):
        """Test equal log returns have zero volatility."""
        gateway = PaperExchangeGateway(
            initial_price=Decimal("121"),
            daily_closes=[100.0, 110.0, 121.0],
        )

        assert await gateway.calculate_historical_volatility() == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_synthetic_history_ends_at_price(self):
        """Test generated history gives a positive volatility."""
        gateway = PaperExchangeGateway(initial_price=Decimal("100"), seed=1)

        assert await gateway.calculate_historical_volatility(days=30) > 0

    def test_invalid_initial_price(self):
        """Test non-positive prices are rejected."""
        with pytest.raises(ValueError, match="must be positive"):
            PaperExchangeGateway(initial_price=Decimal("0"))

    def test_from_config(self):
        """Test simulator settings come from ExchangeConfig."""
        config = ExchangeConfig(
            paper_initial_price=250.0,
            paper_base_balance=1.5,
            paper_quote_balance=500.0,
            paper_volatility=0.0,
            paper_seed=3,
        )

        gateway = PaperExchangeGateway.from_config(config)

        assert gateway.price == Decimal("250.0")


class TestFaultInjection:
    """Tests for fail_next."""

    @pytest.mark.asyncio
    async def test_default_error(self, gateway):
        """Test the default injected error is an ExchangeError."""
        gateway.fail_next("get_current_price")

        with pytest.raises(ExchangeError, match="Injected failure"):
            await gateway.get_current_price()
        assert await gateway.get_current_price() == Decimal("100")

    @pytest.mark.asyncio
    async def test_custom_errors_queue(self, gateway):
        """Test injected errors are raised in order, once each."""
        gateway.fail_next("get_account_balance", NetworkError("reset"))
        gateway.fail_next("get_account_balance", OrderError("nope"))

        with pytest.raises(NetworkError):
            await gateway.get_account_balance()
        with pytest.raises(OrderError):
            await gateway.get_account_balance()
        assert (await gateway.get_account_balance()).quote == Decimal("1000")
