"""
Drift correction.

Compares the base balance held on the exchange with the base amount the
grid expects (sum of pending buy sizes) and places a corrective limit
order when the two diverge past a threshold.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from gridbot.exchange.errors import RetryConfig, retry_async
from gridbot.exchange.gateway import Balance, ExchangeGateway, OrderSide, OrderType
from gridbot.grid.models import TradingState

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# Corrective orders sit just inside the market
SELL_PRICE_FACTOR = Decimal("0.999")
BUY_PRICE_FACTOR = Decimal("1.001")


@dataclass
class DriftReport:
    """Expected versus held base balance."""

    expected_base: Decimal
    actual_base: Decimal
    drift: Decimal  # actual - expected
    drift_ratio: float  # |drift| / expected, 0 when nothing is expected
    threshold: float

    @property
    def needs_correction(self) -> bool:
        return self.expected_base > 0 and self.drift_ratio > self.threshold

    def to_dict(self):
        return {
            "expected_base": str(self.expected_base),
            "actual_base": str(self.actual_base),
            "drift": str(self.drift),
            "drift_ratio": self.drift_ratio,
            "threshold": self.threshold,
            "needs_correction": self.needs_correction,
        }

    def __str__(self) -> str:
        status = "DRIFT" if self.needs_correction else "OK"
        return (
            f"DriftReport({status}: expected={self.expected_base}, "
            f"actual={self.actual_base}, ratio={self.drift_ratio:.4f})"
        )


class DriftCorrector:
    """
    Detects and corrects base-balance drift.

    Example:
        corrector = DriftCorrector(threshold=0.05)
        report = corrector.evaluate(await gateway.get_account_balance(), state)
        if report.needs_correction:
            await corrector.correct(gateway, report, state.current_price)
    """

    def __init__(self, threshold: float = 0.05, retry_config: Optional[RetryConfig] = None):
        self.threshold = threshold
        self._retry_config = retry_config or RetryConfig()
        self._corrections = 0

    def evaluate(self, balance: Balance, state: TradingState) -> DriftReport:
        """Compare held base with the sum of pending buy sizes."""
        expected = sum(
            (
                order.size
                for order in state.active_orders
                if order.side == OrderSide.BUY and order.is_pending
            ),
            ZERO,
        )
        drift = balance.base - expected
        ratio = float(abs(drift) / expected) if expected > 0 else 0.0

        report = DriftReport(
            expected_base=expected,
            actual_base=balance.base,
            drift=drift,
            drift_ratio=ratio,
            threshold=self.threshold,
        )
        if report.needs_correction:
            logger.warning(f"Position drift detected: {drift:.8f}")
        return report

    async def correct(
        self,
        gateway: ExchangeGateway,
        report: DriftReport,
        price: Decimal,
    ) -> Optional[str]:
        """
        Place the corrective order.

        Excess base is sold at price * 0.999, a deficit is bought at
        price * 1.001.

        Returns:
            Exchange order id, or None if no correction was needed

        Raises:
            ExchangeError: If the order cannot be placed
        """
        if not report.needs_correction or report.drift == 0:
            return None

        if report.drift > 0:
            side = OrderSide.SELL
            size = report.drift
            limit = price * SELL_PRICE_FACTOR
        else:
            side = OrderSide.BUY
            size = abs(report.drift)
            limit = price * BUY_PRICE_FACTOR

        logger.info(f"Correcting drift: {side.value} {size:.8f} @ {limit:.2f}")
        order_id = await retry_async(
            gateway.place_order,
            limit,
            size,
            side,
            OrderType.LIMIT,
            config=self._retry_config,
        )
        self._corrections += 1
        return order_id

    @property
    def corrections(self) -> int:
        return self._corrections
