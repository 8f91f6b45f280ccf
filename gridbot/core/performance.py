"""
Performance tracking.

Maintains:
- PerformanceSnapshot derived each cycle from trading state and trade ledger
- Bounded metrics and trade history (in memory only)
- Profitability heatmap by grid price
- Trade frequency and stop-loss effectiveness reports
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Deque, Dict, List, Optional, Sequence

from gridbot.grid.models import GridLevel, HistoricalTrade, TradingState

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class PerformanceSnapshot:
    """Point-in-time performance aggregate. Never mutated."""

    unrealized_pnl: Decimal
    realized_pnl: Decimal
    grid_utilization: float  # Percent of levels active
    risk_exposure: Decimal  # Sum of price * size over active orders
    current_stop_loss: Optional[Decimal]
    trade_count: int
    success_rate: float  # Percent of trades with positive profit
    timestamp: float = field(default_factory=time.time)

    @property
    def total_pnl(self) -> Decimal:
        return self.realized_pnl + self.unrealized_pnl

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "unrealized_pnl": str(self.unrealized_pnl),
            "realized_pnl": str(self.realized_pnl),
            "total_pnl": str(self.total_pnl),
            "grid_utilization": self.grid_utilization,
            "risk_exposure": str(self.risk_exposure),
            "current_stop_loss": (
                str(self.current_stop_loss) if self.current_stop_loss is not None else None
            ),
            "trade_count": self.trade_count,
            "success_rate": self.success_rate,
            "timestamp": self.timestamp,
        }


def build_snapshot(
    state: TradingState,
    trades: Sequence[HistoricalTrade],
) -> PerformanceSnapshot:
    """
    Derive a PerformanceSnapshot.

    Args:
        state: Current trading state
        trades: Full trade ledger

    Returns:
        Fresh snapshot
    """
    total_levels = len(state.grid_levels)
    active_levels = sum(1 for level in state.grid_levels if level.is_active)
    utilization = (active_levels / total_levels * 100) if total_levels else 0.0

    exposure = sum((order.notional for order in state.active_orders), ZERO)

    trade_count = len(trades)
    profitable = sum(1 for trade in trades if trade.profit > 0)
    success_rate = (profitable / trade_count * 100) if trade_count else 0.0

    return PerformanceSnapshot(
        unrealized_pnl=state.unrealized_pnl,
        realized_pnl=state.realized_pnl,
        grid_utilization=utilization,
        risk_exposure=exposure,
        current_stop_loss=state.current_stop_loss,
        trade_count=trade_count,
        success_rate=success_rate,
    )


class PerformanceMonitor:
    """
    In-memory performance history and analysis.

    Usage:
        monitor = PerformanceMonitor(max_history=1000)
        monitor.record(snapshot)
        monitor.record_trades(engine.get_historical_trades())

        heatmap = monitor.profitability_heatmap(state.grid_levels)
        report = monitor.stop_loss_report()
    """

    def __init__(self, max_history: int = 1000):
        self._max_history = max_history
        self._metrics: Deque[PerformanceSnapshot] = deque(maxlen=max_history)
        self._trades: List[HistoricalTrade] = []

    # === Recording ===

    def record(self, snapshot: PerformanceSnapshot) -> None:
        """Append a snapshot to the bounded history."""
        self._metrics.append(snapshot)

    def record_trades(self, ledger: Sequence[HistoricalTrade]) -> None:
        """Replace trade history with the tail of the ledger."""
        self._trades = list(ledger)[-self._max_history:]

    def get_metrics_history(self, limit: Optional[int] = None) -> List[PerformanceSnapshot]:
        history = list(self._metrics)
        if limit is not None:
            history = history[-limit:]
        return history

    def get_trades(self) -> List[HistoricalTrade]:
        return list(self._trades)

    @property
    def latest(self) -> Optional[PerformanceSnapshot]:
        return self._metrics[-1] if self._metrics else None

    # === Analysis ===

    def pnl_trend(self, window: int = 100) -> Decimal:
        """
        Change in total P&L across the last `window` snapshots.

        Returns 0 with fewer than two snapshots.
        """
        recent = self.get_metrics_history(window)
        if len(recent) < 2:
            return ZERO
        return recent[-1].total_pnl - recent[0].total_pnl

    def profitability_heatmap(self, levels: Sequence[GridLevel]) -> List[Dict[str, Any]]:
        """
        Trade count and profit per grid price, sorted by price.

        Every level appears, even with no trades. Trades at prices
        that are no longer on the grid get their own rows.
        """
        buckets: Dict[Decimal, Dict[str, Any]] = {
            level.price: {"count": 0, "profit": ZERO} for level in levels
        }
        for trade in self._trades:
            bucket = buckets.setdefault(trade.price, {"count": 0, "profit": ZERO})
            bucket["count"] += 1
            bucket["profit"] += trade.profit

        rows = []
        for price in sorted(buckets):
            count = buckets[price]["count"]
            profit = buckets[price]["profit"]
            rows.append({
                "price": price,
                "trade_count": count,
                "profit": profit,
                "profit_per_trade": profit / count if count else ZERO,
            })
        return rows

    def trade_frequency_stats(self) -> Dict[str, float]:
        """Trades per hour/day and average seconds between trades."""
        if not self._trades:
            return {
                "trades_per_hour": 0.0,
                "trades_per_day": 0.0,
                "average_seconds_between_trades": 0.0,
                "total_trades": 0,
            }

        timestamps = sorted(trade.timestamp for trade in self._trades)
        span_hours = (timestamps[-1] - timestamps[0]) / 3600
        span_days = span_hours / 24

        gaps = [b - a for a, b in zip(timestamps, timestamps[1:])]
        average_gap = sum(gaps) / len(gaps) if gaps else 0.0

        return {
            "trades_per_hour": len(timestamps) / span_hours if span_hours > 0 else 0.0,
            "trades_per_day": len(timestamps) / span_days if span_days > 0 else 0.0,
            "average_seconds_between_trades": average_gap,
            "total_trades": len(timestamps),
        }

    def stop_loss_report(self) -> Dict[str, Any]:
        """
        Losing trades versus the rest.

        Effectiveness is |profit / loss|, or 0 when nothing lost.
        """
        losing = [trade for trade in self._trades if trade.profit < 0]
        winning = [trade for trade in self._trades if trade.profit >= 0]

        total_loss = sum((trade.profit for trade in losing), ZERO)
        total_profit = sum((trade.profit for trade in winning), ZERO)

        return {
            "losing_trade_count": len(losing),
            "non_losing_trade_count": len(winning),
            "total_loss": total_loss,
            "total_profit": total_profit,
            "net_pnl": total_profit + total_loss,
            "effectiveness": abs(total_profit / total_loss) if total_loss != 0 else ZERO,
        }

    def trade_analysis(self, levels: Sequence[GridLevel]) -> Dict[str, Any]:
        """Dashboard-style trade summary."""
        heatmap = self.profitability_heatmap(levels)
        top_levels = sorted(heatmap, key=lambda row: row["profit"], reverse=True)[:5]

        return {
            "trade_count": len(self._trades),
            "profitable_levels": sum(1 for row in heatmap if row["profit"] > 0),
            "unprofitable_levels": sum(1 for row in heatmap if row["profit"] <= 0),
            "most_profitable_levels": top_levels,
            "trade_frequency": self.trade_frequency_stats(),
            "stop_loss_report": self.stop_loss_report(),
            "recent_trades": [trade.to_dict() for trade in self._trades[-10:]],
        }

    def get_stats(self) -> Dict[str, Any]:
        return {
            "metrics_recorded": len(self._metrics),
            "trades_tracked": len(self._trades),
            "pnl_trend": str(self.pnl_trend()),
        }
