"""
Grid Module.

Grid construction and sizing:
- GridLevelGenerator: Compute level prices for a range and distribution
- AllocationEngine: Split capital across levels and create orders
- Data model: Order, GridLevel, TradingState, HistoricalTrade

Usage:
    from gridbot.grid import GridLevelGenerator, AllocationEngine

    generator = GridLevelGenerator()
    levels = generator.generate(config.grid, current_price, volatility)
    levels = generator.update_grid_levels(levels, current_price)

    allocator = AllocationEngine()
    levels = allocator.generate_grid_orders(
        levels,
        current_price,
        config.order.allocation_method,
        config.investment.total_investment,
        config.investment.leverage,
    )
"""

from .models import (
    Order,
    GridLevel,
    TradingState,
    HistoricalTrade,
)
from .grid_generator import GridLevelGenerator
from .allocation import (
    LevelAllocation,
    AllocationEngine,
)

__all__ = [
    # Models
    "Order",
    "GridLevel",
    "TradingState",
    "HistoricalTrade",
    # Generator
    "GridLevelGenerator",
    # Allocation
    "LevelAllocation",
    "AllocationEngine",
]
