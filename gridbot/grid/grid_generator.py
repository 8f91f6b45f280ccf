"""
Grid Level Generator.

Maps a price range and distribution method onto an ordered set of
grid levels:
- Linear (equal step)
- Arithmetic (step grows toward the upper bound)
- Geometric (equal percentage step)
- Volatility-based (levels cluster around the midpoint)
"""

import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from config.settings import DistributionMethod, GridConfig

from .models import GridLevel

logger = logging.getLogger(__name__)

ONE = Decimal("1")
TWO = Decimal("2")
HALF = Decimal("0.5")

# Auto-range without volatility: +/- 10%
DEFAULT_RANGE = Decimal("0.1")


class GridLevelGenerator:
    """
    Generates grid levels. Stateless and deterministic.

    Example:
        generator = GridLevelGenerator()
        levels = generator.generate(grid_config, Decimal("100"))
        levels = generator.update_grid_levels(levels, Decimal("100"))
    """

    def generate(
        self,
        config: GridConfig,
        current_price: Decimal,
        historical_volatility: Optional[float] = None,
    ) -> List[GridLevel]:
        """
        Generate grid levels for the configured range and distribution.

        A level is inactive only if its price equals current_price
        exactly. Run update_grid_levels afterwards to deactivate the
        nearest level.

        Args:
            config: Grid configuration (not mutated)
            current_price: Current market price
            historical_volatility: Annualized volatility as a fraction

        Returns:
            Levels in ascending price order, indexed 0..n-1
        """
        if current_price <= 0:
            raise ValueError(f"Current price must be positive, got {current_price}")

        lower, upper = self.resolve_bounds(config, current_price, historical_volatility)
        n = config.num_levels
        method = config.distribution

        if method == DistributionMethod.ARITHMETIC:
            prices = self.arithmetic_prices(lower, upper, n)
        elif method == DistributionMethod.GEOMETRIC:
            prices = self.geometric_prices(lower, upper, n)
        elif method == DistributionMethod.VOLATILITY_BASED:
            if historical_volatility is None:
                logger.warning("No volatility available, falling back to linear distribution")
                prices = self.linear_prices(lower, upper, n)
            else:
                prices = self.volatility_prices(lower, upper, n, historical_volatility)
        else:
            prices = self.linear_prices(lower, upper, n)

        levels = [
            GridLevel(index=i, price=price, is_active=price != current_price)
            for i, price in enumerate(prices)
        ]

        logger.info(
            f"Generated {len(levels)} {method.value} levels, "
            f"range={lower:.2f}-{upper:.2f}, price={current_price}"
        )
        return levels

    def update_grid_levels(
        self,
        levels: List[GridLevel],
        new_price: Decimal,
    ) -> List[GridLevel]:
        """
        Deactivate exactly the level nearest new_price.

        Ties resolve to the lowest index. Returns copies; the input is
        not modified.
        """
        if not levels:
            return []

        closest = 0
        best_distance = abs(levels[0].price - new_price)
        for position, level in enumerate(levels[1:], start=1):
            distance = abs(level.price - new_price)
            if distance < best_distance:
                closest = position
                best_distance = distance

        updated = []
        for position, level in enumerate(levels):
            updated.append(GridLevel(
                index=level.index,
                price=level.price,
                is_active=position != closest,
                buy_order=level.buy_order,
                sell_order=level.sell_order,
            ))
        return updated

    def resolve_bounds(
        self,
        config: GridConfig,
        current_price: Decimal,
        historical_volatility: Optional[float] = None,
    ) -> Tuple[Decimal, Decimal]:
        """
        Determine (lower, upper) for this generation.

        Explicit bounds are used when auto_range is off. Otherwise the
        range is current price +/- 10%, or +/- 2x volatility when known.
        """
        if config.has_explicit_bounds:
            return Decimal(str(config.lower_bound)), Decimal(str(config.upper_bound))

        if historical_volatility is not None:
            spread = TWO * Decimal(str(historical_volatility))
            lower = current_price * (ONE - spread)
            upper = current_price * (ONE + spread)
            if lower > 0 and upper > lower:
                return lower, upper
            logger.warning(
                f"Volatility {historical_volatility:.4f} too high for auto-range, "
                f"using +/-10%"
            )

        return current_price * (ONE - DEFAULT_RANGE), current_price * (ONE + DEFAULT_RANGE)

    # === Distributions ===

    @staticmethod
    def linear_prices(lower: Decimal, upper: Decimal, n: int) -> List[Decimal]:
        step = (upper - lower) / Decimal(n - 1)
        return [lower + step * Decimal(i) for i in range(n)]

    @staticmethod
    def arithmetic_prices(lower: Decimal, upper: Decimal, n: int) -> List[Decimal]:
        """Level i+1 = level i + d*(i+1), with d = 2*(upper-lower)/(n*(n-1))."""
        difference = TWO * (upper - lower) / Decimal(n * (n - 1))
        prices = [lower]
        for i in range(n - 1):
            prices.append(prices[-1] + difference * Decimal(i + 1))
        return prices

    @staticmethod
    def geometric_prices(lower: Decimal, upper: Decimal, n: int) -> List[Decimal]:
        ratio = (upper / lower) ** (ONE / Decimal(n - 1))
        return [lower * ratio ** i for i in range(n)]

    @staticmethod
    def volatility_prices(
        lower: Decimal,
        upper: Decimal,
        n: int,
        volatility: float,
    ) -> List[Decimal]:
        """
        Bell-shaped spacing: dense near the midpoint, wider at the edges.

        The piecewise construction is not monotonic, so the result is
        sorted.
        """
        vol = Decimal(str(volatility))
        mid = (upper + lower) / TWO
        half_range = (upper - lower) / TWO
        last = Decimal(n - 1)

        prices = []
        for i in range(n):
            x = Decimal(4 * i) / last - TWO
            factor = ONE - (-(x * x) / TWO).exp() * vol
            position = Decimal(i) / last
            if position < HALF:
                price = mid - half_range * (TWO * position) * factor
            else:
                price = mid + half_range * (TWO * (position - HALF)) * factor
            prices.append(price)

        return sorted(prices)
