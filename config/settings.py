"""
Configuration dataclasses for the grid trading engine.

All configuration parameters are defined here with sensible defaults.
Values can be overridden via config.yaml or environment variables.
Validation runs once at session start; any violation is fatal.
"""

from dataclasses import dataclass, field
from typing import List, Optional
from enum import Enum


class ConfigurationError(ValueError):
    """Invalid configuration. Raised before any trading session starts."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Invalid configuration: " + "; ".join(self.errors))


class DistributionMethod(Enum):
    """How grid level prices are spread across the range."""
    LINEAR = "linear"
    ARITHMETIC = "arithmetic"
    GEOMETRIC = "geometric"
    VOLATILITY_BASED = "volatility-based"


class AllocationMethod(Enum):
    """How capital is split across grid levels."""
    EQUAL = "equal"
    WEIGHTED = "weighted"
    CUSTOM = "custom"


class StopLossMethod(Enum):
    """Stop-loss execution modes."""
    HARD = "hard"  # Close everything
    SOFT = "soft"  # Close the farthest half of the grid


class AdjustmentTrigger(Enum):
    """Conditions that regenerate the grid around the current price."""
    TIME_BASED = "time-based"
    VOLATILITY_BASED = "volatility-based"
    PROFIT_THRESHOLD = "profit-threshold"


# ===========================================
# EXCHANGE CONFIGURATION
# ===========================================

@dataclass
class ExchangeConfig:
    """Exchange gateway selection and connection settings."""

    name: str = "paper"  # "paper" or a supported ccxt exchange id
    sandbox: bool = False
    volatility_days: int = 30  # Daily candles used for historical volatility

    # Credentials are only ever read from the environment
    api_key: str = ""
    api_secret: str = ""

    # Paper trading simulator
    paper_initial_price: float = 50000.0
    paper_base_balance: float = 0.0
    paper_quote_balance: float = 10000.0
    paper_volatility: float = 0.002  # Per-tick random walk std dev (0 = static price)
    paper_seed: Optional[int] = None


# ===========================================
# TRADING CONFIGURATION
# ===========================================

@dataclass
class InvestmentConfig:
    """Capital committed to the grid."""

    total_investment: float = 10000.0
    asset_pair: str = "BTC/USD"
    leverage: float = 1.0

    @property
    def base_currency(self) -> str:
        return self.asset_pair.split("/")[0]

    @property
    def quote_currency(self) -> str:
        parts = self.asset_pair.split("/")
        return parts[1] if len(parts) > 1 else ""


@dataclass
class GridConfig:
    """Grid level generation parameters."""

    num_levels: int = 20
    upper_bound: Optional[float] = None  # Derived from price when auto_range
    lower_bound: Optional[float] = None
    auto_range: bool = True
    distribution: DistributionMethod = DistributionMethod.LINEAR

    @property
    def has_explicit_bounds(self) -> bool:
        """Check if fixed bounds should be used instead of auto-range."""
        return (
            not self.auto_range
            and self.upper_bound is not None
            and self.lower_bound is not None
        )


@dataclass
class OrderConfig:
    """Order sizing and type."""

    allocation_method: AllocationMethod = AllocationMethod.EQUAL
    custom_allocation_pattern: Optional[List[float]] = None
    order_type: str = "limit"  # "limit" or "market"


# ===========================================
# RISK CONFIGURATION
# ===========================================

@dataclass
class BasicStopLossConfig:
    """Fixed-percentage stop below current price."""

    enabled: bool = True
    percentage: float = 5.0
    method: StopLossMethod = StopLossMethod.HARD


@dataclass
class DynamicStopLossConfig:
    """Stop percentage that widens as profit accumulates."""

    enabled: bool = True
    initial_risk_threshold: float = 3.0  # Percent
    expansion_factor: float = 0.5
    maximum_expansion: float = 10.0  # Percent


@dataclass
class TrailingStopLossConfig:
    """Ratcheting stop that follows price upward."""

    enabled: bool = True
    trailing_distance: float = 2.0  # Percent below price
    activation_threshold: float = 1.0  # Percent gain over initial price
    is_discrete: bool = False  # Ratchet in whole distance steps


@dataclass
class RiskConfig:
    """Stop-loss variants and reversal detection tuning."""

    basic_stop_loss: BasicStopLossConfig = field(default_factory=BasicStopLossConfig)
    dynamic_stop_loss: DynamicStopLossConfig = field(default_factory=DynamicStopLossConfig)
    trailing_stop_loss: TrailingStopLossConfig = field(default_factory=TrailingStopLossConfig)

    # Reversal heuristic
    reversal_short_window: int = 5
    reversal_medium_window: int = 10
    reversal_momentum_window: int = 3
    reversal_momentum_threshold: float = 0.02  # Fraction of medium-term average
    price_history_size: int = 500


# ===========================================
# POSITION MANAGEMENT CONFIGURATION
# ===========================================

@dataclass
class GridAdjustmentConfig:
    """When to regenerate the grid around the current price."""

    enabled: bool = True
    trigger: AdjustmentTrigger = AdjustmentTrigger.VOLATILITY_BASED
    time_interval: float = 3600.0  # Seconds
    volatility_threshold: float = 5.0  # Percent range over the window
    volatility_window: int = 10  # Number of recent prices
    profit_threshold: float = 2.0  # Percent of total investment


@dataclass
class PositionConfig:
    """Position management: drift correction and grid adjustment."""

    drift_correction_enabled: bool = True
    drift_threshold: float = 0.05  # 5% of expected base holdings
    drift_check_interval: float = 300.0  # Seconds
    grid_adjustment: GridAdjustmentConfig = field(default_factory=GridAdjustmentConfig)


# ===========================================
# ENGINE CONFIGURATION
# ===========================================

@dataclass
class EngineConfig:
    """Trading cycle timing and exchange call retry policy."""

    cycle_interval: float = 60.0  # Seconds between trading cycles
    shutdown_timeout: float = 10.0
    max_retries: int = 2  # Per gateway call
    retry_base_delay: float = 1.0
    max_consecutive_failures: int = 5  # Failed price refreshes before alerting
    metrics_history_size: int = 1000


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    file_path: Optional[str] = "logs/gridbot.log"
    max_size_mb: int = 10
    backup_count: int = 5


# ===========================================
# MAIN BOT CONFIGURATION
# ===========================================

@dataclass
class BotConfig:
    """Complete bot configuration combining all sub-configs."""

    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    investment: InvestmentConfig = field(default_factory=InvestmentConfig)
    grid: GridConfig = field(default_factory=GridConfig)
    order: OrderConfig = field(default_factory=OrderConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    position: PositionConfig = field(default_factory=PositionConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> List[str]:
        """
        Validate configuration and return list of errors.

        Returns:
            List of error messages (empty if valid)
        """
        errors = []

        # Grid shape
        if self.grid.num_levels < 5:
            errors.append(
                f"Number of grids must be at least 5, got {self.grid.num_levels}"
            )
        elif self.grid.num_levels > 200:
            errors.append(
                f"Number of grids cannot exceed 200, got {self.grid.num_levels}"
            )

        if not self.grid.auto_range:
            upper = self.grid.upper_bound
            lower = self.grid.lower_bound
            if upper is None or lower is None:
                errors.append("Explicit bounds required when auto_range is disabled")
            else:
                if upper <= lower:
                    errors.append(
                        f"Upper bound must be greater than lower bound ({upper} <= {lower})"
                    )
                if lower <= 0:
                    errors.append(f"Lower bound must be greater than 0, got {lower}")

        # Capital
        if self.investment.total_investment <= 0:
            errors.append("Total investment must be greater than 0")
        if self.investment.leverage < 1:
            errors.append(f"Leverage must be at least 1x, got {self.investment.leverage}")
        elif self.investment.leverage > 100:
            errors.append(f"Leverage cannot exceed 100x, got {self.investment.leverage}")

        # Orders
        if self.order.allocation_method == AllocationMethod.CUSTOM:
            pattern = self.order.custom_allocation_pattern
            if not pattern:
                errors.append("Custom allocation method requires a custom_allocation_pattern")
            elif len(pattern) != self.grid.num_levels:
                errors.append(
                    f"Custom allocation pattern length ({len(pattern)}) must match "
                    f"the number of grids ({self.grid.num_levels})"
                )
        if self.order.order_type not in ("limit", "market"):
            errors.append(f"Unsupported order type: {self.order.order_type}")

        # Stop-loss variants
        basic = self.risk.basic_stop_loss
        if basic.enabled and basic.percentage <= 0:
            errors.append("Stop loss percentage must be greater than 0")

        dynamic = self.risk.dynamic_stop_loss
        if dynamic.enabled:
            if dynamic.initial_risk_threshold <= 0:
                errors.append("Initial risk threshold must be greater than 0")
            if dynamic.expansion_factor <= 0:
                errors.append("Expansion factor must be greater than 0")
            if dynamic.maximum_expansion <= 0:
                errors.append("Maximum expansion must be greater than 0")

        trailing = self.risk.trailing_stop_loss
        if trailing.enabled:
            if trailing.trailing_distance <= 0:
                errors.append("Trailing distance must be greater than 0")
            if trailing.activation_threshold < 0:
                errors.append("Activation threshold must be greater than or equal to 0")

        risk = self.risk
        if risk.reversal_short_window < 1:
            errors.append(
                f"Reversal short window must be at least 1, got {risk.reversal_short_window}"
            )
        if risk.reversal_medium_window < 1:
            errors.append(
                f"Reversal medium window must be at least 1, got {risk.reversal_medium_window}"
            )
        if risk.reversal_momentum_window < 2:
            errors.append(
                f"Reversal momentum window must be at least 2, got {risk.reversal_momentum_window}"
            )
        if risk.price_history_size < max(
            risk.reversal_short_window,
            risk.reversal_medium_window,
            risk.reversal_momentum_window,
        ):
            errors.append(
                f"Price history size ({risk.price_history_size}) must cover "
                f"the largest reversal window"
            )

        # Engine
        if self.engine.cycle_interval <= 0:
            errors.append("Cycle interval must be greater than 0")

        return errors

    def ensure_valid(self) -> None:
        """
        Raise if the configuration is invalid.

        Raises:
            ConfigurationError: With every violation found
        """
        errors = self.validate()
        if errors:
            raise ConfigurationError(errors)
