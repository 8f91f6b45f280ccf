"""Configuration module for the grid trading engine."""

from .settings import (
    ConfigurationError,
    DistributionMethod,
    AllocationMethod,
    StopLossMethod,
    AdjustmentTrigger,
    ExchangeConfig,
    InvestmentConfig,
    GridConfig,
    OrderConfig,
    BasicStopLossConfig,
    DynamicStopLossConfig,
    TrailingStopLossConfig,
    RiskConfig,
    GridAdjustmentConfig,
    PositionConfig,
    EngineConfig,
    LoggingConfig,
    BotConfig,
)

__all__ = [
    "ConfigurationError",
    "DistributionMethod",
    "AllocationMethod",
    "StopLossMethod",
    "AdjustmentTrigger",
    "ExchangeConfig",
    "InvestmentConfig",
    "GridConfig",
    "OrderConfig",
    "BasicStopLossConfig",
    "DynamicStopLossConfig",
    "TrailingStopLossConfig",
    "RiskConfig",
    "GridAdjustmentConfig",
    "PositionConfig",
    "EngineConfig",
    "LoggingConfig",
    "BotConfig",
]
