"""
Configuration loader for the grid trading engine.

Loads configuration from:
1. YAML file (config/config.yaml)
2. Environment variables (GRIDBOT_* prefix)
3. .env file (via python-dotenv)

Environment variables override YAML values.
API credentials MUST be set via environment (never in YAML).
"""

import os
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from config.settings import (
    AdjustmentTrigger,
    AllocationMethod,
    BasicStopLossConfig,
    BotConfig,
    ConfigurationError,
    DistributionMethod,
    DynamicStopLossConfig,
    EngineConfig,
    ExchangeConfig,
    GridAdjustmentConfig,
    GridConfig,
    InvestmentConfig,
    LoggingConfig,
    OrderConfig,
    PositionConfig,
    RiskConfig,
    StopLossMethod,
    TrailingStopLossConfig,
)

logger = logging.getLogger(__name__)


class ConfigLoader:
    """
    Loads and validates bot configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (GRIDBOT_*)
    2. YAML config file
    3. Default values in dataclasses
    """

    ENV_PREFIX = "GRIDBOT_"

    def __init__(
        self,
        config_path: Optional[str] = None,
        env_file: Optional[str] = None,
    ):
        """
        Initialize config loader.

        Args:
            config_path: Path to YAML config file. If None, uses config/config.yaml
            env_file: Path to .env file. If None, uses .env in the working directory
        """
        self._config_path = Path(config_path) if config_path else Path("config/config.yaml")
        self._env_file = Path(env_file) if env_file else Path(".env")

        if self._env_file.exists():
            load_dotenv(self._env_file)
            logger.debug(f"Loaded environment from {self._env_file}")

    def load(self) -> BotConfig:
        """
        Load complete bot configuration.

        Returns:
            BotConfig with all settings populated

        Raises:
            ConfigurationError: If a value cannot be parsed or the config is invalid
        """
        yaml_config = self._load_yaml()

        try:
            config = self._build_config(yaml_config)
        except (TypeError, ValueError) as e:
            raise ConfigurationError([f"Could not parse configuration: {e}"]) from e

        config.ensure_valid()
        return config

    def _load_yaml(self) -> Dict[str, Any]:
        """Load YAML configuration file."""
        if not self._config_path.exists():
            logger.warning(f"Config file not found: {self._config_path}, using defaults")
            return {}

        with open(self._config_path) as f:
            config = yaml.safe_load(f) or {}

        if not isinstance(config, dict):
            raise ConfigurationError([f"{self._config_path} must contain a mapping"])

        logger.info(f"Loaded config from {self._config_path}")
        return config

    def _get_env(self, key: str, default: Any = None) -> Any:
        """
        Get environment variable with GRIDBOT_ prefix.

        Args:
            key: Variable name (without prefix)
            default: Default value if not set; its type drives conversion

        Returns:
            Environment variable value or default
        """
        full_key = f"{self.ENV_PREFIX}{key}"
        value = os.environ.get(full_key)

        if value is None:
            return default

        if isinstance(default, bool):
            return value.lower() in ("true", "1", "yes")
        elif isinstance(default, int):
            return int(value)
        elif isinstance(default, float):
            return float(value)

        return value

    def _build_config(self, yaml_config: Dict[str, Any]) -> BotConfig:
        """Build BotConfig from YAML and environment."""

        def section(*path: str) -> Dict[str, Any]:
            node: Any = yaml_config
            for key in path:
                node = (node or {}).get(key, {})
            return node or {}

        # Exchange
        exchange_yaml = section("exchange")
        defaults = ExchangeConfig()
        paper_seed = exchange_yaml.get("paper_seed", defaults.paper_seed)
        exchange = ExchangeConfig(
            name=self._get_env("EXCHANGE", exchange_yaml.get("name", defaults.name)),
            sandbox=self._get_env("SANDBOX", bool(exchange_yaml.get("sandbox", defaults.sandbox))),
            volatility_days=int(exchange_yaml.get("volatility_days", defaults.volatility_days)),
            api_key=self._get_env("API_KEY", ""),
            api_secret=self._get_env("API_SECRET", ""),
            paper_initial_price=float(
                exchange_yaml.get("paper_initial_price", defaults.paper_initial_price)
            ),
            paper_base_balance=float(
                exchange_yaml.get("paper_base_balance", defaults.paper_base_balance)
            ),
            paper_quote_balance=float(
                exchange_yaml.get("paper_quote_balance", defaults.paper_quote_balance)
            ),
            paper_volatility=float(
                exchange_yaml.get("paper_volatility", defaults.paper_volatility)
            ),
            paper_seed=int(paper_seed) if paper_seed is not None else None,
        )

        # Investment
        investment_yaml = section("investment")
        investment = InvestmentConfig(
            total_investment=self._get_env(
                "TOTAL_INVESTMENT",
                float(investment_yaml.get("total_investment", 10000.0)),
            ),
            asset_pair=self._get_env("ASSET_PAIR", investment_yaml.get("asset_pair", "BTC/USD")),
            leverage=float(investment_yaml.get("leverage", 1.0)),
        )

        # Grid
        grid_yaml = section("grid")
        upper = grid_yaml.get("upper_bound")
        lower = grid_yaml.get("lower_bound")
        grid = GridConfig(
            num_levels=self._get_env("NUM_LEVELS", int(grid_yaml.get("num_levels", 20))),
            upper_bound=float(upper) if upper is not None else None,
            lower_bound=float(lower) if lower is not None else None,
            auto_range=bool(grid_yaml.get("auto_range", True)),
            distribution=DistributionMethod(grid_yaml.get("distribution", "linear")),
        )

        # Orders
        order_yaml = section("order")
        pattern = order_yaml.get("custom_allocation_pattern")
        order = OrderConfig(
            allocation_method=AllocationMethod(order_yaml.get("allocation_method", "equal")),
            custom_allocation_pattern=self._float_list(pattern),
            order_type=order_yaml.get("order_type", "limit"),
        )

        # Risk
        risk = self._build_risk(section("risk"))

        # Position management
        position_yaml = section("position")
        adjustment_yaml = section("position", "grid_adjustment")
        adjustment_defaults = GridAdjustmentConfig()
        position = PositionConfig(
            drift_correction_enabled=bool(position_yaml.get("drift_correction_enabled", True)),
            drift_threshold=float(position_yaml.get("drift_threshold", 0.05)),
            drift_check_interval=float(position_yaml.get("drift_check_interval", 300.0)),
            grid_adjustment=GridAdjustmentConfig(
                enabled=bool(adjustment_yaml.get("enabled", adjustment_defaults.enabled)),
                trigger=AdjustmentTrigger(
                    adjustment_yaml.get("trigger", adjustment_defaults.trigger.value)
                ),
                time_interval=float(
                    adjustment_yaml.get("time_interval", adjustment_defaults.time_interval)
                ),
                volatility_threshold=float(
                    adjustment_yaml.get("volatility_threshold", adjustment_defaults.volatility_threshold)
                ),
                volatility_window=int(
                    adjustment_yaml.get("volatility_window", adjustment_defaults.volatility_window)
                ),
                profit_threshold=float(
                    adjustment_yaml.get("profit_threshold", adjustment_defaults.profit_threshold)
                ),
            ),
        )

        # Engine
        engine_yaml = section("engine")
        engine = EngineConfig(
            cycle_interval=self._get_env(
                "CYCLE_INTERVAL",
                float(engine_yaml.get("cycle_interval", 60.0)),
            ),
            shutdown_timeout=float(engine_yaml.get("shutdown_timeout", 10.0)),
            max_retries=int(engine_yaml.get("max_retries", 2)),
            retry_base_delay=float(engine_yaml.get("retry_base_delay", 1.0)),
            max_consecutive_failures=int(engine_yaml.get("max_consecutive_failures", 5)),
            metrics_history_size=int(engine_yaml.get("metrics_history_size", 1000)),
        )

        # Logging
        logging_yaml = section("logging")
        log_config = LoggingConfig(
            level=self._get_env("LOG_LEVEL", logging_yaml.get("level", "INFO")),
            file_path=logging_yaml.get("file_path", "logs/gridbot.log"),
            max_size_mb=int(logging_yaml.get("max_size_mb", 10)),
            backup_count=int(logging_yaml.get("backup_count", 5)),
        )

        return BotConfig(
            exchange=exchange,
            investment=investment,
            grid=grid,
            order=order,
            risk=risk,
            position=position,
            engine=engine,
            logging=log_config,
        )

    def _build_risk(self, risk_yaml: Dict[str, Any]) -> RiskConfig:
        basic_yaml = risk_yaml.get("basic_stop_loss") or {}
        dynamic_yaml = risk_yaml.get("dynamic_stop_loss") or {}
        trailing_yaml = risk_yaml.get("trailing_stop_loss") or {}
        defaults = RiskConfig()

        return RiskConfig(
            basic_stop_loss=BasicStopLossConfig(
                enabled=bool(basic_yaml.get("enabled", True)),
                percentage=float(basic_yaml.get("percentage", 5.0)),
                method=StopLossMethod(basic_yaml.get("method", "hard")),
            ),
            dynamic_stop_loss=DynamicStopLossConfig(
                enabled=bool(dynamic_yaml.get("enabled", True)),
                initial_risk_threshold=float(dynamic_yaml.get("initial_risk_threshold", 3.0)),
                expansion_factor=float(dynamic_yaml.get("expansion_factor", 0.5)),
                maximum_expansion=float(dynamic_yaml.get("maximum_expansion", 10.0)),
            ),
            trailing_stop_loss=TrailingStopLossConfig(
                enabled=bool(trailing_yaml.get("enabled", True)),
                trailing_distance=float(trailing_yaml.get("trailing_distance", 2.0)),
                activation_threshold=float(trailing_yaml.get("activation_threshold", 1.0)),
                is_discrete=bool(trailing_yaml.get("is_discrete", False)),
            ),
            reversal_short_window=int(
                risk_yaml.get("reversal_short_window", defaults.reversal_short_window)
            ),
            reversal_medium_window=int(
                risk_yaml.get("reversal_medium_window", defaults.reversal_medium_window)
            ),
            reversal_momentum_window=int(
                risk_yaml.get("reversal_momentum_window", defaults.reversal_momentum_window)
            ),
            reversal_momentum_threshold=float(
                risk_yaml.get("reversal_momentum_threshold", defaults.reversal_momentum_threshold)
            ),
            price_history_size=int(
                risk_yaml.get("price_history_size", defaults.price_history_size)
            ),
        )

    @staticmethod
    def _float_list(values: Optional[List[Any]]) -> Optional[List[float]]:
        if values is None:
            return None
        return [float(v) for v in values]

    def has_api_credentials(self) -> bool:
        """True if both GRIDBOT_API_KEY and GRIDBOT_API_SECRET are set."""
        return bool(self._get_env("API_KEY", "")) and bool(self._get_env("API_SECRET", ""))
