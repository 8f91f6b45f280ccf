#!/usr/bin/env python3
"""
Grid Trading Engine - Main Entry Point.

Usage:
    python -m gridbot.main config/config.yaml
    python -m gridbot.main config/config.yaml --paper
    python -m gridbot.main config/config.yaml --once
    python -m gridbot.main config/config.yaml --dry-run

Environment:
    GRIDBOT_API_KEY: Exchange API key (required for live exchanges)
    GRIDBOT_API_SECRET: Exchange API secret (required for live exchanges)
    GRIDBOT_EXCHANGE: Override the exchange name from the config file
"""

import argparse
import asyncio
import logging
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from config.settings import BotConfig, ConfigurationError
from gridbot.core import ControllerState, GridController
from gridbot.exchange import create_gateway
from gridbot.utils.config_loader import ConfigLoader


def setup_logging(
    level: str,
    log_file: Optional[str] = None,
    max_size_mb: int = 10,
    backup_count: int = 5,
) -> None:
    """
    Configure logging for the bot.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file path for logging
        max_size_mb: Rotate the log file at this size
        backup_count: Rotated files to keep
    """
    console_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    file_format = (
        "%(asctime)s [%(levelname)s] %(name)s "
        "(%(filename)s:%(lineno)d): %(message)s"
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    console_handler.setFormatter(logging.Formatter(console_format))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
        )
        file_handler.setLevel(logging.DEBUG)  # Log everything to file
        file_handler.setFormatter(logging.Formatter(file_format))
        root_logger.addHandler(file_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("ccxt").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Grid Trading Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run against the paper exchange (recommended for testing)
  python -m gridbot.main config/config.yaml --paper

  # Run a single trading cycle and exit
  python -m gridbot.main config/config.yaml --paper --once

  # Validate configuration without running
  python -m gridbot.main config/config.yaml --dry-run

  # Run with debug logging
  python -m gridbot.main config/config.yaml --log-level DEBUG
        """,
    )

    parser.add_argument(
        "config",
        type=str,
        help="Path to configuration YAML file",
    )

    parser.add_argument(
        "--paper",
        action="store_true",
        help="Force the paper exchange regardless of the configured one",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration and exit without trading",
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Initialize, run one trading cycle, then shut down",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: from config)",
    )

    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Log file path (default: from config)",
    )

    return parser.parse_args(argv)


def print_config_summary(config: BotConfig) -> None:
    """Print configuration summary."""
    grid = config.grid
    if grid.has_explicit_bounds:
        grid_range = f"{grid.lower_bound} - {grid.upper_bound}"
    else:
        grid_range = "auto (2x historical volatility)"

    print("\nConfiguration:")
    print(f"  Exchange: {config.exchange.name}")
    print(f"  Trading pair: {config.investment.asset_pair}")
    print(f"  Total investment: {config.investment.total_investment}")
    print(f"  Leverage: {config.investment.leverage}x")
    print(f"  Grid levels: {grid.num_levels} ({grid.distribution.value})")
    print(f"  Grid range: {grid_range}")
    print(f"  Allocation: {config.order.allocation_method.value}")
    print(f"  Order type: {config.order.order_type}")
    print(f"  Stop-loss: {config.risk.basic_stop_loss.percentage}% "
          f"({config.risk.basic_stop_loss.method.value})")
    print(f"  Grid adjustment: {config.position.grid_adjustment.trigger.value}")
    print(f"  Cycle interval: {config.engine.cycle_interval}s")
    print()


async def main(args: argparse.Namespace, config: BotConfig) -> int:
    """
    Main async entry point.

    Args:
        args: Parsed command line arguments
        config: Loaded configuration

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    logger = logging.getLogger(__name__)

    try:
        gateway = create_gateway(config.exchange, config.investment.asset_pair)
        controller = GridController(config, gateway)
    except ConfigurationError as e:
        print(f"Error: {e}")
        return 1

    loop = asyncio.get_running_loop()

    def request_shutdown(sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, initiating graceful shutdown...")
        asyncio.create_task(controller.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_shutdown, sig)
        except NotImplementedError:
            # Windows event loops have no signal support
            pass

    try:
        logger.info("Initializing grid controller...")
        await controller.initialize()

        if args.once:
            report = await controller.run_cycle()
            logger.info(f"Single cycle complete: {report}")
            await controller.stop()
            return 0 if report.success else 1

        await controller.start()
        logger.info("Bot is running. Press Ctrl+C to stop.")

        while controller.state != ControllerState.STOPPED:
            await asyncio.sleep(1)

        logger.info(f"Session finished: {controller.get_status_summary()}")
        return 0

    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        try:
            await controller.stop()
        except Exception as stop_error:
            logger.error(f"Error during shutdown: {stop_error}")
        return 1


def run(argv=None) -> None:
    """Synchronous entry point."""
    args = parse_args(argv)

    try:
        config = ConfigLoader(args.config).load()
    except ConfigurationError as e:
        print(f"Error loading config: {e}")
        sys.exit(1)

    if args.paper:
        config.exchange.name = "paper"

    level = args.log_level or config.logging.level
    log_file = args.log_file or config.logging.file_path
    setup_logging(level, log_file, config.logging.max_size_mb, config.logging.backup_count)

    logger = logging.getLogger(__name__)
    logger.info("Starting grid trading engine")
    logger.info(f"Config: {args.config}")

    print_config_summary(config)

    if args.dry_run:
        print("Dry run complete - configuration is valid")
        sys.exit(0)

    try:
        exit_code = asyncio.run(main(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        exit_code = 0

    logger.info(f"Exiting with code {exit_code}")
    sys.exit(exit_code)


if __name__ == "__main__":
    run()
