"""
Exchange gateway registry.

Static name -> factory table resolved at configuration time.
Unknown names fail fast with ConfigurationError.
"""

import logging
from typing import Callable, Dict

from config.settings import ConfigurationError, ExchangeConfig

from .ccxt_gateway import CCXT_EXCHANGES, CCXTExchangeGateway
from .gateway import ExchangeGateway
from .paper_gateway import PaperExchangeGateway

logger = logging.getLogger(__name__)

PAPER_EXCHANGE = "paper"


def _paper_factory(config: ExchangeConfig, asset_pair: str) -> ExchangeGateway:
    return PaperExchangeGateway.from_config(config)


def _ccxt_factory(config: ExchangeConfig, asset_pair: str) -> ExchangeGateway:
    if not config.api_key or not config.api_secret:
        raise ConfigurationError([
            f"Exchange '{config.name}' requires GRIDBOT_API_KEY and GRIDBOT_API_SECRET"
        ])
    return CCXTExchangeGateway(
        exchange_id=config.name.lower(),
        symbol=asset_pair,
        api_key=config.api_key,
        api_secret=config.api_secret,
        sandbox=config.sandbox,
    )


GATEWAY_FACTORIES: Dict[str, Callable[[ExchangeConfig, str], ExchangeGateway]] = {
    PAPER_EXCHANGE: _paper_factory,
    **{name: _ccxt_factory for name in CCXT_EXCHANGES},
}


def supported_exchanges() -> list:
    """Names accepted by create_gateway."""
    return sorted(GATEWAY_FACTORIES)


def create_gateway(config: ExchangeConfig, asset_pair: str = "BTC/USD") -> ExchangeGateway:
    """
    Build the gateway named by config.name.

    Args:
        config: Exchange configuration
        asset_pair: Unified symbol for live adapters

    Returns:
        Gateway instance (not yet connected)

    Raises:
        ConfigurationError: Unknown exchange or missing credentials
    """
    name = config.name.lower()
    factory = GATEWAY_FACTORIES.get(name)
    if factory is None:
        raise ConfigurationError([
            f"Unknown exchange '{config.name}'. "
            f"Supported: {', '.join(supported_exchanges())}"
        ])

    logger.info(f"Using exchange gateway: {name}")
    return factory(config, asset_pair)
