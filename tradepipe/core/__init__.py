"""Core utilities shared by the pipeline."""
from tradepipe.core.errors import (
    BrokerErrorCategory,
    BrokerRejectionError,
    GatewayError,
    OrderValidationError,
    TradePipeError,
)
from tradepipe.core.logging import JsonFormatter, get_logger, setup_logging
from tradepipe.core.config import (
    APISettings,
    AppConfig,
    ConfigError,
    ConfigLoader,
    FreshnessSettings,
    RiskSettings,
    VenueSettings,
)

__all__ = [
    "APISettings",
    "AppConfig",
    "ConfigError",
    "ConfigLoader",
    "FreshnessSettings",
    "RiskSettings",
    "VenueSettings",
    "BrokerErrorCategory",
    "BrokerRejectionError",
    "GatewayError",
    "OrderValidationError",
    "TradePipeError",
    "JsonFormatter",
    "get_logger",
    "setup_logging",
]
