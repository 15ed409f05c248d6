"""tradepipe: signal-to-order execution pipeline."""
from tradepipe.core.config import AppConfig, ConfigLoader
from tradepipe.core.logging import get_logger, setup_logging

__version__ = "0.1.0"

__all__ = ["AppConfig", "ConfigLoader", "setup_logging", "get_logger"]
