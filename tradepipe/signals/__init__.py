"""Signal boundary types."""
from tradepipe.signals.types import (
    Confidence,
    ExitDefaults,
    Signal,
    StrategyDefaults,
    parse_percent,
    resolve_exit_percentages,
)

__all__ = [
    "Confidence",
    "ExitDefaults",
    "Signal",
    "StrategyDefaults",
    "parse_percent",
    "resolve_exit_percentages",
]
