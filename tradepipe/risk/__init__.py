"""Exit levels and position sizing."""
from tradepipe.risk.levels import NOT_AVAILABLE, PriceLevels, calculate_price_levels, format_risk_reward
from tradepipe.risk.sizing import SizingMode, floor_to_step, size_position

__all__ = [
    "NOT_AVAILABLE",
    "PriceLevels",
    "calculate_price_levels",
    "format_risk_reward",
    "SizingMode",
    "floor_to_step",
    "size_position",
]
