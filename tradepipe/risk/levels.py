"""Helpers to derive stop loss and take profit levels."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from tradepipe.core.errors import InvalidLevelsError
from tradepipe.execution.types import Side

NOT_AVAILABLE = "N/A"

RiskReward = Union[float, str]


@dataclass(frozen=True)
class PriceLevels:
    """Absolute exit prices and the money at stake for a planned entry."""

    entry: float
    stop_loss: float
    take_profit: float
    max_loss_amount: float
    potential_gain_amount: float
    risk_reward_ratio: RiskReward


def calculate_price_levels(
    entry_price: float,
    stop_loss_pct: float,
    take_profit_pct: float,
    side: Side,
    *,
    position_cost: float = 0.0,
) -> PriceLevels:
    """Generate stop loss and take profit levels from percentages.

    Parameters
    ----------
    entry_price:
        Planned execution price for the order.
    stop_loss_pct / take_profit_pct:
        Distance of each exit from the entry, in percent of the entry
        price (``5`` means 5%).
    side:
        ``Side.BUY`` places the stop below and the target above the
        entry; ``Side.SELL`` mirrors both.
    position_cost:
        Money committed to the position. The loss and gain amounts are
        expressed against it; with the default of zero both amounts are
        zero and the ratio is reported as ``"N/A"``.
    """

    if entry_price <= 0:
        raise InvalidLevelsError("Entry price must be positive.")
    if stop_loss_pct < 0 or take_profit_pct < 0:
        raise InvalidLevelsError("Stop loss and take profit percentages cannot be negative.")
    if position_cost < 0:
        raise InvalidLevelsError("Position cost cannot be negative.")

    side = Side(side)
    sign = 1 if side is Side.BUY else -1

    stop_loss = entry_price * (1 - sign * stop_loss_pct / 100)
    take_profit = entry_price * (1 + sign * take_profit_pct / 100)
    if stop_loss <= 0 or take_profit <= 0:
        # A long cannot lose, and a short cannot gain, more than 100%.
        raise InvalidLevelsError("Exit percentages would put a level at or below zero.")

    max_loss_amount = position_cost * stop_loss_pct / 100
    potential_gain_amount = position_cost * take_profit_pct / 100
    if max_loss_amount > 0:
        risk_reward: RiskReward = potential_gain_amount / max_loss_amount
    else:
        risk_reward = NOT_AVAILABLE

    return PriceLevels(
        entry=entry_price,
        stop_loss=stop_loss,
        take_profit=take_profit,
        max_loss_amount=max_loss_amount,
        potential_gain_amount=potential_gain_amount,
        risk_reward_ratio=risk_reward,
    )


def format_risk_reward(levels: PriceLevels) -> str:
    """Render the ratio as ``1:2.00``, or ``N/A`` when nothing is at risk."""

    if levels.risk_reward_ratio == NOT_AVAILABLE:
        return NOT_AVAILABLE
    return f"1:{float(levels.risk_reward_ratio):.2f}"


__all__ = ["PriceLevels", "calculate_price_levels", "format_risk_reward", "NOT_AVAILABLE"]
