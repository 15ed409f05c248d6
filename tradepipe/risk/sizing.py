"""Utilities for turning a balance and a risk choice into a tradable size.

Three modes are supported: a fixed notional amount, a percentage of the
available balance, and a fixed quantity (whole shares on equities, base
units on crypto). Every mode floors the quantity to the venue's step so the
result can be sent as-is.
"""
from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal
from enum import Enum

from tradepipe.core.errors import InsufficientBalanceError, InvalidSizeError
from tradepipe.core.logging import get_logger
from tradepipe.execution.types import SizedPosition, VenueRules

logger = get_logger(__name__)


class SizingMode(str, Enum):
    NOTIONAL = "notional"
    PERCENT_OF_BALANCE = "percent_of_balance"
    FIXED_QUANTITY = "fixed_quantity"


def floor_to_step(value: float, step: float) -> float:
    """Floor ``value`` to a multiple of ``step``.

    Decimal arithmetic on the ``repr`` of both floats keeps ``0.25`` with a
    step of ``1e-8`` at ``0.25`` instead of ``0.24999999``.
    """

    if step <= 0:
        raise ValueError("Step must be positive.")
    if value <= 0:
        return 0.0
    d_step = Decimal(repr(step))
    units = (Decimal(repr(value)) / d_step).to_integral_value(rounding=ROUND_FLOOR)
    return float(units * d_step)


def size_position(
    balance: float,
    price: float,
    rules: VenueRules,
    mode: SizingMode,
    value: float,
) -> SizedPosition:
    """Calculate a quantity and its total cost for one order.

    Parameters
    ----------
    balance:
        Available balance (buying power) in the quote currency.
    price:
        Price the quantity is computed against: the limit price for limit
        orders, the current price otherwise.
    rules:
        Venue granularity. ``quantity_step`` drives the flooring and
        ``min_quantity`` the lower bound.
    mode / value:
        ``NOTIONAL`` takes an amount of quote currency,
        ``PERCENT_OF_BALANCE`` a percentage (``2.5`` for 2.5%), and
        ``FIXED_QUANTITY`` a share count or base quantity.

    Raises
    ------
    InvalidSizeError
        When the floored quantity is zero, below the venue minimum, or
        the inputs cannot produce a size.
    InsufficientBalanceError
        When ``quantity * price`` exceeds ``balance``.
    """

    if price <= 0:
        raise InvalidSizeError("Price must be positive to size a position.")
    if value <= 0:
        raise InvalidSizeError("Please enter a valid position size.")

    mode = SizingMode(mode)
    if mode is SizingMode.PERCENT_OF_BALANCE:
        notional = balance * value / 100
        quantity = floor_to_step(notional / price, rules.quantity_step)
    elif mode is SizingMode.NOTIONAL:
        quantity = floor_to_step(value / price, rules.quantity_step)
    else:
        quantity = floor_to_step(value, rules.quantity_step)

    if quantity <= 0:
        raise InvalidSizeError(
            f"Quantity rounds to zero at price {price}; minimum is {rules.min_quantity} {rules.unit}."
        )
    if quantity < rules.min_quantity:
        raise InvalidSizeError(
            f"Quantity too small. Minimum is {rules.min_quantity}, got {quantity}"
        )

    total_cost = quantity * price
    if total_cost > balance:
        raise InsufficientBalanceError(total_cost, balance)

    logger.debug(
        "position_sized",
        extra={
            "mode": mode.value,
            "sizing_value": value,
            "price": price,
            "quantity": quantity,
            "total_cost": total_cost,
        },
    )
    return SizedPosition(quantity=quantity, total_cost=total_cost, unit=rules.unit)


__all__ = ["SizingMode", "floor_to_step", "size_position"]
