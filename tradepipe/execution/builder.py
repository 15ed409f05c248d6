"""Assemble venue-correct order requests.

The builder is venue-agnostic: how a size is expressed on the wire and
which order types exist are both asked of the :class:`BrokerAdapter`.
"""
from __future__ import annotations

from typing import Optional

from tradepipe.core.errors import (
    InsufficientBalanceError,
    InvalidPriceError,
    InvalidSizeError,
    InvalidSymbolError,
    UnsupportedOrderError,
)
from tradepipe.core.logging import get_logger
from tradepipe.execution.gateway import BrokerAdapter
from tradepipe.execution.types import (
    BracketLegs,
    OrderParams,
    OrderRequest,
    OrderType,
    Side,
    SizedPosition,
    TimeInForce,
)
from tradepipe.risk.levels import PriceLevels

logger = get_logger(__name__)

_LIMIT_PRICED = {OrderType.LIMIT, OrderType.STOP_LIMIT}
_STOP_PRICED = {OrderType.STOP, OrderType.STOP_LIMIT}


class OrderBuilder:
    """Turn a sized, levelled trade idea into an :class:`OrderRequest`."""

    def __init__(self, adapter: BrokerAdapter) -> None:
        self.adapter = adapter

    def build(
        self,
        symbol: str,
        side: Side,
        sized: SizedPosition,
        levels: Optional[PriceLevels],
        params: OrderParams,
        available_balance: float,
        *,
        client_tag: Optional[str] = None,
    ) -> OrderRequest:
        order_type = OrderType(params.order_type)
        side = Side(side)
        if order_type not in self.adapter.supported_order_types:
            raise UnsupportedOrderError(
                f"{order_type.value} orders are not supported on {self.adapter.rules.venue.value}"
            )
        self.validate(symbol, sized, params, available_balance)

        rules = self.adapter.rules
        time_in_force = TimeInForce(params.time_in_force)
        bracket: Optional[BracketLegs] = None
        if params.bracket and order_type is OrderType.MARKET:
            if levels is None:
                raise InvalidPriceError("Bracket orders need computed exit levels")
            bracket = BracketLegs(
                take_profit_price=round(levels.take_profit, rules.price_decimals),
                stop_loss_price=round(levels.stop_loss, rules.price_decimals),
            )
            # A day-scoped parent would orphan its protective children.
            time_in_force = TimeInForce.GTC

        request = OrderRequest(
            symbol=symbol,
            side=side,
            order_type=order_type,
            quantity=self.adapter.encode_quantity(side, order_type, sized),
            time_in_force=time_in_force,
            extended_hours=params.extended_hours,
            bracket=bracket,
            limit_price=params.limit_price if order_type in _LIMIT_PRICED else None,
            stop_price=params.stop_price if order_type in _STOP_PRICED else None,
            trail_price=params.trail_price if order_type is OrderType.TRAILING_STOP else None,
            trail_percent=params.trail_percent if order_type is OrderType.TRAILING_STOP else None,
            client_tag=client_tag,
        )
        logger.info(
            "order_built",
            extra={
                "symbol": request.symbol,
                "side": request.side.value,
                "order_type": request.order_type.value,
                "quantity_kind": request.quantity.kind,
                "quantity_value": request.quantity.value,
                "time_in_force": request.time_in_force.value,
                "bracket": bracket is not None,
            },
        )
        return request

    def validate(
        self,
        symbol: str,
        sized: SizedPosition,
        params: OrderParams,
        available_balance: float,
    ) -> None:
        """Run the pre-submission checks; the first failure is raised."""

        if not symbol or not symbol.strip():
            raise InvalidSymbolError("Invalid trading symbol")

        minimum = self.adapter.rules.min_quantity
        if sized.quantity <= 0 or sized.quantity < minimum:
            raise InvalidSizeError(f"Quantity too small. Minimum is {minimum}, got {sized.quantity}")

        if sized.total_cost > available_balance:
            raise InsufficientBalanceError(sized.total_cost, available_balance)

        order_type = OrderType(params.order_type)
        if order_type in _LIMIT_PRICED and not _positive(params.limit_price):
            raise InvalidPriceError("Please enter a valid limit price")
        if order_type in _STOP_PRICED and not _positive(params.stop_price):
            raise InvalidPriceError("Please enter a valid stop price")
        if order_type is OrderType.TRAILING_STOP and not (
            _positive(params.trail_percent) or _positive(params.trail_price)
        ):
            raise InvalidPriceError("Please enter either trail percent or trail price")


def _positive(value: Optional[float]) -> bool:
    return value is not None and value > 0


__all__ = ["OrderBuilder"]
