"""Broker adapter contract shared by every venue implementation."""
from __future__ import annotations

import asyncio
from typing import Callable, FrozenSet, List, Optional, Protocol, Tuple, Type, TypeVar

from tradepipe.core.errors import GatewayError
from tradepipe.core.logging import get_logger
from tradepipe.execution.types import (
    FilledOrder,
    FillResult,
    OrderRequest,
    OrderType,
    QuantitySpec,
    SizedPosition,
    Side,
    Venue,
    VenueRules,
)

logger = get_logger(__name__)

T = TypeVar("T")

ALL_ORDER_TYPES: FrozenSet[OrderType] = frozenset(OrderType)
SPOT_ORDER_TYPES: FrozenSet[OrderType] = frozenset({OrderType.MARKET, OrderType.LIMIT})


class BrokerAdapter(Protocol):
    """Capability every venue exposes to the pipeline."""

    rules: VenueRules
    supported_order_types: FrozenSet[OrderType]

    def encode_quantity(self, side: Side, order_type: OrderType, sized: SizedPosition) -> QuantitySpec: ...

    async def submit(self, request: OrderRequest) -> FillResult: ...

    async def list_filled_orders(self, symbol: Optional[str] = None) -> List[FilledOrder]: ...

    async def get_account_balance(self) -> float: ...


def encode_quantity(
    rules: VenueRules,
    side: Side,
    order_type: OrderType,
    sized: SizedPosition,
) -> QuantitySpec:
    """Express ``sized`` the way ``rules.venue`` expects it.

    Spot market buys are sized in quote currency so the venue fills
    whatever quantity the notional buys; every other spot order is sized
    in base units. Equities always trade whole shares.
    """

    if rules.venue is Venue.EQUITIES:
        return QuantitySpec(kind="shares", value=int(sized.quantity))
    if Side(side) is Side.BUY and OrderType(order_type) is OrderType.MARKET:
        return QuantitySpec(kind="quote_notional", value=round(sized.total_cost, 8))
    return QuantitySpec(kind="base_qty", value=round(sized.quantity, 8))


class RetryingClientMixin:
    """Run blocking client calls off the event loop with retries.

    Only read-only calls go through :meth:`_call_with_retries`; order
    submission is attempted exactly once.
    """

    max_retries: int = 3
    retry_delay: float = 0.5
    recoverable_errors: Tuple[Type[BaseException], ...] = ()

    async def _call_with_retries(self, func: Callable[..., T], *args, **kwargs) -> T:
        for attempt in range(1, self.max_retries + 1):
            try:
                return await asyncio.to_thread(func, *args, **kwargs)
            except self.recoverable_errors as exc:
                if attempt >= self.max_retries:
                    raise GatewayError(str(exc)) from exc
                delay = self.retry_delay * attempt
                logger.warning(
                    "gateway_call_retry",
                    extra={"call": getattr(func, "__name__", repr(func)), "attempt": attempt, "delay": delay},
                )
                await asyncio.sleep(delay)
        raise GatewayError("Retry loop exhausted without a result")


def format_decimal(value: float, decimals: int = 8) -> str:
    """Render ``value`` without trailing zeros, as most venues expect."""

    return f"{value:.{decimals}f}".rstrip("0").rstrip(".")


__all__ = [
    "BrokerAdapter",
    "ALL_ORDER_TYPES",
    "SPOT_ORDER_TYPES",
    "encode_quantity",
    "RetryingClientMixin",
    "format_decimal",
]
