"""In-memory paper trading venue.

Simulates either venue from a price getter: market orders fill at the
current price, resting orders fill once :meth:`PaperBroker.process_price`
sees them crossed, and bracket exits fire on the first leg touched.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from tradepipe.core.errors import BrokerErrorCategory, BrokerRejectionError
from tradepipe.core.logging import get_logger
from tradepipe.execution.gateway import ALL_ORDER_TYPES, SPOT_ORDER_TYPES, encode_quantity
from tradepipe.execution.types import (
    CRYPTO_SPOT_RULES,
    BracketLegs,
    FilledOrder,
    FillResult,
    OrderRequest,
    OrderStatus,
    OrderType,
    QuantitySpec,
    Side,
    SizedPosition,
    Venue,
    VenueRules,
)
from tradepipe.risk.sizing import floor_to_step

logger = get_logger(__name__)

PriceGetter = Callable[[str], Optional[float]]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class PaperOrder:
    """Represents a simulated order."""

    order_id: str
    symbol: str
    side: Side
    order_type: OrderType
    quantity: QuantitySpec
    limit_price: Optional[float] = None
    stop_price: Optional[float] = None
    trail_price: Optional[float] = None
    trail_percent: Optional[float] = None
    bracket: Optional[BracketLegs] = None
    status: OrderStatus = OrderStatus.NEW
    filled_quantity: float = 0.0
    fill_price: Optional[float] = None
    created_at: datetime = field(default_factory=_utcnow)
    filled_at: Optional[datetime] = None
    watermark: Optional[float] = None
    parent_id: Optional[str] = None


class PaperBroker:
    """Lightweight paper trading broker implementing the adapter contract."""

    def __init__(
        self,
        price_getter: PriceGetter,
        rules: VenueRules = CRYPTO_SPOT_RULES,
        *,
        initial_balance: float = 10_000.0,
        clock: Optional[Clock] = None,
    ) -> None:
        if price_getter is None:
            raise ValueError("Paper trading requires a price getter callable")
        self.price_getter = price_getter
        self.rules = rules
        self.supported_order_types = ALL_ORDER_TYPES if rules.venue is Venue.EQUITIES else SPOT_ORDER_TYPES
        self.balance = float(initial_balance)
        self.holdings: Dict[str, float] = {}
        self.orders: Dict[str, PaperOrder] = {}
        self._clock = clock or _utcnow
        self._order_seq = 0

    def encode_quantity(self, side: Side, order_type: OrderType, sized: SizedPosition) -> QuantitySpec:
        return encode_quantity(self.rules, side, order_type, sized)

    async def submit(self, request: OrderRequest) -> FillResult:
        current_price = self.price_getter(request.symbol)
        if current_price is None or current_price <= 0:
            raise BrokerRejectionError(
                BrokerErrorCategory.INVALID_SYMBOL_AT_VENUE, f"invalid symbol: {request.symbol}"
            )

        order = PaperOrder(
            order_id=self._next_order_id(),
            symbol=request.symbol,
            side=request.side,
            order_type=request.order_type,
            quantity=request.quantity,
            limit_price=request.limit_price,
            stop_price=request.stop_price,
            trail_price=request.trail_price,
            trail_percent=request.trail_percent,
            bracket=request.bracket,
            created_at=self._clock(),
            watermark=current_price,
        )

        fill_price = self._trigger_price(order, current_price)
        if fill_price is not None:
            self._fill(order, fill_price)
        self.orders[order.order_id] = order
        logger.info(
            "paper_order_submitted",
            extra={"order_id": order.order_id, "symbol": order.symbol, "status": order.status.value},
        )
        return self._result(order)

    async def list_filled_orders(self, symbol: Optional[str] = None) -> List[FilledOrder]:
        return [
            FilledOrder(
                symbol=order.symbol,
                side=order.side,
                quantity=order.filled_quantity,
                price=order.fill_price or 0.0,
                filled_at=order.filled_at or order.created_at,
                status=order.status,
                order_id=order.order_id,
            )
            for order in self.orders.values()
            if symbol is None or order.symbol == symbol
        ]

    async def get_account_balance(self) -> float:
        return self.balance

    def cancel_order(self, order_id: str) -> None:
        order = self.orders.get(order_id)
        if order is None:
            raise KeyError(f"Unknown order {order_id}")
        if order.status in (OrderStatus.NEW, OrderStatus.PARTIALLY_FILLED):
            order.status = OrderStatus.CANCELED

    def process_price(self, symbol: str, price: float) -> List[FillResult]:
        """Fill resting orders and bracket exits touched by ``price``."""

        fills: List[FillResult] = []
        for order in list(self.orders.values()):
            if order.symbol != symbol or order.status is not OrderStatus.NEW:
                continue
            fill_price = self._trigger_price(order, price)
            if fill_price is None:
                continue
            try:
                self._fill(order, fill_price)
            except BrokerRejectionError as exc:
                order.status = OrderStatus.REJECTED
                logger.warning(
                    "paper_order_rejected",
                    extra={"order_id": order.order_id, "reason": exc.category.value},
                )
                continue
            fills.append(self._result(order))
            if order.parent_id is not None:
                self._cancel_siblings(order)
        return fills

    # ------------------------------------------------------------------
    # Simulation internals
    def _trigger_price(self, order: PaperOrder, price: float) -> Optional[float]:
        buying = order.side is Side.BUY
        if order.order_type is OrderType.MARKET:
            return price
        if order.order_type is OrderType.LIMIT:
            if (buying and price <= order.limit_price) or (not buying and price >= order.limit_price):
                return order.limit_price
            return None
        if order.order_type in (OrderType.STOP, OrderType.STOP_LIMIT):
            if (buying and price >= order.stop_price) or (not buying and price <= order.stop_price):
                return order.limit_price if order.order_type is OrderType.STOP_LIMIT else price
            return None
        # Trailing stop: follow the best price seen since submission.
        if order.watermark is None:
            order.watermark = price
        order.watermark = min(order.watermark, price) if buying else max(order.watermark, price)
        if order.trail_percent:
            offset = order.watermark * order.trail_percent / 100
        else:
            offset = order.trail_price or 0.0
        stop = order.watermark + offset if buying else order.watermark - offset
        if (buying and price >= stop) or (not buying and price <= stop):
            return price
        return None

    def _fill(self, order: PaperOrder, fill_price: float) -> None:
        if order.quantity.kind == "quote_notional":
            quantity = floor_to_step(order.quantity.value / fill_price, self.rules.quantity_step)
        else:
            quantity = float(order.quantity.value)
        cost = quantity * fill_price

        if order.side is Side.BUY:
            if cost > self.balance:
                raise BrokerRejectionError(
                    BrokerErrorCategory.INSUFFICIENT_FUNDS,
                    "Account has insufficient balance for requested action.",
                )
            self.balance -= cost
            self.holdings[order.symbol] = self.holdings.get(order.symbol, 0.0) + quantity
        else:
            held = self.holdings.get(order.symbol, 0.0)
            if quantity > held + 1e-12:
                raise BrokerRejectionError(
                    BrokerErrorCategory.INSUFFICIENT_FUNDS,
                    f"insufficient qty available for order (requested: {quantity}, available: {held})",
                )
            self.balance += cost
            self.holdings[order.symbol] = max(held - quantity, 0.0)

        order.status = OrderStatus.FILLED
        order.filled_quantity = quantity
        order.fill_price = fill_price
        order.filled_at = self._clock()

        if order.bracket is not None:
            self._attach_exits(order)

    def _attach_exits(self, parent: PaperOrder) -> None:
        closing = parent.side.closing
        exit_kind = "shares" if parent.quantity.kind == "shares" else "base_qty"
        exit_size = QuantitySpec(kind=exit_kind, value=parent.filled_quantity)
        take_profit = PaperOrder(
            order_id=self._next_order_id(),
            symbol=parent.symbol,
            side=closing,
            order_type=OrderType.LIMIT,
            quantity=exit_size,
            limit_price=parent.bracket.take_profit_price,
            created_at=self._clock(),
            parent_id=parent.order_id,
        )
        stop_loss = PaperOrder(
            order_id=self._next_order_id(),
            symbol=parent.symbol,
            side=closing,
            order_type=OrderType.STOP,
            quantity=exit_size,
            stop_price=parent.bracket.stop_loss_price,
            created_at=self._clock(),
            parent_id=parent.order_id,
        )
        for leg in (take_profit, stop_loss):
            self.orders[leg.order_id] = leg

    def _cancel_siblings(self, filled_leg: PaperOrder) -> None:
        for order in self.orders.values():
            if (
                order.parent_id == filled_leg.parent_id
                and order.order_id != filled_leg.order_id
                and order.status is OrderStatus.NEW
            ):
                order.status = OrderStatus.CANCELED

    def _result(self, order: PaperOrder) -> FillResult:
        legs = [o for o in self.orders.values() if o.parent_id == order.order_id]
        take_profit_id = next((o.order_id for o in legs if o.order_type is OrderType.LIMIT), None)
        stop_loss_id = next((o.order_id for o in legs if o.order_type is OrderType.STOP), None)
        return FillResult(
            order_id=order.order_id,
            status=order.status,
            filled_quantity=order.filled_quantity,
            average_price=order.fill_price,
            take_profit_order_id=take_profit_id,
            stop_loss_order_id=stop_loss_id,
        )

    def _next_order_id(self) -> str:
        self._order_seq += 1
        return f"paper-{self._order_seq}"


__all__ = ["PaperBroker", "PaperOrder"]
