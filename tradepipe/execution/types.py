"""Common execution data models."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Literal, Optional


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

    @property
    def closing(self) -> "Side":
        return Side.SELL if self is Side.BUY else Side.BUY


class Venue(str, Enum):
    """Brokerage back ends the pipeline can route to."""

    CRYPTO_SPOT = "crypto_spot"
    EQUITIES = "equities"


class OrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"
    STOP = "stop"
    STOP_LIMIT = "stop_limit"
    TRAILING_STOP = "trailing_stop"


class TimeInForce(str, Enum):
    DAY = "day"
    GTC = "gtc"
    OPG = "opg"
    CLS = "cls"
    IOC = "ioc"
    FOK = "fok"


class OrderStatus(str, Enum):
    """Simplified order status enumeration."""

    NEW = "NEW"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELED = "CANCELED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "OrderStatus":
        """Normalise venue specific spellings (``filled``, ``cancelled``)."""

        value = (raw or "").strip().upper()
        if value == "CANCELLED":
            value = "CANCELED"
        try:
            return cls(value)
        except ValueError:
            return cls.NEW


QuantityKind = Literal["base_qty", "quote_notional", "shares"]
PositionUnit = Literal["base_asset", "shares"]


@dataclass(frozen=True)
class VenueRules:
    """Granularity rules a venue imposes on order quantities and prices."""

    venue: Venue
    quantity_step: float
    min_quantity: float
    price_decimals: int
    unit: PositionUnit
    quote_asset: str = "USD"


EQUITIES_RULES = VenueRules(
    venue=Venue.EQUITIES,
    quantity_step=1.0,
    min_quantity=1.0,
    price_decimals=2,
    unit="shares",
    quote_asset="USD",
)

CRYPTO_SPOT_RULES = VenueRules(
    venue=Venue.CRYPTO_SPOT,
    quantity_step=0.00000001,
    min_quantity=0.00001,
    price_decimals=8,
    unit="base_asset",
    quote_asset="USDT",
)


@dataclass(frozen=True)
class SizedPosition:
    """Tradable quantity and its cost at the sizing price."""

    quantity: float
    total_cost: float
    unit: PositionUnit


@dataclass(frozen=True)
class QuantitySpec:
    """How an order expresses its size on the wire."""

    kind: QuantityKind
    value: float


@dataclass(frozen=True)
class BracketLegs:
    take_profit_price: float
    stop_loss_price: float


@dataclass(frozen=True)
class OrderParams:
    """User-chosen order parameters, before venue validation."""

    order_type: OrderType = OrderType.MARKET
    time_in_force: TimeInForce = TimeInForce.DAY
    extended_hours: bool = False
    bracket: bool = False
    limit_price: Optional[float] = None
    stop_price: Optional[float] = None
    trail_price: Optional[float] = None
    trail_percent: Optional[float] = None


@dataclass(frozen=True)
class OrderRequest:
    """Venue-ready order.  Built once per submission attempt."""

    symbol: str
    side: Side
    order_type: OrderType
    quantity: QuantitySpec
    time_in_force: TimeInForce
    extended_hours: bool = False
    bracket: Optional[BracketLegs] = None
    limit_price: Optional[float] = None
    stop_price: Optional[float] = None
    trail_price: Optional[float] = None
    trail_percent: Optional[float] = None
    client_tag: Optional[str] = None


@dataclass(frozen=True)
class FilledOrder:
    """Historical order record as reported by a broker."""

    symbol: str
    side: Side
    quantity: float
    price: float
    filled_at: datetime
    status: OrderStatus
    order_id: Optional[str] = None


@dataclass
class FillResult:
    """Result of submitting an order."""

    order_id: str
    status: OrderStatus
    filled_quantity: float = 0.0
    average_price: Optional[float] = None
    take_profit_order_id: Optional[str] = None
    stop_loss_order_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


__all__ = [
    "Side",
    "Venue",
    "OrderType",
    "TimeInForce",
    "OrderStatus",
    "VenueRules",
    "EQUITIES_RULES",
    "CRYPTO_SPOT_RULES",
    "SizedPosition",
    "QuantitySpec",
    "BracketLegs",
    "OrderParams",
    "OrderRequest",
    "FilledOrder",
    "FillResult",
]
