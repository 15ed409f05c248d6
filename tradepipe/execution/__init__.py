"""Order construction and broker adapters.

The venue adapters (``binance_spot``, ``alpaca_equities``) and the
``router`` are imported from their modules directly.
"""
from tradepipe.execution.builder import OrderBuilder
from tradepipe.execution.gateway import BrokerAdapter, encode_quantity
from tradepipe.execution.paper import PaperBroker
from tradepipe.execution.symbols import base_asset, normalize_symbol
from tradepipe.execution.types import (
    CRYPTO_SPOT_RULES,
    EQUITIES_RULES,
    FilledOrder,
    FillResult,
    OrderParams,
    OrderRequest,
    OrderStatus,
    OrderType,
    Side,
    TimeInForce,
    Venue,
    VenueRules,
)

__all__ = [
    "OrderBuilder",
    "BrokerAdapter",
    "encode_quantity",
    "PaperBroker",
    "base_asset",
    "normalize_symbol",
    "CRYPTO_SPOT_RULES",
    "EQUITIES_RULES",
    "FilledOrder",
    "FillResult",
    "OrderParams",
    "OrderRequest",
    "OrderStatus",
    "OrderType",
    "Side",
    "TimeInForce",
    "Venue",
    "VenueRules",
]
