"""Exception hierarchy shared by the order pipeline.

Validation errors are raised before anything reaches a broker and are
always recoverable by correcting the input.  :class:`BrokerRejectionError`
is only produced after a submission attempt and is never retried.
"""
from __future__ import annotations

import re
from enum import Enum
from typing import Optional


class TradePipeError(RuntimeError):
    """Base class for every error raised by the package."""


class OrderValidationError(TradePipeError, ValueError):
    """Input rejected before any network call."""


class InvalidSignalError(OrderValidationError):
    """Signal payload lacks a side or a usable price."""


class InvalidSymbolError(OrderValidationError):
    """Symbol could not be resolved to a tradable instrument."""


class InvalidSizeError(OrderValidationError):
    """Computed quantity is at or below the venue minimum."""


class InsufficientBalanceError(OrderValidationError):
    """Total cost exceeds the available balance."""

    def __init__(self, required: float, available: float) -> None:
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient balance. Need {required:.2f} but only have {available:.2f}"
        )


class InvalidLevelsError(OrderValidationError):
    """Entry price or exit percentages are out of range."""


class InvalidPriceError(OrderValidationError):
    """A limit, stop or trailing order lacks a positive reference price."""


class UnsupportedOrderError(OrderValidationError):
    """The venue cannot express the requested order type."""


class GatewayError(TradePipeError):
    """Transport failure talking to a broker after retries were exhausted."""


class BrokerErrorCategory(str, Enum):
    """Machine readable reason attached to a broker rejection."""

    MIN_NOTIONAL = "MIN_NOTIONAL"
    LOT_SIZE = "LOT_SIZE"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    MARKET_CLOSED = "MARKET_CLOSED"
    INVALID_SYMBOL_AT_VENUE = "INVALID_SYMBOL_AT_VENUE"
    UNKNOWN = "UNKNOWN"


_USER_MESSAGES = {
    BrokerErrorCategory.MIN_NOTIONAL: "Order value too small. Try increasing your investment amount.",
    BrokerErrorCategory.LOT_SIZE: "Invalid quantity size for this trading pair.",
    BrokerErrorCategory.INSUFFICIENT_FUNDS: "Insufficient balance to complete this trade.",
    BrokerErrorCategory.MARKET_CLOSED: (
        "Market is currently closed. Try again during market hours or enable extended hours."
    ),
    BrokerErrorCategory.INVALID_SYMBOL_AT_VENUE: "Symbol is not tradeable on this venue.",
}

# Binance numeric error codes with an unambiguous meaning.
_CODE_CATEGORIES = {
    -1121: BrokerErrorCategory.INVALID_SYMBOL_AT_VENUE,
    -2010: BrokerErrorCategory.INSUFFICIENT_FUNDS,
}

# Checked in order; the first match wins.
_TEXT_PATTERNS = (
    (re.compile(r"MIN_NOTIONAL|NOTIONAL", re.IGNORECASE), BrokerErrorCategory.MIN_NOTIONAL),
    (re.compile(r"LOT_SIZE", re.IGNORECASE), BrokerErrorCategory.LOT_SIZE),
    (re.compile(r"insufficient", re.IGNORECASE), BrokerErrorCategory.INSUFFICIENT_FUNDS),
    (re.compile(r"market is closed|market closed", re.IGNORECASE), BrokerErrorCategory.MARKET_CLOSED),
    (re.compile(r"invalid symbol|asset .* not found|not tradable", re.IGNORECASE),
     BrokerErrorCategory.INVALID_SYMBOL_AT_VENUE),
)


def classify_broker_error(message: str, code: Optional[int] = None) -> BrokerErrorCategory:
    """Map raw broker error text (and optional numeric code) to a category."""

    if code is not None and code in _CODE_CATEGORIES:
        return _CODE_CATEGORIES[code]
    text = message or ""
    for pattern, category in _TEXT_PATTERNS:
        if pattern.search(text):
            return category
    return BrokerErrorCategory.UNKNOWN


class BrokerRejectionError(TradePipeError):
    """A broker refused the submitted order."""

    def __init__(
        self,
        category: BrokerErrorCategory,
        message: str,
        *,
        code: Optional[int] = None,
    ) -> None:
        self.category = category
        self.message = message
        self.code = code
        super().__init__(f"{category.value}: {message}")

    @classmethod
    def from_broker(cls, message: str, code: Optional[int] = None) -> "BrokerRejectionError":
        return cls(classify_broker_error(message, code), message, code=code)

    @property
    def user_message(self) -> str:
        """Friendlier wording for the end user, falling back to the raw text."""

        return _USER_MESSAGES.get(self.category, self.message or "Failed to execute trade")


__all__ = [
    "TradePipeError",
    "OrderValidationError",
    "InvalidSignalError",
    "InvalidSymbolError",
    "InvalidSizeError",
    "InsufficientBalanceError",
    "InvalidLevelsError",
    "InvalidPriceError",
    "UnsupportedOrderError",
    "GatewayError",
    "BrokerErrorCategory",
    "BrokerRejectionError",
    "classify_broker_error",
]
