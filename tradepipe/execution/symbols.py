"""Map display-form asset identifiers to the symbol each venue expects."""
from __future__ import annotations

import re

from tradepipe.core.errors import InvalidSymbolError
from tradepipe.execution.types import Venue

QUOTE_SUFFIXES = ("USDT", "USDC", "BUSD", "USD")

_SEPARATORS = re.compile(r"[\s/\-_:]+")
_PAIR_SPLIT = re.compile(r"\s*/\s*")


def normalize_symbol(raw: str, venue: Venue, quote_asset: str = "USDT") -> str:
    """Return the canonical venue symbol for ``raw``.

    >>> normalize_symbol("BTC / USDT", Venue.CRYPTO_SPOT)
    'BTCUSDT'
    >>> normalize_symbol(" aapl ", Venue.EQUITIES)
    'AAPL'
    """

    if raw is None:
        raise InvalidSymbolError("Invalid trading symbol: empty")
    text = str(raw).strip().upper()

    if Venue(venue) is Venue.EQUITIES:
        # "AAPL / USD" is the display pair of the AAPL ticker.
        ticker = _PAIR_SPLIT.split(text, maxsplit=1)[0].strip()
        if not ticker or ticker in QUOTE_SUFFIXES:
            raise InvalidSymbolError(f"Invalid stock symbol: {raw!r}")
        return ticker

    base = base_asset(_SEPARATORS.sub("", text), quote_asset)
    if not base or base in QUOTE_SUFFIXES or base == quote_asset.upper():
        # A bare quote currency means the signal carried no base asset.
        raise InvalidSymbolError(f"Invalid trading symbol: {raw!r}")
    return f"{base}{quote_asset.upper()}"


def base_asset(symbol: str, quote_asset: str = "USDT") -> str:
    """Strip a trailing quote currency from a compact spot symbol."""

    text = symbol.upper()
    suffixes = (quote_asset.upper(),) + tuple(s for s in QUOTE_SUFFIXES if s != quote_asset.upper())
    for suffix in suffixes:
        if text.endswith(suffix) and len(text) > len(suffix):
            return text[: -len(suffix)]
    return text


__all__ = ["normalize_symbol", "base_asset", "QUOTE_SUFFIXES"]
