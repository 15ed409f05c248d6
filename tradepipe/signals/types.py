"""Strict signal type at the pipeline boundary.

Strategy services deliver loosely shaped payloads with many optional
fields. :meth:`Signal.from_payload` resolves them once, so nothing
downstream has to deal with missing or alternative keys.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

from tradepipe.core.errors import InvalidLevelsError, InvalidSignalError
from tradepipe.core.logging import get_logger
from tradepipe.execution.types import Side

logger = get_logger(__name__)

HIGH_CONFIDENCE_SCORE = 0.7
MEDIUM_CONFIDENCE_SCORE = 0.4

_SIDE_ALIASES = {
    "BUY": Side.BUY,
    "LONG": Side.BUY,
    "SELL": Side.SELL,
    "SHORT": Side.SELL,
}


class Confidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @classmethod
    def from_score(cls, score: float) -> "Confidence":
        if score >= HIGH_CONFIDENCE_SCORE:
            return cls.HIGH
        if score >= MEDIUM_CONFIDENCE_SCORE:
            return cls.MEDIUM
        return cls.LOW


@dataclass(frozen=True)
class ExitDefaults:
    """Exit percentages used when neither the signal nor the strategy sets one."""

    stop_loss_pct: float = 5.0
    take_profit_pct: float = 10.0


@dataclass(frozen=True)
class StrategyDefaults:
    """Per-strategy fallback exit percentages."""

    stop_loss_pct: Optional[float] = None
    take_profit_pct: Optional[float] = None


@dataclass(frozen=True)
class Signal:
    """Trade recommendation produced by an external strategy engine."""

    symbol_display: str
    side: Side
    confidence: Confidence
    reference_price: float
    suggested_stop_loss_pct: Optional[float] = None
    suggested_take_profit_pct: Optional[float] = None
    realtime_price: Optional[float] = None

    @property
    def entry_price(self) -> float:
        """Realtime price when known, otherwise the reference price."""

        if self.realtime_price is not None and self.realtime_price > 0:
            return self.realtime_price
        return self.reference_price

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Signal":
        """Build a signal from a strategy-service payload.

        Raises :class:`InvalidSignalError` when no side or no positive
        price can be found.
        """

        asset = payload.get("asset") or {}
        symbol = _first_text(
            payload.get("symbol"),
            payload.get("assetId"),
            payload.get("asset_id"),
            asset.get("symbol"),
            asset.get("asset_id"),
            payload.get("pair"),
        )
        if not symbol:
            raise InvalidSignalError("Signal carries no symbol")

        raw_side = _first_text(payload.get("type"), payload.get("side"), payload.get("action"))
        side = _SIDE_ALIASES.get((raw_side or "").upper())
        if side is None:
            raise InvalidSignalError(f"Signal for {symbol} has no usable side: {raw_side!r}")

        label = _first_text(payload.get("confidence"))
        if label and label.upper() in Confidence.__members__:
            confidence = Confidence(label.upper())
        else:
            score = _as_float(payload.get("final_score"), payload.get("score")) or 0.0
            confidence = Confidence.from_score(score)

        realtime = payload.get("realtime_data") or {}
        realtime_price = _positive(realtime.get("price"))
        reference_price = _positive(
            payload.get("entry_price"),
            payload.get("entryPrice"),
            payload.get("price_usd"),
            payload.get("price"),
            payload.get("last_price"),
            asset.get("price"),
        )
        if reference_price is None:
            reference_price = realtime_price
        if reference_price is None:
            raise InvalidSignalError(f"Signal for {symbol} has no positive price")

        signal = cls(
            symbol_display=symbol,
            side=side,
            confidence=confidence,
            reference_price=reference_price,
            suggested_stop_loss_pct=_percent(
                payload.get("stop_loss_pct"), payload.get("stopLoss"), payload.get("stop_loss")
            ),
            suggested_take_profit_pct=_percent(
                payload.get("take_profit_pct"), payload.get("takeProfit1"), payload.get("take_profit")
            ),
            realtime_price=realtime_price,
        )
        logger.debug(
            "signal_resolved",
            extra={
                "symbol": signal.symbol_display,
                "side": signal.side.value,
                "confidence": signal.confidence.value,
                "entry_price": signal.entry_price,
            },
        )
        return signal


def resolve_exit_percentages(
    signal: Signal,
    strategy: Optional[StrategyDefaults] = None,
    defaults: ExitDefaults = ExitDefaults(),
    *,
    stop_loss_override: Optional[float] = None,
    take_profit_override: Optional[float] = None,
) -> Tuple[float, float]:
    """Return ``(stop_loss_pct, take_profit_pct)`` for ``signal``.

    Precedence for each value: explicit override, then the signal's own
    suggestion, then the strategy default, then the global default.
    Overrides must lie in ``(0, 100]``.
    """

    for name, override in (("stop loss", stop_loss_override), ("take profit", take_profit_override)):
        if override is not None and not 0 < override <= 100:
            raise InvalidLevelsError(f"Please enter a valid {name} percentage (0-100)")

    strategy = strategy or StrategyDefaults()
    stop_loss = _first_number(
        stop_loss_override,
        signal.suggested_stop_loss_pct,
        strategy.stop_loss_pct,
        defaults.stop_loss_pct,
    )
    take_profit = _first_number(
        take_profit_override,
        signal.suggested_take_profit_pct,
        strategy.take_profit_pct,
        defaults.take_profit_pct,
    )
    return stop_loss, take_profit


def parse_percent(value: Any) -> Optional[float]:
    """Parse ``5``, ``"5"`` or ``"5%"``; zero and garbage become ``None``."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.replace("%", "").strip()
        if not value:
            return None
    try:
        number = abs(float(value))
    except (TypeError, ValueError):
        return None
    return number or None


def _percent(*candidates: Any) -> Optional[float]:
    for candidate in candidates:
        number = parse_percent(candidate)
        if number is not None:
            return number
    return None


def _first_number(*candidates: Optional[float]) -> float:
    for candidate in candidates:
        if candidate is not None and candidate > 0:
            return float(candidate)
    raise InvalidLevelsError("No exit percentage could be resolved")


def _first_text(*candidates: Any) -> Optional[str]:
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return None


def _as_float(*candidates: Any) -> Optional[float]:
    for candidate in candidates:
        if candidate is None or isinstance(candidate, bool):
            continue
        try:
            return float(candidate)
        except (TypeError, ValueError):
            continue
    return None


def _positive(*candidates: Any) -> Optional[float]:
    for candidate in candidates:
        number = _as_float(candidate)
        if number is not None and number > 0:
            return number
    return None


__all__ = [
    "Confidence",
    "ExitDefaults",
    "StrategyDefaults",
    "Signal",
    "resolve_exit_percentages",
    "parse_percent",
]
