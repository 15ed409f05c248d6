"""Reconstruct open positions from the history of filled orders.

Positions are never stored on their own: every refresh folds the full,
time-ordered history again, so the ledger cannot drift from the broker.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional

import pandas as pd

from tradepipe.core.logging import get_logger
from tradepipe.execution.types import FilledOrder, OrderStatus, Side

logger = get_logger(__name__)

POSITION_COLUMNS = ["symbol", "quantity", "avg_entry_price", "total_cost"]

# Residue below this after a sell is float noise, not a holding.
QUANTITY_EPSILON = 1e-12


@dataclass(frozen=True)
class Position:
    symbol: str
    quantity: float
    avg_entry_price: float
    total_cost: float


@dataclass(frozen=True)
class OverSell:
    """A sell larger than the quantity the history accounts for."""

    symbol: str
    order_id: Optional[str]
    requested: float
    tracked: float


@dataclass(frozen=True)
class LedgerSnapshot:
    positions: Dict[str, Position] = field(default_factory=dict)
    over_sells: List[OverSell] = field(default_factory=list)
    generation: int = 0


def fold_symbol(symbol: str, orders: Iterable[FilledOrder], over_sells: Optional[List[OverSell]] = None) -> Position:
    """Fold the filled orders of one symbol, oldest first, into a position."""

    quantity = 0.0
    total_cost = 0.0
    avg_price = 0.0
    for order in orders:
        if order.side is Side.BUY:
            new_quantity = quantity + order.quantity
            new_cost = total_cost + order.quantity * order.price
            avg_price = new_cost / new_quantity if new_quantity else 0.0
            quantity, total_cost = new_quantity, new_cost
            continue

        if order.quantity > quantity + QUANTITY_EPSILON and over_sells is not None:
            over_sells.append(OverSell(symbol, order.order_id, order.quantity, quantity))
        quantity -= order.quantity
        if quantity <= QUANTITY_EPSILON:
            # Positions do not go short in this model.
            quantity, total_cost, avg_price = 0.0, 0.0, 0.0
        else:
            total_cost = quantity * avg_price
    return Position(symbol=symbol, quantity=quantity, avg_entry_price=avg_price, total_cost=total_cost)


def rebuild_positions(
    orders: Iterable[FilledOrder],
    over_sells: Optional[List[OverSell]] = None,
) -> Dict[str, Position]:
    """Return open positions keyed by symbol.

    Only ``FILLED`` records take part; partial fills, cancellations and
    rejections are ignored.  Records are sorted by fill time per symbol,
    so the input order does not matter.
    """

    by_symbol: Dict[str, List[FilledOrder]] = defaultdict(list)
    for order in orders:
        if order.status is OrderStatus.FILLED and order.quantity > 0:
            by_symbol[order.symbol].append(order)

    positions: Dict[str, Position] = {}
    for symbol, history in by_symbol.items():
        history.sort(key=lambda o: o.filled_at)
        position = fold_symbol(symbol, history, over_sells)
        if position.quantity > 0:
            positions[symbol] = position
    return positions


class PositionLedger:
    """Holds the most recently committed reconstruction of open positions."""

    def __init__(self) -> None:
        self._snapshot = LedgerSnapshot()
        self._generation = 0

    @property
    def snapshot(self) -> LedgerSnapshot:
        return self._snapshot

    @property
    def positions(self) -> Dict[str, Position]:
        return dict(self._snapshot.positions)

    def begin(self) -> int:
        """Reserve a generation number for a recompute about to start."""

        self._generation += 1
        return self._generation

    def commit(self, orders: Iterable[FilledOrder], generation: Optional[int] = None) -> bool:
        """Rebuild from ``orders`` and publish the result.

        A result whose generation is older than the latest reserved one is
        dropped, so only the newest recompute is ever visible.
        """

        if generation is None:
            generation = self.begin()
        over_sells: List[OverSell] = []
        positions = rebuild_positions(orders, over_sells)
        if generation < self._generation:
            logger.debug("ledger_result_discarded", extra={"generation": generation, "latest": self._generation})
            return False
        for item in over_sells:
            logger.warning(
                "ledger_over_sell",
                extra={
                    "symbol": item.symbol,
                    "order_id": item.order_id,
                    "requested": item.requested,
                    "tracked": item.tracked,
                },
            )
        self._snapshot = LedgerSnapshot(positions=positions, over_sells=over_sells, generation=generation)
        logger.info("ledger_rebuilt", extra={"generation": generation, "open_positions": len(positions)})
        return True

    async def refresh(self, gateway) -> bool:
        """Fetch the full order history from ``gateway`` and commit a rebuild."""

        generation = self.begin()
        orders = await gateway.list_filled_orders()
        return self.commit(orders, generation)

    def close_position_quantity(self, symbol: str) -> float:
        """Quantity a "close position" market sell should use."""

        position = self._snapshot.positions.get(symbol)
        return position.quantity if position else 0.0

    def to_frame(self) -> pd.DataFrame:
        """Open positions as a DataFrame, one row per symbol."""

        rows = [
            {
                "symbol": p.symbol,
                "quantity": p.quantity,
                "avg_entry_price": p.avg_entry_price,
                "total_cost": p.total_cost,
            }
            for p in sorted(self._snapshot.positions.values(), key=lambda p: p.symbol)
        ]
        return pd.DataFrame(rows, columns=POSITION_COLUMNS)

    def mark_to_market(self, prices: Mapping[str, float]) -> pd.DataFrame:
        """Add market value and unrealized P/L columns using ``prices``.

        Symbols without a known price are valued at cost basis.
        """

        frame = self.to_frame()
        frame["current_price"] = frame["symbol"].map(lambda s: prices.get(s)).astype("float64")
        priced = frame["current_price"].notna()
        frame["market_value"] = frame["total_cost"].where(~priced, frame["quantity"] * frame["current_price"])
        frame["unrealized_pl"] = frame["market_value"] - frame["total_cost"]
        cost = frame["total_cost"].where(frame["total_cost"] != 0)
        frame["unrealized_pl_pct"] = (frame["unrealized_pl"] / cost * 100).fillna(0.0)
        return frame


__all__ = [
    "Position",
    "OverSell",
    "LedgerSnapshot",
    "PositionLedger",
    "fold_symbol",
    "rebuild_positions",
]
