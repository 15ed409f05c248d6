"""Position reconstruction from order history."""
from tradepipe.portfolio.ledger import (
    LedgerSnapshot,
    OverSell,
    Position,
    PositionLedger,
    fold_symbol,
    rebuild_positions,
)

__all__ = [
    "LedgerSnapshot",
    "OverSell",
    "Position",
    "PositionLedger",
    "fold_symbol",
    "rebuild_positions",
]
