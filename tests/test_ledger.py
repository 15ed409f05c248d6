import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from tradepipe.execution.types import FilledOrder, OrderStatus, Side
from tradepipe.portfolio import PositionLedger, fold_symbol, rebuild_positions

T0 = datetime(2024, 1, 2, 15, 30, tzinfo=timezone.utc)


def _order(side, quantity, price, minutes, symbol="AAPL", status=OrderStatus.FILLED, order_id=None):
    return FilledOrder(
        symbol=symbol,
        side=side,
        quantity=quantity,
        price=price,
        filled_at=T0 + timedelta(minutes=minutes),
        status=status,
        order_id=order_id,
    )


class FakeGateway:
    def __init__(self, orders):
        self.orders = orders
        self.calls = 0

    async def list_filled_orders(self, symbol=None):
        self.calls += 1
        return list(self.orders)


def test_buys_and_partial_sell_keep_average_cost():
    orders = [
        _order(Side.SELL, 15, 130.0, 3),
        _order(Side.BUY, 10, 100.0, 1),
        _order(Side.BUY, 10, 120.0, 2),
    ]

    positions = rebuild_positions(orders)

    position = positions["AAPL"]
    assert position.quantity == pytest.approx(5)
    assert position.avg_entry_price == pytest.approx(110.0)
    assert position.total_cost == pytest.approx(550.0)


def test_only_filled_records_count():
    orders = [
        _order(Side.BUY, 10, 100.0, 1),
        _order(Side.BUY, 50, 90.0, 2, status=OrderStatus.CANCELED),
        _order(Side.BUY, 50, 90.0, 3, status=OrderStatus.PARTIALLY_FILLED),
        _order(Side.SELL, 10, 95.0, 4, status=OrderStatus.REJECTED),
    ]

    position = rebuild_positions(orders)["AAPL"]

    assert position.quantity == pytest.approx(10)
    assert position.avg_entry_price == pytest.approx(100.0)


def test_closed_positions_are_dropped():
    orders = [
        _order(Side.BUY, 0.5, 40_000.0, 1, symbol="BTCUSDT"),
        _order(Side.SELL, 0.2, 41_000.0, 2, symbol="BTCUSDT"),
        _order(Side.SELL, 0.3, 42_000.0, 3, symbol="BTCUSDT"),
        _order(Side.BUY, 2, 2_500.0, 4, symbol="ETHUSDT"),
    ]

    positions = rebuild_positions(orders)

    assert set(positions) == {"ETHUSDT"}


def test_over_sell_resets_to_zero_and_is_recorded():
    over_sells = []
    position = fold_symbol(
        "AAPL",
        [_order(Side.BUY, 5, 100.0, 1), _order(Side.SELL, 8, 110.0, 2, order_id="s-1")],
        over_sells,
    )

    assert position.quantity == 0
    assert position.total_cost == 0
    assert len(over_sells) == 1
    assert over_sells[0].order_id == "s-1"
    assert over_sells[0].requested == pytest.approx(8)
    assert over_sells[0].tracked == pytest.approx(5)


def test_buy_after_flat_starts_a_new_cost_basis():
    orders = [
        _order(Side.BUY, 5, 100.0, 1),
        _order(Side.SELL, 5, 120.0, 2),
        _order(Side.BUY, 2, 80.0, 3),
    ]

    position = rebuild_positions(orders)["AAPL"]

    assert position.quantity == pytest.approx(2)
    assert position.avg_entry_price == pytest.approx(80.0)


def test_stale_generation_is_not_committed():
    ledger = PositionLedger()
    older = ledger.begin()
    newer = ledger.begin()

    assert ledger.commit([_order(Side.BUY, 1, 10.0, 1)], newer)
    assert not ledger.commit([_order(Side.BUY, 99, 10.0, 1)], older)
    assert ledger.positions["AAPL"].quantity == pytest.approx(1)
    assert ledger.snapshot.generation == newer


def test_refresh_reads_full_history():
    gateway = FakeGateway([_order(Side.BUY, 3, 50.0, 1), _order(Side.SELL, 1, 55.0, 2)])
    ledger = PositionLedger()

    assert asyncio.run(ledger.refresh(gateway))
    assert gateway.calls == 1
    assert ledger.close_position_quantity("AAPL") == pytest.approx(2)
    assert ledger.close_position_quantity("MSFT") == 0.0


def test_frames_mark_positions_to_market():
    ledger = PositionLedger()
    ledger.commit(
        [
            _order(Side.BUY, 10, 100.0, 1),
            _order(Side.BUY, 4, 50.0, 2, symbol="MSFT"),
        ]
    )

    frame = ledger.mark_to_market({"AAPL": 110.0})

    assert list(frame["symbol"]) == ["AAPL", "MSFT"]
    aapl = frame.set_index("symbol").loc["AAPL"]
    msft = frame.set_index("symbol").loc["MSFT"]
    assert aapl["market_value"] == pytest.approx(1_100.0)
    assert aapl["unrealized_pl"] == pytest.approx(100.0)
    assert aapl["unrealized_pl_pct"] == pytest.approx(10.0)
    assert msft["market_value"] == pytest.approx(200.0)
    assert msft["unrealized_pl"] == pytest.approx(0.0)


def test_empty_ledger_frame_has_columns():
    frame = PositionLedger().to_frame()

    assert frame.empty
    assert list(frame.columns) == ["symbol", "quantity", "avg_entry_price", "total_cost"]


def test_rebuilding_the_same_history_twice_is_idempotent():
    orders = [
        _order(Side.BUY, 10, 100.0, 1),
        _order(Side.BUY, 5, 130.0, 2),
        _order(Side.SELL, 4, 140.0, 3),
        _order(Side.BUY, 0.3, 41_000.0, 4, symbol="BTCUSDT"),
    ]

    assert rebuild_positions(orders) == rebuild_positions(orders)

    ledger = PositionLedger()
    ledger.commit(orders)
    first = dict(ledger.positions)
    ledger.commit(orders)

    assert ledger.positions == first
    assert ledger.positions == rebuild_positions(orders)
