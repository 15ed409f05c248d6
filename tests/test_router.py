import asyncio

import pytest

from tradepipe.core.errors import (
    BrokerErrorCategory,
    BrokerRejectionError,
    InsufficientBalanceError,
    InvalidLevelsError,
    InvalidSizeError,
)
from tradepipe.data.freshness import BALANCE_FEED, FreshnessScheduler, register_account_feeds
from tradepipe.execution.paper import PaperBroker
from tradepipe.execution.router import OrderRouter
from tradepipe.execution.types import (
    CRYPTO_SPOT_RULES,
    EQUITIES_RULES,
    OrderParams,
    OrderStatus,
    OrderType,
    Side,
    TimeInForce,
)
from tradepipe.portfolio import PositionLedger
from tradepipe.risk.sizing import SizingMode
from tradepipe.signals import Signal


def _signal(symbol, price, side="buy", **extra):
    return Signal.from_payload({"symbol": symbol, "side": side, "price": price, **extra})


def _crypto_router(balance=1_000.0, prices=None):
    if prices is None:
        prices = {"BTCUSDT": 40_000.0}
    broker = PaperBroker(prices.get, CRYPTO_SPOT_RULES, initial_balance=balance)
    ledger = PositionLedger()
    return broker, ledger, OrderRouter(broker, ledger)


def test_crypto_signal_is_executed_and_ledger_refreshed():
    broker, ledger, router = _crypto_router()

    report = asyncio.run(router.execute_signal(_signal("BTC / USDT", 40_000.0), SizingMode.NOTIONAL, 100.0))

    assert report.request.symbol == "BTCUSDT"
    assert report.request.quantity.kind == "quote_notional"
    assert report.sized.quantity == pytest.approx(0.0025)
    assert report.levels.stop_loss == pytest.approx(38_000.0)
    assert report.levels.take_profit == pytest.approx(44_000.0)
    assert report.levels.max_loss_amount == pytest.approx(5.0)
    assert report.result.status is OrderStatus.FILLED
    assert ledger.positions["BTCUSDT"].quantity == pytest.approx(0.0025)
    assert broker.balance == pytest.approx(900.0)


def test_equities_bracket_uses_signal_exits():
    broker = PaperBroker({"AAPL": 100.0}.get, EQUITIES_RULES, initial_balance=1_000.0)
    router = OrderRouter(broker, PositionLedger())
    signal = _signal("AAPL", 100.0, stopLoss="4%", takeProfit1="8%")

    report = asyncio.run(
        router.execute_signal(signal, SizingMode.PERCENT_OF_BALANCE, 50.0, OrderParams(bracket=True))
    )

    assert report.request.quantity.value == 5
    assert report.request.time_in_force is TimeInForce.GTC
    assert report.request.bracket.stop_loss_price == pytest.approx(96.0)
    assert report.request.bracket.take_profit_price == pytest.approx(108.0)
    assert report.result.take_profit_order_id is not None
    assert report.result.stop_loss_order_id is not None


def test_custom_percentages_override_the_signal():
    _, _, router = _crypto_router()
    signal = _signal("BTC", 40_000.0, stopLoss=3)

    report = asyncio.run(
        router.execute_signal(signal, SizingMode.NOTIONAL, 100.0, stop_loss_pct=2.0, take_profit_pct=6.0)
    )

    assert report.levels.stop_loss == pytest.approx(39_200.0)
    assert report.levels.take_profit == pytest.approx(42_400.0)


def test_limit_orders_are_sized_at_the_limit_price():
    broker = PaperBroker({"AAPL": 100.0}.get, EQUITIES_RULES, initial_balance=1_000.0)
    router = OrderRouter(broker, PositionLedger())
    params = OrderParams(order_type=OrderType.LIMIT, limit_price=90.0)

    report = asyncio.run(router.execute_signal(_signal("AAPL", 100.0), SizingMode.NOTIONAL, 450.0, params))

    assert report.sized.quantity == 5
    assert report.sized.total_cost == pytest.approx(450.0)
    assert report.request.limit_price == pytest.approx(90.0)
    assert report.result.status is OrderStatus.NEW


def test_validation_failure_never_reaches_the_broker():
    broker, ledger, router = _crypto_router(balance=50.0)

    with pytest.raises(InsufficientBalanceError):
        asyncio.run(
            router.execute_signal(_signal("BTC", 40_000.0), SizingMode.FIXED_QUANTITY, 0.01)
        )

    assert broker.orders == {}
    assert ledger.snapshot.generation == 0


def test_stop_loss_beyond_the_entry_never_reaches_the_broker():
    broker, _, router = _crypto_router()
    signal = _signal("BTC", 40_000.0, stopLoss="150%")

    with pytest.raises(InvalidLevelsError):
        asyncio.run(router.execute_signal(signal, SizingMode.NOTIONAL, 100.0, OrderParams(bracket=True)))

    assert broker.orders == {}


def test_broker_rejection_leaves_ledger_untouched():
    broker, ledger, router = _crypto_router(prices={})

    with pytest.raises(BrokerRejectionError) as excinfo:
        asyncio.run(router.execute_signal(_signal("DOGE", 0.1), SizingMode.NOTIONAL, 10.0))

    assert excinfo.value.category is BrokerErrorCategory.INVALID_SYMBOL_AT_VENUE
    assert ledger.snapshot.generation == 0


def test_close_position_sells_tracked_quantity():
    broker, ledger, router = _crypto_router()

    async def scenario():
        await router.execute_signal(_signal("BTC", 40_000.0), SizingMode.NOTIONAL, 100.0)
        return await router.close_position("btc/usdt")

    report = asyncio.run(scenario())

    assert report.request.side is Side.SELL
    assert report.request.quantity.kind == "base_qty"
    assert report.request.quantity.value == pytest.approx(0.0025)
    assert "BTCUSDT" not in ledger.positions
    assert broker.holdings["BTCUSDT"] == pytest.approx(0.0)


def test_close_position_when_flat_is_rejected():
    _, _, router = _crypto_router()

    with pytest.raises(InvalidSizeError):
        asyncio.run(router.close_position("BTCUSDT"))


def test_successful_order_invalidates_balance_feed():
    broker = PaperBroker({"BTCUSDT": 40_000.0}.get, CRYPTO_SPOT_RULES, initial_balance=1_000.0)
    ledger = PositionLedger()
    scheduler = FreshnessScheduler()
    register_account_feeds(scheduler, broker, ledger)
    router = OrderRouter(broker, ledger, scheduler)

    async def scenario():
        await scheduler.refresh(BALANCE_FEED)
        before = scheduler.value(BALANCE_FEED)
        await router.execute_signal(_signal("BTC", 40_000.0), SizingMode.NOTIONAL, 100.0)
        await asyncio.sleep(0.01)
        return before, scheduler.value(BALANCE_FEED)

    before, after = asyncio.run(scenario())

    assert before == pytest.approx(1_000.0)
    assert after == pytest.approx(900.0)
