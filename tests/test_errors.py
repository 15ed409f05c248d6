import pytest

from tradepipe.core.errors import (
    BrokerErrorCategory,
    BrokerRejectionError,
    InsufficientBalanceError,
    OrderValidationError,
    TradePipeError,
    classify_broker_error,
)


@pytest.mark.parametrize(
    "message, code, expected",
    [
        ("Filter failure: MIN_NOTIONAL", None, BrokerErrorCategory.MIN_NOTIONAL),
        ("Filter failure: NOTIONAL", -1013, BrokerErrorCategory.MIN_NOTIONAL),
        ("Filter failure: LOT_SIZE", -1013, BrokerErrorCategory.LOT_SIZE),
        ("insufficient buying power", None, BrokerErrorCategory.INSUFFICIENT_FUNDS),
        ("Account has insufficient balance for requested action.", -2010, BrokerErrorCategory.INSUFFICIENT_FUNDS),
        ("market is closed", None, BrokerErrorCategory.MARKET_CLOSED),
        ("Invalid symbol.", -1121, BrokerErrorCategory.INVALID_SYMBOL_AT_VENUE),
        ("asset XYZ not found", None, BrokerErrorCategory.INVALID_SYMBOL_AT_VENUE),
        ("something odd happened", None, BrokerErrorCategory.UNKNOWN),
    ],
)
def test_classify_broker_error(message, code, expected):
    assert classify_broker_error(message, code) is expected


def test_known_codes_win_over_text():
    assert classify_broker_error("unexpected", -2010) is BrokerErrorCategory.INSUFFICIENT_FUNDS


def test_rejection_carries_user_message():
    error = BrokerRejectionError.from_broker("Filter failure: MIN_NOTIONAL", -1013)

    assert error.category is BrokerErrorCategory.MIN_NOTIONAL
    assert error.code == -1013
    assert error.user_message == "Order value too small. Try increasing your investment amount."


def test_unknown_rejection_falls_back_to_raw_text():
    error = BrokerRejectionError.from_broker("venue said no")

    assert error.user_message == "venue said no"


def test_hierarchy():
    error = InsufficientBalanceError(150.0, 100.0)

    assert isinstance(error, OrderValidationError)
    assert isinstance(error, ValueError)
    assert isinstance(error, TradePipeError)
    assert not isinstance(BrokerRejectionError(BrokerErrorCategory.UNKNOWN, "x"), OrderValidationError)
