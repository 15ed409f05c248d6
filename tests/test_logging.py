import json
import logging

from tradepipe.core.logging import JsonFormatter, get_logger, setup_logging


def test_json_formatter_merges_extra_fields():
    record = logging.makeLogRecord(
        {"name": "tradepipe.test", "levelname": "INFO", "msg": "order_submitted", "symbol": "AAPL", "quantity": 5}
    )

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "order_submitted"
    assert payload["level"] == "INFO"
    assert payload["symbol"] == "AAPL"
    assert payload["quantity"] == 5
    assert "args" not in payload


def test_setup_logging_writes_json_lines(tmp_path):
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    log_file = tmp_path / "logs" / "tradepipe.log"
    try:
        setup_logging(log_file=log_file, console=False)
        get_logger("tradepipe.test").info("ledger_rebuilt", extra={"generation": 3})
        for handler in root.handlers:
            handler.flush()
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)

    line = log_file.read_text(encoding="utf-8").strip().splitlines()[-1]
    payload = json.loads(line)
    assert payload["message"] == "ledger_rebuilt"
    assert payload["generation"] == 3


def test_formatter_stamps_the_configured_venue():
    formatter = JsonFormatter(venue="crypto_spot")
    plain = logging.makeLogRecord({"name": "tradepipe.test", "levelname": "INFO", "msg": "order_built"})
    tagged = logging.makeLogRecord(
        {"name": "tradepipe.test", "levelname": "WARNING", "msg": "broker_rejection", "venue": "binance"}
    )

    assert json.loads(formatter.format(plain))["venue"] == "crypto_spot"
    assert json.loads(formatter.format(tagged))["venue"] == "binance"
    assert "venue" not in json.loads(JsonFormatter().format(plain))
