import os

import pytest

from tradepipe.core.config import ConfigError, ConfigLoader
from tradepipe.execution.types import Venue


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith(("BINANCE_", "ALPACA_")):
            monkeypatch.delenv(key)


def _write(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_yaml_values_are_loaded(tmp_path):
    path = _write(
        tmp_path,
        """
risk:
  default_stop_loss_pct: 3
  crypto_quantity_step: 0.001
  crypto_min_quantity: 0.01
  quote_asset: usdc
freshness:
  balance_stale_after: 15
venues:
  watchlist: [solusdt]
""",
    )

    config = ConfigLoader(path, env_file=tmp_path / ".env").load()

    assert config.risk.default_stop_loss_pct == 3.0
    assert config.risk.default_take_profit_pct == 10.0
    assert config.risk.quote_asset == "USDC"
    assert config.freshness.balance_stale_after == 15.0
    assert config.freshness.history_stale_after == 60.0
    assert config.venues.watchlist == ["SOLUSDT"]
    assert config.venues.binance_testnet is True

    rules = config.venue_rules(Venue.CRYPTO_SPOT)
    assert rules.quantity_step == 0.001
    assert rules.min_quantity == 0.01
    assert config.venue_rules(Venue.EQUITIES).unit == "shares"
    assert config.exit_defaults().stop_loss_pct == 3.0
    assert config.exit_defaults().take_profit_pct == 10.0


def test_env_file_and_environment_override_yaml(tmp_path, monkeypatch):
    path = _write(tmp_path, "api:\n  binance_api_key: from-yaml\n")
    env_file = tmp_path / ".env"
    env_file.write_text("# local secrets\nBINANCE_API_KEY=from-env-file\nBINANCE_TESTNET=false\n", encoding="utf-8")
    monkeypatch.setenv("ALPACA_API_KEY", "from-environ")

    config = ConfigLoader(path, env_file=env_file).load()

    assert config.api.binance_api_key == "from-env-file"
    assert config.api.alpaca_api_key == "from-environ"
    assert config.venues.binance_testnet is False


def test_missing_file_is_a_config_error(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        ConfigLoader(tmp_path / "absent.yaml", env_file=tmp_path / ".env").load()


@pytest.mark.parametrize(
    "text",
    [
        "risk:\n  default_stop_loss_pct: 0\n",
        "risk:\n  default_take_profit_pct: 150\n",
        "risk:\n  crypto_quantity_step: -1\n",
        "freshness:\n  history_stale_after: 0\n",
        "risk:\n  default_stop_loss_pct: lots\n",
        "risk: [unclosed\n",
    ],
)
def test_invalid_values_are_rejected(tmp_path, text):
    path = _write(tmp_path, text)

    with pytest.raises(ConfigError):
        ConfigLoader(path, env_file=tmp_path / ".env").load()


def test_shipped_config_loads():
    config = ConfigLoader().load()

    assert config.risk.default_stop_loss_pct == 5.0
    assert config.freshness.balance_stale_after == 30.0
    assert "BTCUSDT" in config.venues.watchlist
