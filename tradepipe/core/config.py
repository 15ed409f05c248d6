"""Configuration utilities for the tradepipe order pipeline."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from tradepipe.execution.types import CRYPTO_SPOT_RULES, EQUITIES_RULES, Venue, VenueRules
from tradepipe.signals.types import ExitDefaults


CONFIG_DIR = Path(__file__).resolve().parent.parent.parent / "config"
DEFAULT_CONFIG_FILE = CONFIG_DIR / "config.yaml"
ENV_FILE = CONFIG_DIR / ".env"

_ENV_PREFIXES = ("BINANCE_", "ALPACA_")


@dataclass
class APISettings:
    """Holds API credentials for both brokerage back ends."""

    binance_api_key: str = ""
    binance_api_secret: str = ""
    alpaca_api_key: str = ""
    alpaca_api_secret: str = ""


@dataclass
class RiskSettings:
    """Fallback exit percentages and crypto quantity granularity."""

    default_stop_loss_pct: float = 5.0
    default_take_profit_pct: float = 10.0
    crypto_min_quantity: float = 0.00001
    crypto_quantity_step: float = 0.00000001
    crypto_price_decimals: int = 8
    equities_price_decimals: int = 2
    quote_asset: str = "USDT"


@dataclass
class FreshnessSettings:
    """Staleness thresholds, in seconds, for the refreshed feeds."""

    balance_stale_after: float = 30.0
    history_stale_after: float = 60.0


@dataclass
class VenueSettings:
    binance_testnet: bool = True
    alpaca_base_url: str = "https://paper-api.alpaca.markets"
    watchlist: List[str] = field(default_factory=lambda: ["BTCUSDT", "ETHUSDT"])
    request_timeout: float = 10.0
    max_retries: int = 3
    retry_delay: float = 0.5


@dataclass
class AppConfig:
    """Top-level configuration object."""

    api: APISettings
    risk: RiskSettings
    freshness: FreshnessSettings
    venues: VenueSettings

    def venue_rules(self, venue: Venue) -> VenueRules:
        """Return the quantity/price rules for ``venue`` with configured overrides."""

        if venue is Venue.EQUITIES:
            return replace(EQUITIES_RULES, price_decimals=self.risk.equities_price_decimals)
        return replace(
            CRYPTO_SPOT_RULES,
            quantity_step=self.risk.crypto_quantity_step,
            min_quantity=self.risk.crypto_min_quantity,
            price_decimals=self.risk.crypto_price_decimals,
            quote_asset=self.risk.quote_asset,
        )

    def exit_defaults(self) -> ExitDefaults:
        return ExitDefaults(
            stop_loss_pct=self.risk.default_stop_loss_pct,
            take_profit_pct=self.risk.default_take_profit_pct,
        )


class ConfigError(RuntimeError):
    """Raised when the configuration cannot be loaded or is invalid."""


class ConfigLoader:
    """Loads YAML configuration merged with environment variables."""

    def __init__(self, config_path: Optional[Path] = None, env_file: Optional[Path] = None) -> None:
        self.config_path = config_path or DEFAULT_CONFIG_FILE
        self.env_file = env_file or ENV_FILE

    def load(self) -> AppConfig:
        """Load application configuration from YAML and environment variables."""

        config = self._load_yaml()
        env = self._load_env()
        api_cfg = config.get("api") or {}
        risk_cfg = config.get("risk") or {}
        freshness_cfg = config.get("freshness") or {}
        venues_cfg = config.get("venues") or {}

        api_settings = APISettings(
            binance_api_key=env.get("BINANCE_API_KEY", api_cfg.get("binance_api_key", "")),
            binance_api_secret=env.get("BINANCE_API_SECRET", api_cfg.get("binance_api_secret", "")),
            alpaca_api_key=env.get("ALPACA_API_KEY", api_cfg.get("alpaca_api_key", "")),
            alpaca_api_secret=env.get("ALPACA_API_SECRET", api_cfg.get("alpaca_api_secret", "")),
        )
        try:
            risk_settings = RiskSettings(
                default_stop_loss_pct=float(risk_cfg.get("default_stop_loss_pct", 5.0)),
                default_take_profit_pct=float(risk_cfg.get("default_take_profit_pct", 10.0)),
                crypto_min_quantity=float(risk_cfg.get("crypto_min_quantity", 0.00001)),
                crypto_quantity_step=float(risk_cfg.get("crypto_quantity_step", 0.00000001)),
                crypto_price_decimals=int(risk_cfg.get("crypto_price_decimals", 8)),
                equities_price_decimals=int(risk_cfg.get("equities_price_decimals", 2)),
                quote_asset=str(risk_cfg.get("quote_asset", "USDT")).upper(),
            )
            freshness_settings = FreshnessSettings(
                balance_stale_after=float(freshness_cfg.get("balance_stale_after", 30.0)),
                history_stale_after=float(freshness_cfg.get("history_stale_after", 60.0)),
            )
            venue_settings = VenueSettings(
                binance_testnet=self._parse_bool(
                    env.get("BINANCE_TESTNET", venues_cfg.get("binance_testnet", True))
                ),
                alpaca_base_url=env.get(
                    "ALPACA_BASE_URL",
                    venues_cfg.get("alpaca_base_url", "https://paper-api.alpaca.markets"),
                ),
                watchlist=[str(symbol).upper() for symbol in venues_cfg.get("watchlist", ["BTCUSDT", "ETHUSDT"])],
                request_timeout=float(venues_cfg.get("request_timeout", 10.0)),
                max_retries=int(venues_cfg.get("max_retries", 3)),
                retry_delay=float(venues_cfg.get("retry_delay", 0.5)),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid configuration value in {self.config_path}: {exc}") from exc

        self._validate(risk_settings, freshness_settings)
        return AppConfig(
            api=api_settings,
            risk=risk_settings,
            freshness=freshness_settings,
            venues=venue_settings,
        )

    def _load_yaml(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            raise ConfigError(f"Configuration file not found: {self.config_path}")
        with self.config_path.open("r", encoding="utf-8") as fh:
            try:
                return yaml.safe_load(fh) or {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"Cannot parse {self.config_path}: {exc}") from exc

    def _load_env(self) -> Dict[str, str]:
        env: Dict[str, str] = {}
        if self.env_file.exists():
            for line in self.env_file.read_text(encoding="utf-8").splitlines():
                if not line or line.startswith("#"):
                    continue
                if "=" not in line:
                    continue
                key, value = line.split("=", 1)
                env[key.strip()] = value.strip()
        env.update({key: value for key, value in os.environ.items() if key.startswith(_ENV_PREFIXES)})
        return env

    @staticmethod
    def _validate(risk: RiskSettings, freshness: FreshnessSettings) -> None:
        for name in ("default_stop_loss_pct", "default_take_profit_pct"):
            value = getattr(risk, name)
            if not 0 < value <= 100:
                raise ConfigError(f"risk.{name} must be within (0, 100], got {value}")
        if risk.crypto_quantity_step <= 0 or risk.crypto_min_quantity <= 0:
            raise ConfigError("Crypto quantity step and minimum must be positive")
        if freshness.balance_stale_after <= 0 or freshness.history_stale_after <= 0:
            raise ConfigError("Staleness thresholds must be positive")

    @staticmethod
    def _parse_bool(value: Any) -> bool:
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in {"1", "true", "yes", "on"}


__all__ = [
    "AppConfig",
    "ConfigLoader",
    "ConfigError",
    "APISettings",
    "RiskSettings",
    "FreshnessSettings",
    "VenueSettings",
]
