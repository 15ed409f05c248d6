"""Spot crypto venue backed by python-binance."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import requests
from binance.client import Client
from binance.exceptions import BinanceAPIException, BinanceOrderException, BinanceRequestException

from tradepipe.core.errors import BrokerRejectionError, GatewayError
from tradepipe.core.logging import get_logger
from tradepipe.execution.gateway import (
    SPOT_ORDER_TYPES,
    RetryingClientMixin,
    encode_quantity,
    format_decimal,
)
from tradepipe.execution.types import (
    CRYPTO_SPOT_RULES,
    FilledOrder,
    FillResult,
    OrderRequest,
    OrderStatus,
    OrderType,
    QuantitySpec,
    Side,
    SizedPosition,
    TimeInForce,
    VenueRules,
)

logger = get_logger(__name__)

ORDER_TYPE_MARKET = getattr(Client, "ORDER_TYPE_MARKET", "MARKET")
ORDER_TYPE_LIMIT = getattr(Client, "ORDER_TYPE_LIMIT", "LIMIT")
TIME_IN_FORCE_GTC = getattr(Client, "TIME_IN_FORCE_GTC", "GTC")

# Spot only knows GTC/IOC/FOK; session-scoped requests fall back to GTC.
_SPOT_TIME_IN_FORCE = {
    TimeInForce.GTC: "GTC",
    TimeInForce.IOC: "IOC",
    TimeInForce.FOK: "FOK",
}

STOP_LIMIT_OFFSET = 0.001


class BinanceSpotAdapter(RetryingClientMixin):
    """Submit and reconcile orders on Binance spot (or its testnet)."""

    supported_order_types = SPOT_ORDER_TYPES
    recoverable_errors = (BinanceRequestException, requests.RequestException)

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        *,
        testnet: bool = True,
        rules: VenueRules = CRYPTO_SPOT_RULES,
        watchlist: Iterable[str] = (),
        client: Optional[Client] = None,
        max_retries: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        self.rules = rules
        self.watchlist = [symbol.upper() for symbol in watchlist]
        self._traded_symbols: List[str] = []
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.client = client if client is not None else Client(api_key, api_secret, testnet=testnet)

    def encode_quantity(self, side: Side, order_type: OrderType, sized: SizedPosition) -> QuantitySpec:
        return encode_quantity(self.rules, side, order_type, sized)

    async def submit(self, request: OrderRequest) -> FillResult:
        params = self._order_params(request)
        logger.info(
            "binance_submit_order",
            extra={"symbol": request.symbol, "side": params["side"], "order_type": params["type"]},
        )
        order = await self._call_once(self.client.create_order, **params)
        if request.symbol not in self._traded_symbols:
            self._traded_symbols.append(request.symbol)

        status = OrderStatus.parse(order.get("status"))
        result = FillResult(
            order_id=str(order.get("orderId")),
            status=status,
            filled_quantity=float(order.get("executedQty", 0.0) or 0.0),
            average_price=self._average_price(order),
            raw=order,
        )
        if request.bracket is not None and status is OrderStatus.FILLED:
            await self._place_exit_oco(request, result)
        return result

    async def list_filled_orders(self, symbol: Optional[str] = None) -> List[FilledOrder]:
        symbols = [symbol.upper()] if symbol else self.history_symbols()
        records: List[FilledOrder] = []
        for pair in symbols:
            try:
                raw_orders = await self._call_with_retries(self.client.get_all_orders, symbol=pair)
            except BinanceAPIException as exc:
                raise GatewayError(f"Failed to fetch orders for {pair}: {exc.message}") from exc
            records.extend(self._to_filled_order(raw) for raw in raw_orders)
        logger.debug("binance_orders_listed", extra={"symbols": symbols, "count": len(records)})
        return records

    def history_symbols(self) -> List[str]:
        """Watch-list symbols followed by any other symbol this adapter has traded."""

        extra = [symbol for symbol in self._traded_symbols if symbol not in self.watchlist]
        return self.watchlist + extra

    async def get_account_balance(self) -> float:
        try:
            balance = await self._call_with_retries(self.client.get_asset_balance, asset=self.rules.quote_asset)
        except BinanceAPIException as exc:
            raise GatewayError(f"Failed to fetch testnet balance: {exc.message}") from exc
        if not balance:
            return 0.0
        return float(balance.get("free", 0.0) or 0.0)

    # ------------------------------------------------------------------
    def _order_params(self, request: OrderRequest) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "symbol": request.symbol,
            "side": request.side.value,
            "type": ORDER_TYPE_MARKET if request.order_type is OrderType.MARKET else ORDER_TYPE_LIMIT,
        }
        if request.quantity.kind == "quote_notional":
            params["quoteOrderQty"] = format_decimal(request.quantity.value)
        else:
            params["quantity"] = format_decimal(request.quantity.value)
        if request.order_type is OrderType.LIMIT:
            params["price"] = format_decimal(request.limit_price, self.rules.price_decimals)
            params["timeInForce"] = _SPOT_TIME_IN_FORCE.get(request.time_in_force, TIME_IN_FORCE_GTC)
        return params

    async def _place_exit_oco(self, request: OrderRequest, result: FillResult) -> None:
        """Protect a filled entry with a take-profit / stop-loss OCO pair."""

        closing = request.side.closing
        offset = -STOP_LIMIT_OFFSET if request.side is Side.BUY else STOP_LIMIT_OFFSET
        stop_limit = request.bracket.stop_loss_price * (1 + offset)
        decimals = self.rules.price_decimals
        try:
            response = await self._call_once(
                self.client.create_oco_order,
                symbol=request.symbol,
                side=closing.value,
                quantity=format_decimal(result.filled_quantity),
                price=format_decimal(request.bracket.take_profit_price, decimals),
                stopPrice=format_decimal(request.bracket.stop_loss_price, decimals),
                stopLimitPrice=format_decimal(stop_limit, decimals),
                stopLimitTimeInForce=TIME_IN_FORCE_GTC,
            )
        except BrokerRejectionError as exc:
            # The entry is already filled; report the unprotected position.
            logger.error(
                "binance_bracket_rejected",
                extra={"symbol": request.symbol, "order_id": result.order_id, "reason": exc.category.value},
            )
            result.raw = {**result.raw, "bracket_error": exc.message}
            return
        reports = response.get("orderReports") or []
        for report in reports:
            if report.get("type") == "STOP_LOSS_LIMIT":
                result.stop_loss_order_id = str(report.get("orderId"))
            else:
                result.take_profit_order_id = str(report.get("orderId"))

    async def _call_once(self, func, **kwargs) -> Dict[str, Any]:
        try:
            return await asyncio.to_thread(func, **kwargs)
        except (BinanceAPIException, BinanceOrderException) as exc:
            logger.warning("broker_rejection", extra={"venue": "binance", "code": exc.code, "reason": exc.message})
            raise BrokerRejectionError.from_broker(exc.message, exc.code) from exc
        except self.recoverable_errors as exc:
            raise GatewayError(str(exc)) from exc

    @staticmethod
    def _average_price(order: Dict[str, Any]) -> Optional[float]:
        executed = float(order.get("executedQty", 0.0) or 0.0)
        quote = float(order.get("cummulativeQuoteQty", 0.0) or 0.0)
        if executed > 0 and quote > 0:
            return quote / executed
        fills = order.get("fills") or []
        if fills:
            return float(fills[-1]["price"])
        price = float(order.get("price", 0.0) or 0.0)
        return price or None

    def _to_filled_order(self, raw: Dict[str, Any]) -> FilledOrder:
        timestamp_ms = raw.get("updateTime") or raw.get("time") or 0
        return FilledOrder(
            symbol=str(raw.get("symbol", "")).upper(),
            side=Side(str(raw.get("side", "BUY")).upper()),
            quantity=float(raw.get("executedQty", 0.0) or 0.0),
            price=self._average_price(raw) or 0.0,
            filled_at=datetime.fromtimestamp(int(timestamp_ms) / 1000, tz=timezone.utc),
            status=OrderStatus.parse(raw.get("status")),
            order_id=str(raw.get("orderId")),
        )


__all__ = ["BinanceSpotAdapter"]
