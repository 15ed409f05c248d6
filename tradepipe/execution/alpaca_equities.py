"""Equities venue backed by the Alpaca trading REST API."""
from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List, Optional

import pandas as pd
import requests

from tradepipe.core.errors import BrokerRejectionError, GatewayError, classify_broker_error
from tradepipe.core.logging import get_logger
from tradepipe.execution.gateway import ALL_ORDER_TYPES, encode_quantity
from tradepipe.execution.types import (
    EQUITIES_RULES,
    FilledOrder,
    FillResult,
    OrderRequest,
    OrderStatus,
    OrderType,
    QuantitySpec,
    Side,
    SizedPosition,
    VenueRules,
)

logger = get_logger(__name__)

PAPER_BASE_URL = "https://paper-api.alpaca.markets"
MAX_PAGE = 500


class AlpacaEquitiesAdapter:
    """Place share-denominated orders and read history from Alpaca."""

    supported_order_types = ALL_ORDER_TYPES

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        *,
        base_url: str = PAPER_BASE_URL,
        rules: VenueRules = EQUITIES_RULES,
        timeout: float = 10.0,
        max_retries: int = 3,
        retry_delay: float = 0.5,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.rules = rules
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "APCA-API-KEY-ID": api_key,
                "APCA-API-SECRET-KEY": api_secret,
            }
        )

    def encode_quantity(self, side: Side, order_type: OrderType, sized: SizedPosition) -> QuantitySpec:
        return encode_quantity(self.rules, side, order_type, sized)

    async def submit(self, request: OrderRequest) -> FillResult:
        payload = self._order_payload(request)
        logger.info(
            "alpaca_submit_order",
            extra={"symbol": request.symbol, "side": payload["side"], "order_type": payload["type"]},
        )
        response = await asyncio.to_thread(self._request, "POST", "/v2/orders", retry=False, json=payload)
        order = response.json()
        legs = order.get("legs") or []
        return FillResult(
            order_id=str(order.get("id")),
            status=OrderStatus.parse(order.get("status")),
            filled_quantity=float(order.get("filled_qty") or 0.0),
            average_price=_as_float(order.get("filled_avg_price")),
            take_profit_order_id=next((str(leg["id"]) for leg in legs if leg.get("type") == "limit"), None),
            stop_loss_order_id=next((str(leg["id"]) for leg in legs if leg.get("type") != "limit"), None),
            raw=order,
        )

    async def list_filled_orders(self, symbol: Optional[str] = None) -> List[FilledOrder]:
        return await asyncio.to_thread(self._fetch_closed_orders, symbol)

    async def get_account_balance(self) -> float:
        response = await asyncio.to_thread(self._request, "GET", "/v2/account")
        account = response.json()
        return float(account.get("buying_power") or account.get("cash") or 0.0)

    # ------------------------------------------------------------------
    def _order_payload(self, request: OrderRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "symbol": request.symbol,
            "qty": str(int(request.quantity.value)),
            "side": request.side.value.lower(),
            "type": request.order_type.value,
            "time_in_force": request.time_in_force.value,
        }
        if request.extended_hours:
            payload["extended_hours"] = True
        if request.limit_price is not None:
            payload["limit_price"] = request.limit_price
        if request.stop_price is not None:
            payload["stop_price"] = request.stop_price
        if request.trail_percent:
            payload["trail_percent"] = request.trail_percent
        elif request.trail_price:
            payload["trail_price"] = request.trail_price
        if request.bracket is not None:
            payload["order_class"] = "bracket"
            payload["take_profit"] = {"limit_price": request.bracket.take_profit_price}
            payload["stop_loss"] = {"stop_price": request.bracket.stop_loss_price}
        return payload

    def _fetch_closed_orders(self, symbol: Optional[str]) -> List[FilledOrder]:
        params: Dict[str, Any] = {"status": "all", "direction": "asc", "limit": MAX_PAGE}
        if symbol:
            params["symbols"] = symbol.upper()

        records: List[FilledOrder] = []
        previous_after = None
        while True:
            page = self._request("GET", "/v2/orders", params=params).json()
            if not page:
                break
            records.extend(self._to_filled_order(raw) for raw in page)
            if len(page) < MAX_PAGE:
                break
            next_after = page[-1].get("submitted_at")
            if not next_after or next_after == previous_after:
                break
            previous_after = params["after"] = next_after
        logger.debug("alpaca_orders_listed", extra={"symbol": symbol, "count": len(records)})
        return records

    def _request(self, method: str, path: str, *, retry: bool = True, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}{path}"
        attempts = self.max_retries if retry else 1
        for attempt in range(1, attempts + 1):
            try:
                response = self._session.request(method, url, timeout=self.timeout, **kwargs)
            except requests.RequestException as exc:
                if attempt >= attempts:
                    raise GatewayError(f"Alpaca request failed: {exc}") from exc
                delay = self.retry_delay * attempt
                logger.warning("alpaca_request_retry", extra={"path": path, "attempt": attempt, "delay": delay})
                time.sleep(delay)
                continue
            if response.status_code == 429 and attempt < attempts:
                retry_after = float(response.headers.get("Retry-After", self.retry_delay))
                logger.warning("alpaca_rate_limited", extra={"path": path, "retry_after": retry_after})
                time.sleep(retry_after)
                continue
            if response.status_code >= 400:
                self._raise_for_error(response, method, path)
            return response
        raise GatewayError("Unreachable retry loop")

    @staticmethod
    def _raise_for_error(response: requests.Response, method: str, path: str) -> None:
        try:
            body = response.json()
        except ValueError:
            body = {}
        message = body.get("message") or response.text or response.reason or "request failed"
        code = body.get("code")
        if method == "POST" and path.startswith("/v2/orders"):
            logger.warning("broker_rejection", extra={"venue": "alpaca", "code": code, "reason": message})
            raise BrokerRejectionError(classify_broker_error(message), message, code=code)
        raise GatewayError(f"Alpaca {path} returned {response.status_code}: {message}")

    @staticmethod
    def _to_filled_order(raw: Dict[str, Any]) -> FilledOrder:
        timestamp = raw.get("filled_at") or raw.get("updated_at") or raw.get("submitted_at")
        return FilledOrder(
            symbol=str(raw.get("symbol", "")).upper(),
            side=Side(str(raw.get("side", "buy")).upper()),
            quantity=float(raw.get("filled_qty") or 0.0),
            price=_as_float(raw.get("filled_avg_price")) or 0.0,
            filled_at=(pd.Timestamp(timestamp) if timestamp else pd.Timestamp(0, tz="UTC")).to_pydatetime(),
            status=OrderStatus.parse(raw.get("status")),
            order_id=str(raw.get("id")),
        )


def _as_float(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    return float(value)


__all__ = ["AlpacaEquitiesAdapter", "PAPER_BASE_URL"]
