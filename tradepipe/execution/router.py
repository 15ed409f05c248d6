"""Signal-to-order execution flow."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from tradepipe.core.errors import BrokerRejectionError, GatewayError, InvalidSizeError
from tradepipe.core.logging import get_logger
from tradepipe.data.freshness import BALANCE_FEED, ORDER_HISTORY_FEED
from tradepipe.execution.builder import OrderBuilder
from tradepipe.execution.gateway import BrokerAdapter
from tradepipe.execution.symbols import normalize_symbol
from tradepipe.execution.types import (
    FillResult,
    OrderParams,
    OrderRequest,
    OrderType,
    Side,
    SizedPosition,
    Venue,
)
from tradepipe.risk.levels import PriceLevels, calculate_price_levels
from tradepipe.risk.sizing import SizingMode, size_position
from tradepipe.signals.types import ExitDefaults, Signal, StrategyDefaults, resolve_exit_percentages

logger = get_logger(__name__)

_LIMIT_PRICED = {OrderType.LIMIT, OrderType.STOP_LIMIT}


@dataclass(frozen=True)
class ExecutionReport:
    """Everything known about one executed trade idea."""

    request: OrderRequest
    result: FillResult
    levels: Optional[PriceLevels]
    sized: SizedPosition


class OrderRouter:
    """Routes signals through sizing, validation and the broker adapter while logging activity."""

    def __init__(
        self,
        adapter: BrokerAdapter,
        ledger=None,
        scheduler=None,
        defaults: ExitDefaults = ExitDefaults(),
    ) -> None:
        self.adapter = adapter
        self.ledger = ledger
        self.scheduler = scheduler
        self.defaults = defaults
        self.builder = OrderBuilder(adapter)

    async def execute_signal(
        self,
        signal: Signal,
        sizing_mode: SizingMode,
        sizing_value: float,
        params: OrderParams = OrderParams(),
        strategy: Optional[StrategyDefaults] = None,
        stop_loss_pct: Optional[float] = None,
        take_profit_pct: Optional[float] = None,
    ) -> ExecutionReport:
        """Size, validate and submit one order for ``signal``.

        Every validation error is raised before the adapter is asked to
        submit anything.  A broker rejection is re-raised unchanged and
        leaves the ledger and the balance feed alone.
        """

        rules = self.adapter.rules
        symbol = normalize_symbol(signal.symbol_display, rules.venue, rules.quote_asset)
        sl_pct, tp_pct = resolve_exit_percentages(
            signal,
            strategy,
            self.defaults,
            stop_loss_override=stop_loss_pct,
            take_profit_override=take_profit_pct,
        )

        order_type = OrderType(params.order_type)
        price = signal.entry_price
        if order_type in _LIMIT_PRICED and params.limit_price:
            price = params.limit_price

        balance = await self.adapter.get_account_balance()
        sized = size_position(balance, price, rules, sizing_mode, sizing_value)
        levels = calculate_price_levels(
            price,
            sl_pct,
            tp_pct,
            signal.side,
            position_cost=sized.total_cost,
        )
        request = self.builder.build(symbol, signal.side, sized, levels, params, balance)
        result = await self._submit(request)
        await self._after_fill()
        return ExecutionReport(request=request, result=result, levels=levels, sized=sized)

    async def close_position(self, symbol: str) -> ExecutionReport:
        """Market-sell the whole tracked quantity of ``symbol``."""

        if self.ledger is None:
            raise InvalidSizeError("No position ledger configured")
        rules = self.adapter.rules
        symbol = normalize_symbol(symbol, rules.venue, rules.quote_asset)
        position = self.ledger.positions.get(symbol)
        if position is None or position.quantity <= 0:
            raise InvalidSizeError(f"No open position for {symbol}")

        quantity = int(position.quantity) if rules.venue is Venue.EQUITIES else position.quantity
        sized = SizedPosition(quantity=quantity, total_cost=position.total_cost, unit=rules.unit)
        # A sell is covered by the holding, not by cash.
        request = self.builder.build(
            symbol,
            Side.SELL,
            sized,
            None,
            OrderParams(order_type=OrderType.MARKET),
            position.total_cost,
        )
        result = await self._submit(request)
        await self._after_fill()
        return ExecutionReport(request=request, result=result, levels=None, sized=sized)

    async def _submit(self, request: OrderRequest) -> FillResult:
        try:
            result = await self.adapter.submit(request)
        except BrokerRejectionError as exc:
            logger.warning(
                "order_rejected",
                extra={
                    "symbol": request.symbol,
                    "category": exc.category.value,
                    "reason": exc.message,
                },
            )
            raise
        logger.info(
            "order_submitted",
            extra={
                "symbol": request.symbol,
                "side": request.side.value,
                "order_id": result.order_id,
                "status": result.status.value,
                "filled_quantity": result.filled_quantity,
                "average_price": result.average_price,
            },
        )
        return result

    async def _after_fill(self) -> None:
        if self.ledger is not None:
            try:
                await self.ledger.refresh(self.adapter)
            except GatewayError as exc:
                # The order stands; the next scheduled refresh catches up.
                logger.warning("ledger_refresh_failed", extra={"error": str(exc)})
        if self.scheduler is not None:
            self.scheduler.invalidate(BALANCE_FEED)
            self.scheduler.invalidate(ORDER_HISTORY_FEED)


__all__ = ["ExecutionReport", "OrderRouter"]
