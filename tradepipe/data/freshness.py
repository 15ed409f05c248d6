"""Bounded-staleness refresh of account data.

Each registered feed is ``FRESH`` until its staleness threshold elapses,
then ``STALE`` until a refresh completes.  Push events from the broker's
stream make a feed fresh immediately; a polling task per feed is the
fallback and runs only while the view is visible.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from tradepipe.core.config import FreshnessSettings
from tradepipe.execution.types import OrderStatus
from tradepipe.portfolio.ledger import PositionLedger

Fetcher = Callable[[], Awaitable[Any]]
ResultCallback = Callable[[str, Any], None]
PushListener = Callable[[str], Any]
Clock = Callable[[], float]

BALANCE_FEED = "balance"
OPEN_ORDERS_FEED = "open_orders"
ORDER_HISTORY_FEED = "order_history"

MIN_POLL_DELAY = 0.05

_MISSING = object()


class FeedState(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    REFRESHING = "refreshing"


@dataclass
class _Feed:
    name: str
    fetcher: Fetcher
    stale_after: float
    on_result: Optional[ResultCallback] = None
    value: Any = None
    last_updated: Optional[float] = None
    sequence: int = 0
    rerun: bool = False
    in_flight: Optional["asyncio.Task[Any]"] = None


class FreshnessScheduler:
    """Coalescing, visibility-aware refresher for named feeds."""

    def __init__(self, clock: Clock = time.monotonic, logger: Optional[logging.Logger] = None) -> None:
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self._feeds: Dict[str, _Feed] = {}
        self._push_listeners: List[PushListener] = []
        self._poll_tasks: Dict[str, "asyncio.Task[None]"] = {}
        self._background: Set["asyncio.Task[Any]"] = set()
        self._stop_event: Optional[asyncio.Event] = None
        self._visible = True
        self._started = False

    # ------------------------------------------------------------------
    # Registration and inspection
    def register_feed(
        self,
        name: str,
        fetcher: Fetcher,
        stale_after: float,
        on_result: Optional[ResultCallback] = None,
    ) -> None:
        if name in self._feeds:
            raise ValueError(f"Feed '{name}' already registered")
        if stale_after <= 0:
            raise ValueError("stale_after must be positive")
        self._feeds[name] = _Feed(name=name, fetcher=fetcher, stale_after=stale_after, on_result=on_result)
        if self._started and self._visible:
            self._start_poller(self._feeds[name])

    def add_push_listener(self, listener: PushListener) -> None:
        """Call ``listener(feed_name)`` after every push event."""

        self._push_listeners.append(listener)

    def state(self, name: str) -> FeedState:
        feed = self._feed(name)
        if feed.in_flight is not None and not feed.in_flight.done():
            return FeedState.REFRESHING
        if feed.last_updated is None or self.clock() - feed.last_updated >= feed.stale_after:
            return FeedState.STALE
        return FeedState.FRESH

    def value(self, name: str) -> Any:
        return self._feed(name).value

    @property
    def visible(self) -> bool:
        return self._visible

    # ------------------------------------------------------------------
    # Events
    def push(self, name: str, payload: Any = _MISSING) -> None:
        """Apply an external push update to ``name``.

        Any response still in flight for the feed is older than this
        event and will be discarded when it arrives.
        """

        feed = self._feed(name)
        feed.sequence += 1
        feed.last_updated = self.clock()
        if payload is not _MISSING:
            self._apply(feed, payload)
        self.logger.debug("feed_pushed", extra={"feed": name, "sequence": feed.sequence})
        for listener in self._push_listeners:
            outcome = listener(name)
            if inspect.isawaitable(outcome):
                self._track(asyncio.ensure_future(outcome), f"push_listener:{name}")

    def invalidate(self, name: str) -> None:
        """Mark ``name`` stale and refresh it when a refresh is allowed.

        A refresh already in flight has its result discarded and is
        followed by exactly one more fetch.
        """

        feed = self._feed(name)
        feed.last_updated = None
        if feed.in_flight is not None and not feed.in_flight.done():
            feed.sequence += 1
            feed.rerun = True
            return
        if not self._visible:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        self._track(asyncio.ensure_future(self.refresh(name)), f"invalidate:{name}")

    async def refresh(self, name: str) -> Any:
        """Fetch ``name`` now, joining a fetch already in flight."""

        feed = self._feed(name)
        if feed.in_flight is None or feed.in_flight.done():
            feed.in_flight = asyncio.ensure_future(self._run_refresh(feed))
        return await asyncio.shield(feed.in_flight)

    async def set_visible(self, visible: bool) -> None:
        """Pause polling while hidden; catch up on stale feeds when shown."""

        if visible == self._visible:
            return
        self._visible = visible
        self.logger.debug("feeds_visibility_changed", extra={"visible": visible})
        if not visible:
            await self._cancel_pollers()
            return
        if self._started:
            for feed in self._feeds.values():
                self._start_poller(feed)
        stale = [name for name in self._feeds if self.state(name) is FeedState.STALE]
        results = await asyncio.gather(*(self.refresh(name) for name in stale), return_exceptions=True)
        for name, result in zip(stale, results):
            if isinstance(result, Exception):
                self.logger.warning("feed_refresh_failed", extra={"feed": name, "error": str(result)})

    # ------------------------------------------------------------------
    # Lifecycle
    async def start(self) -> None:
        if self._started:
            return
        self._stop_event = asyncio.Event()
        self._started = True
        if self._visible:
            for feed in self._feeds.values():
                self._start_poller(feed)

    async def stop(self) -> None:
        if not self._started:
            return
        self._stop_event.set()
        await self._cancel_pollers()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._started = False

    # ------------------------------------------------------------------
    # Internals
    async def _run_refresh(self, feed: _Feed) -> Any:
        while True:
            feed.sequence += 1
            feed.rerun = False
            sequence = feed.sequence
            value = await feed.fetcher()
            if sequence != feed.sequence:
                self.logger.debug(
                    "feed_refresh_discarded",
                    extra={"feed": feed.name, "sequence": sequence, "latest": feed.sequence},
                )
                if feed.rerun:
                    continue
                return feed.value
            feed.last_updated = self.clock()
            self._apply(feed, value)
            return value

    def _apply(self, feed: _Feed, value: Any) -> None:
        feed.value = value
        if feed.on_result is not None:
            feed.on_result(feed.name, value)

    async def _poll(self, feed: _Feed) -> None:
        try:
            while not self._stop_event.is_set():
                if self.state(feed.name) is FeedState.STALE:
                    try:
                        await self.refresh(feed.name)
                    except Exception:  # pragma: no cover - logging side effect
                        self.logger.exception("Error while refreshing feed '%s'", feed.name)
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._delay(feed))
                except asyncio.TimeoutError:
                    continue
        except asyncio.CancelledError:  # pragma: no cover
            pass

    def _delay(self, feed: _Feed) -> float:
        if feed.last_updated is None:
            return feed.stale_after
        remaining = feed.stale_after - (self.clock() - feed.last_updated)
        return max(remaining, MIN_POLL_DELAY)

    def _start_poller(self, feed: _Feed) -> None:
        task = self._poll_tasks.get(feed.name)
        if task is None or task.done():
            self._poll_tasks[feed.name] = asyncio.ensure_future(self._poll(feed))

    async def _cancel_pollers(self) -> None:
        tasks = list(self._poll_tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._poll_tasks.clear()

    def _track(self, task: "asyncio.Task[Any]", label: str) -> None:
        self._background.add(task)

        def _done(finished: "asyncio.Task[Any]") -> None:
            self._background.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                self.logger.warning(
                    "feed_background_task_failed",
                    extra={"task": label, "error": str(finished.exception())},
                )

        task.add_done_callback(_done)

    def _feed(self, name: str) -> _Feed:
        try:
            return self._feeds[name]
        except KeyError as exc:
            raise KeyError(f"Unknown feed '{name}'") from exc


def register_account_feeds(
    scheduler: FreshnessScheduler,
    adapter,
    ledger: PositionLedger,
    settings: FreshnessSettings = FreshnessSettings(),
) -> None:
    """Wire the balance, open-order and order-history feeds for ``adapter``.

    Balance and open orders share the short threshold; the full order
    history is the expensive call and uses the longer one.  A push on any
    feed triggers a ledger recompute from the full history; while the view
    is hidden the recompute waits for the history feed to catch up on show.
    """

    async def fetch_open_orders():
        orders = await adapter.list_filled_orders()
        return [o for o in orders if o.status in (OrderStatus.NEW, OrderStatus.PARTIALLY_FILLED)]

    async def fetch_history():
        generation = ledger.begin()
        orders = await adapter.list_filled_orders()
        ledger.commit(orders, generation)
        return ledger.snapshot

    def on_push(_name):
        if not scheduler.visible:
            scheduler.invalidate(ORDER_HISTORY_FEED)
            return None
        return ledger.refresh(adapter)

    scheduler.register_feed(BALANCE_FEED, adapter.get_account_balance, settings.balance_stale_after)
    scheduler.register_feed(OPEN_ORDERS_FEED, fetch_open_orders, settings.balance_stale_after)
    scheduler.register_feed(ORDER_HISTORY_FEED, fetch_history, settings.history_stale_after)
    scheduler.add_push_listener(on_push)


__all__ = [
    "FeedState",
    "FreshnessScheduler",
    "register_account_feeds",
    "BALANCE_FEED",
    "OPEN_ORDERS_FEED",
    "ORDER_HISTORY_FEED",
]
