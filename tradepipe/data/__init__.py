"""Account data freshness."""
from tradepipe.data.freshness import (
    BALANCE_FEED,
    OPEN_ORDERS_FEED,
    ORDER_HISTORY_FEED,
    FeedState,
    FreshnessScheduler,
    register_account_feeds,
)

__all__ = [
    "BALANCE_FEED",
    "OPEN_ORDERS_FEED",
    "ORDER_HISTORY_FEED",
    "FeedState",
    "FreshnessScheduler",
    "register_account_feeds",
]
