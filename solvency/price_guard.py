"""
price_guard.py - Staleness guard for price-feed reads

Feeds can stop updating without reporting an error. Every price the engine
uses passes through read_fresh_price(), which refuses any round whose last
update is older than STALENESS_TIMEOUT, so dependent operations halt instead
of valuing collateral at a frozen price.
"""

from __future__ import annotations
from datetime import datetime, timedelta

from .core import PriceFeed, RoundData, StalePrice


STALENESS_TIMEOUT = timedelta(hours=3)


def read_fresh_price(feed: PriceFeed, now: datetime) -> RoundData:
    """
    Read the latest round from a feed, rejecting it if stale.

    Args:
        feed: Price feed to read
        now: Current time of the caller

    Returns:
        The feed's latest RoundData, unchanged

    Raises:
        StalePrice: If more than STALENESS_TIMEOUT has passed since updated_at
    """
    round_data = feed.latest_round_data()
    elapsed = now - round_data.updated_at
    if elapsed > STALENESS_TIMEOUT:
        raise StalePrice(round_data.updated_at, elapsed)
    return round_data


def get_timeout() -> timedelta:
    """Staleness window applied by read_fresh_price()."""
    return STALENESS_TIMEOUT
