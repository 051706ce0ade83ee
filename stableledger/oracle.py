"""
oracle.py - Price feeds and the oracle adapter used by the engine

Classes:
- StaticPriceFeed: settable single-asset feed (tests, manual scenarios)
- TimeSeriesPriceFeed: time-varying feed with historical data, read as-of a clock
- PriceOracleAdapter: resolves asset ids to feeds and enforces freshness

All feeds quote USD prices as integers scaled by 10**decimals.
"""

from __future__ import annotations
from bisect import bisect_right
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from .core import (
    FEED_DECIMALS, STALENESS_WINDOW, Amount,
    PriceFeed, PriceQuote,
    InvalidPrice, StalePrice, UnregisteredAsset,
    to_units,
)


EPOCH = datetime(1970, 1, 1)


class StaticPriceFeed:
    """
    Single-asset feed holding one price until updated.

    Example:
        feed = StaticPriceFeed.from_usd("2000", published_at=datetime(2025, 1, 1))
        feed.update(to_units("18", 8), datetime(2025, 1, 2))
    """

    def __init__(self, price: int, published_at: datetime = EPOCH, decimals: int = FEED_DECIMALS):
        self.decimals = decimals
        self.price = price
        self.published_at = published_at

    @classmethod
    def from_usd(cls, usd: Amount, published_at: datetime = EPOCH,
                 decimals: int = FEED_DECIMALS) -> StaticPriceFeed:
        """Create a feed from a human USD price."""
        return cls(to_units(usd, decimals), published_at, decimals)

    def latest_price(self) -> Tuple[int, datetime]:
        return self.price, self.published_at

    def update(self, price: int, published_at: Optional[datetime] = None) -> None:
        """Publish a new raw price (keeps the old timestamp if none is given)."""
        self.price = price
        if published_at is not None:
            self.published_at = published_at

    def update_usd(self, usd: Amount, published_at: Optional[datetime] = None) -> None:
        self.update(to_units(usd, self.decimals), published_at)

    def __repr__(self):
        return f"StaticPriceFeed(price={self.price}, decimals={self.decimals}, at={self.published_at})"


class TimeSeriesPriceFeed:
    """
    Feed backed by a price history, answering as of the current clock.

    The clock is usually the engine's logical time, so advancing the engine
    moves the feed along its path. Each observation is treated as published
    at its own timestamp, which lets the oracle's staleness check see gaps.
    """

    def __init__(
        self,
        clock: Callable[[], datetime],
        path: Optional[List[Tuple[datetime, int]]] = None,
        decimals: int = FEED_DECIMALS,
    ):
        """
        Initialize feed.

        Args:
            clock: Callable returning the current time
            path: Optional list of (timestamp, raw price) observations
            decimals: Number of decimals in the raw prices
        """
        self.decimals = decimals
        self._clock = clock
        self.history: List[Tuple[datetime, int]] = sorted(path or [], key=lambda x: x[0])

    def add_price(self, timestamp: datetime, price: int) -> None:
        """Add an observation, keeping history in chronological order."""
        self.history.append((timestamp, price))
        self.history.sort(key=lambda x: x[0])

    def latest_price(self) -> Tuple[int, datetime]:
        """
        Most recent observation at or before the clock.

        Returns (0, EPOCH) when nothing has been published yet, which the
        adapter rejects.
        """
        now = self._clock()
        timestamps = [ts for ts, _ in self.history]
        idx = bisect_right(timestamps, now)
        if idx == 0:
            return 0, EPOCH
        ts, price = self.history[idx - 1]
        return price, ts

    def __repr__(self):
        return f"TimeSeriesPriceFeed({len(self.history)} observations, decimals={self.decimals})"


class PriceOracleAdapter:
    """
    Resolves asset ids to price feeds and judges freshness.

    A quote is fresh when now - published_at <= staleness_window. Quotes
    published after `now` count as fresh.
    """

    def __init__(
        self,
        feeds: Dict[str, PriceFeed],
        clock: Callable[[], datetime],
        staleness_window: timedelta = STALENESS_WINDOW,
    ):
        self._feeds = dict(feeds)
        self._clock = clock
        self.staleness_window = staleness_window

    def assets(self) -> List[str]:
        """Registered asset ids, in registration order."""
        return list(self._feeds)

    def feed(self, asset_id: str) -> PriceFeed:
        if asset_id not in self._feeds:
            raise UnregisteredAsset(f"Asset {asset_id} not registered")
        return self._feeds[asset_id]

    def latest_price(self, asset_id: str) -> PriceQuote:
        """Read the feed and annotate the result with a freshness flag."""
        feed = self.feed(asset_id)
        price, published_at = feed.latest_price()
        age = self._clock() - published_at
        return PriceQuote(
            asset_id=asset_id,
            price=price,
            decimals=feed.decimals,
            published_at=published_at,
            is_fresh=age <= self.staleness_window,
        )

    def checked_price(self, asset_id: str) -> PriceQuote:
        """
        Quote that is safe to compute with.

        Raises:
            UnregisteredAsset: asset has no feed
            StalePrice: quote older than the staleness window
            InvalidPrice: price is zero or negative
        """
        quote = self.latest_price(asset_id)
        if not quote.is_fresh:
            raise StalePrice(
                f"{asset_id} price published at {quote.published_at} is older than {self.staleness_window}"
            )
        if quote.price <= 0:
            raise InvalidPrice(f"{asset_id} price {quote.price} is not positive")
        return quote

    def __repr__(self):
        return f"PriceOracleAdapter({len(self._feeds)} feeds, window={self.staleness_window})"
