"""
Price History Resolver.

Answers two questions for the fumble detector: what was a token worth at a
given moment, and what was the highest price it reached within a window.
Both are backed by an external ``PriceHistorySource`` and insulated by the
shared ``SnapshotCache``.

Failure policy: transport errors, timeouts and malformed payloads never
escape this module. They surface as price 0, and through the ``quote_*``
methods as ``PriceQuote(known=False)`` so callers can tell a failed lookup
from a genuine zero price.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional, Tuple

from .cache import SnapshotCache
from .models import PricePoint, PriceQuote, ensure_utc, utcnow
from .sources import PriceHistorySource

logger = logging.getLogger(__name__)


class PriceHistoryResolver:
    """
    Resolves point-in-time and peak prices with bounded concurrency.

    Usage:
        resolver = PriceHistoryResolver(CoinGeckoClient(), cache=SnapshotCache())
        sale = await resolver.price_at("ethereum", sold_at)
        peak = await resolver.peak_price_in_window("ethereum", sold_at - window, sold_at + window)
    """

    def __init__(
        self,
        source: PriceHistorySource,
        cache: Optional[SnapshotCache] = None,
        max_concurrency: int = 5,
        timeout_seconds: float = 10.0,
        cache_ttl: float = 900.0,
        lookback: timedelta = timedelta(days=1),
    ):
        """
        Initialize the resolver.

        Args:
            source: External price history source
            cache: Shared snapshot cache for fetched histories
            max_concurrency: Concurrent requests allowed against ``source``
            timeout_seconds: Timeout of a single upstream call
            cache_ttl: TTL of cached histories
            lookback: How far back ``price_at`` searches for a preceding observation
        """
        self.source = source
        self.cache = cache
        self.timeout_seconds = timeout_seconds
        self.cache_ttl = cache_ttl
        self.lookback = lookback
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self.failures = 0

    async def _fetch(self, token_id: str, start: datetime, end: datetime) -> Tuple[PricePoint, ...]:
        async with self._semaphore:
            points = await asyncio.wait_for(
                self.source.fetch_price_history(token_id, start, end),
                timeout=self.timeout_seconds,
            )
        return tuple(sorted(points, key=lambda p: p.timestamp))

    async def _history(self, token_id: str, start: datetime, end: datetime) -> Optional[Tuple[PricePoint, ...]]:
        """Observations in ``[start, end]``, or None when the lookup failed."""
        key = f"prices:{token_id}:{int(start.timestamp())}:{int(end.timestamp())}"
        try:
            if self.cache is not None:
                return await self.cache.get_or_compute(
                    key, lambda: self._fetch(token_id, start, end), ttl=self.cache_ttl
                )
            return await self._fetch(token_id, start, end)
        except asyncio.TimeoutError:
            self.failures += 1
            logger.warning(f"Price lookup timed out for {token_id} [{start:%Y-%m-%d}..{end:%Y-%m-%d}]")
        except Exception as e:
            self.failures += 1
            logger.warning(f"Price lookup failed for {token_id} [{start:%Y-%m-%d}..{end:%Y-%m-%d}]: {e}")
        return None

    async def quote_at(self, token_id: str, timestamp: datetime) -> PriceQuote:
        """
        Price at ``timestamp``: the exact observation or the nearest preceding one.

        Duplicate observations at one timestamp resolve to the last one returned.
        """
        timestamp = ensure_utc(timestamp)
        history = await self._history(token_id, timestamp - self.lookback, timestamp)
        if history is None:
            return PriceQuote.unknown()

        preceding = None
        for point in history:
            if point.timestamp > timestamp:
                break
            preceding = point
        if preceding is None:
            return PriceQuote.unknown()
        return PriceQuote(price=preceding.price)

    async def _window_peak(self, token_id: str, start: datetime, end: datetime) -> PriceQuote:
        if end < start:
            # Nothing observable yet (window lies in the future)
            return PriceQuote(price=0.0)
        history = await self._history(token_id, start, end)
        if history is None:
            return PriceQuote.unknown()
        in_window = [p.price for p in history if start <= p.timestamp <= end]
        return PriceQuote(price=max(in_window, default=0.0))

    async def peak_quote_in_window(
        self,
        token_id: str,
        start: datetime,
        end: datetime,
        reference: Optional[datetime] = None,
    ) -> PriceQuote:
        """
        Maximum observed price in ``[start, end]``.

        Issued as two concurrent sub-queries split at ``reference`` (default:
        the window midpoint) because paginated history APIs bound the range of
        a single query. ``known`` is False if either half failed; ``price`` is
        then the best lower bound from the half that succeeded.
        """
        start, end = ensure_utc(start), min(ensure_utc(end), utcnow())
        if reference is None:
            reference = start + (end - start) / 2
        reference = min(max(ensure_utc(reference), start), max(start, end))

        before, after = await asyncio.gather(
            self._window_peak(token_id, start, reference),
            self._window_peak(token_id, reference, end),
        )
        return PriceQuote(price=max(before.price, after.price), known=before.known and after.known)

    async def price_at(self, token_id: str, timestamp: datetime) -> float:
        """Price at ``timestamp``; 0 means unknown (no observation or failed lookup)."""
        return (await self.quote_at(token_id, timestamp)).price

    async def peak_price_in_window(self, token_id: str, start: datetime, end: datetime) -> float:
        """Maximum observed price in ``[start, end]``; failed halves count as 0."""
        return (await self.peak_quote_in_window(token_id, start, end)).price
