"""
Fumble Service

Wallet-level entry point: fetches a wallet's transactions for a timeframe,
runs the detector, scores the result and caches it under
``fumbles:{address}:{timeframe}``.
"""

import logging
from datetime import timedelta
from typing import Optional

from ..config import JeetConfig
from .birdeye_client import BirdeyePriceSource
from .cache import SnapshotCache
from .coingecko_client import CoinGeckoClient
from .detector import FumbleDetector
from .models import DetectorConfig, FumbleResult, Timeframe, utcnow
from .redis_client import RedisClient
from .resolver import PriceHistoryResolver
from .scoring import build_fumble_result
from .sources import PriceHistorySource, TransactionSource, collect_transactions
from .zapper_client import ZapperClient

logger = logging.getLogger(__name__)


def fumbles_key(address: str, timeframe: Timeframe) -> str:
    return f"fumbles:{address.lower()}:{timeframe.value}"


class FumbleService:
    """
    Computes and caches per-wallet FumbleResults.

    Usage:
        service = FumbleService.from_config()
        result = await service.compute_fumbles("0xabc...", Timeframe.WEEKLY)
        service.invalidate_wallet("0xabc...")
    """

    def __init__(
        self,
        transaction_source: TransactionSource,
        detector: FumbleDetector,
        cache: SnapshotCache,
        wallet_ttl: float = 300.0,
        max_pages: int = 20,
    ):
        """
        Initialize the service.

        Args:
            transaction_source: Paginated wallet history source
            detector: Fumble detector (owns the price resolver)
            cache: Shared snapshot cache
            wallet_ttl: TTL of cached FumbleResults in seconds
            max_pages: Pagination ceiling per wallet fetch
        """
        self.transaction_source = transaction_source
        self.detector = detector
        self.cache = cache
        self.wallet_ttl = wallet_ttl
        self.max_pages = max_pages

    @classmethod
    def from_config(
        cls,
        cache: Optional[SnapshotCache] = None,
        transaction_source: Optional[TransactionSource] = None,
        price_source: Optional[PriceHistorySource] = None,
    ) -> "FumbleService":
        """Wire the service from JeetConfig (environment variables)."""
        if cache is None:
            store = RedisClient() if JeetConfig.get_redis_enabled() else None
            cache = SnapshotCache(
                default_ttl=JeetConfig.get_wallet_cache_ttl(),
                max_entries=JeetConfig.get_cache_max_entries(),
                store=store,
            )

        if price_source is None:
            if JeetConfig.get_price_source() == "birdeye":
                price_source = BirdeyePriceSource()
            else:
                price_source = CoinGeckoClient()

        resolver = PriceHistoryResolver(
            price_source,
            cache=cache,
            max_concurrency=JeetConfig.get_price_concurrency(),
            timeout_seconds=JeetConfig.get_upstream_timeout(),
            cache_ttl=JeetConfig.get_price_cache_ttl(),
        )
        detector = FumbleDetector(
            resolver,
            DetectorConfig(
                window=timedelta(days=JeetConfig.get_fumble_window_days()),
                rally_multiplier=JeetConfig.get_rally_multiplier(),
                max_concurrency=JeetConfig.get_wallet_concurrency(),
            ),
        )
        return cls(
            transaction_source=transaction_source or ZapperClient(),
            detector=detector,
            cache=cache,
            wallet_ttl=JeetConfig.get_wallet_cache_ttl(),
            max_pages=JeetConfig.get_tx_max_pages(),
        )

    async def compute_fumbles(self, address: str, timeframe: Timeframe) -> FumbleResult:
        """
        FumbleResult for one wallet and timeframe (cached).

        Price lookup failures degrade the result; a failing transaction
        fetch raises UpstreamUnavailable and nothing is cached.
        """
        return await self.cache.get_or_compute(
            fumbles_key(address, timeframe),
            lambda: self._compute(address, timeframe),
            ttl=self.wallet_ttl,
            loader=FumbleResult.from_dict,
        )

    async def _compute(self, address: str, timeframe: Timeframe) -> FumbleResult:
        since = timeframe.window_start(utcnow())
        transactions = await collect_transactions(self.transaction_source, address, since, self.max_pages)
        report = await self.detector.detect(address, transactions)
        result = build_fumble_result(report, timeframe)

        logger.info(
            f"{address[:8]}... [{timeframe.value}]: {len(result.fumbles)} fumbles, "
            f"loss ${result.total_loss:,.2f}, score {result.jeet_score}"
            + (f" ({result.degraded_sales} degraded)" if result.degraded else "")
        )
        return result

    def invalidate_wallet(self, address: str) -> int:
        """Drop every cached FumbleResult of a wallet; leaderboard snapshots are left to expire."""
        removed = self.cache.invalidate_prefix(f"fumbles:{address.lower()}:")
        logger.debug(f"Invalidated {removed} cached results for {address[:8]}...")
        return removed

    async def close(self):
        for component in (self.transaction_source, self.detector.resolver.source):
            close = getattr(component, "close", None)
            if close is not None:
                await close()
