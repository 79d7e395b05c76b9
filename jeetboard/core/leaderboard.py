"""
Leaderboard Aggregator

Builds a ranked LeaderboardSnapshot for one timeframe:

1. Enumerate opted-in users and their wallets
2. Obtain every wallet's FumbleResult through the FumbleService (cached)
3. Merge per user: summed loss, Jeet Score over the summed figures,
   single biggest fumble
4. Sort by total loss desc / user id asc, assign dense ranks, keep the top N

Wallet failures are isolated: the wallet is skipped, its user's entry is
flagged ``partial`` and the address lands in ``snapshot.failed_wallets``.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .cache import SnapshotCache
from .errors import LeaderboardUnavailable
from .models import (
    BiggestFumble,
    FumbleResult,
    LeaderboardEntry,
    LeaderboardSnapshot,
    LeaderboardStats,
    Timeframe,
    UserProfile,
    utcnow,
)
from .scoring import assert_snapshot_invariants, calculate_jeet_score
from .service import FumbleService
from .sources import UserDirectory

logger = logging.getLogger(__name__)


def leaderboard_key(timeframe: Timeframe) -> str:
    return f"leaderboard:{timeframe.value}"


@dataclass(frozen=True)
class _UserWallets:
    profile: UserProfile
    wallets: Tuple[str, ...]


def build_entry(profile: UserProfile, wallets: Sequence[str], results: Sequence[FumbleResult], partial: bool) -> LeaderboardEntry:
    """Merge one user's wallet results into an (unranked) entry."""
    total_loss = sum(r.total_loss for r in results)
    max_possible_loss = sum(r.max_possible_loss for r in results)

    biggest = BiggestFumble()
    for result in results:
        fumble = result.biggest_fumble
        if fumble is not None and fumble.loss > biggest.loss:
            biggest = BiggestFumble(token_symbol=fumble.token_symbol, loss=fumble.loss)

    return LeaderboardEntry(
        user_id=profile.user_id,
        wallet_address=wallets[0] if wallets else "",
        display_name=profile.display_name,
        total_loss=total_loss,
        jeet_score=calculate_jeet_score(total_loss, max_possible_loss),
        rank=0,
        biggest_fumble=biggest,
        wallet_count=len(wallets),
        partial=partial,
    )


def rank_entries(entries: Sequence[LeaderboardEntry], max_entries: int = 100) -> Tuple[LeaderboardEntry, ...]:
    """Sort by total loss desc (user id asc on ties), assign dense 1-based ranks, truncate."""
    ordered = sorted(entries, key=lambda e: (-e.total_loss, e.user_id))
    return tuple(
        LeaderboardEntry(
            user_id=e.user_id,
            wallet_address=e.wallet_address,
            display_name=e.display_name,
            total_loss=e.total_loss,
            jeet_score=e.jeet_score,
            rank=index + 1,
            biggest_fumble=e.biggest_fumble,
            wallet_count=e.wallet_count,
            partial=e.partial,
        )
        for index, e in enumerate(ordered[:max_entries])
    )


def compute_stats(all_entries: Sequence[LeaderboardEntry], ranked: Sequence[LeaderboardEntry]) -> LeaderboardStats:
    """
    Stats over every qualifying user, not only the truncated page.

    ``top_entry`` is the first ranked entry or the empty sentinel.
    """
    total_users = len(all_entries)
    total_loss = sum(e.total_loss for e in all_entries)
    return LeaderboardStats(
        total_users=total_users,
        total_loss=total_loss,
        average_loss=total_loss / total_users if total_users else 0.0,
        top_entry=ranked[0] if ranked else LeaderboardEntry.empty(),
    )


class LeaderboardAggregator:
    """
    Computes and caches leaderboard snapshots.

    Usage:
        aggregator = LeaderboardAggregator(service, FileUserDirectory("users.json"), cache)
        snapshot = await aggregator.compute_leaderboard(Timeframe.WEEKLY)
        rank = await aggregator.get_user_rank("u1", Timeframe.WEEKLY)
    """

    def __init__(
        self,
        service: FumbleService,
        user_directory: UserDirectory,
        cache: SnapshotCache,
        ttl: float = 600.0,
        max_entries: int = 100,
        global_concurrency: int = 16,
    ):
        """
        Initialize the aggregator.

        Args:
            service: Per-wallet fumble service
            user_directory: Users, preferences and wallets
            cache: Shared snapshot cache
            ttl: Snapshot TTL in seconds
            max_entries: Entries kept per snapshot
            global_concurrency: Concurrent user/wallet lookups shared by all builds
        """
        self.service = service
        self.user_directory = user_directory
        self.cache = cache
        self.ttl = ttl
        self.max_entries = max_entries
        self.global_concurrency = max(1, global_concurrency)
        # Shared by every concurrent build; bound to the loop that created it
        self._limiter: Optional[asyncio.Semaphore] = None
        self._limiter_loop: Optional[asyncio.AbstractEventLoop] = None

    async def compute_leaderboard(self, timeframe: Timeframe) -> LeaderboardSnapshot:
        """
        Snapshot for ``timeframe`` (cached).

        Raises:
            LeaderboardUnavailable: users or all opted-in wallets could not be enumerated
        """
        return await self.cache.get_or_compute(
            leaderboard_key(timeframe),
            lambda: self._build(timeframe),
            ttl=self.ttl,
            loader=LeaderboardSnapshot.from_dict,
        )

    async def get_user_rank(self, user_id: str, timeframe: Timeframe) -> int:
        """1-based rank of a user, 0 when the user is not on the leaderboard."""
        entry = (await self.compute_leaderboard(timeframe)).find_user(user_id)
        return entry.rank if entry else 0

    async def get_user_ranks(self, user_id: str) -> Dict[Timeframe, int]:
        ranks = await asyncio.gather(*(self.get_user_rank(user_id, tf) for tf in Timeframe))
        return dict(zip(Timeframe, ranks))

    async def get_leaderboard_stats(self, timeframe: Timeframe) -> LeaderboardStats:
        return (await self.compute_leaderboard(timeframe)).stats

    def _global_limiter(self) -> asyncio.Semaphore:
        loop = asyncio.get_running_loop()
        if self._limiter is None or self._limiter_loop is not loop:
            self._limiter = asyncio.Semaphore(self.global_concurrency)
            self._limiter_loop = loop
        return self._limiter

    async def _build(self, timeframe: Timeframe) -> LeaderboardSnapshot:
        window_start, window_end = timeframe.window(utcnow())
        semaphore = self._global_limiter()

        try:
            users = await self.user_directory.list_users()
        except Exception as e:
            raise LeaderboardUnavailable(f"Cannot enumerate users: {e}") from e

        async def load_user(profile: UserProfile) -> Tuple[Optional[_UserWallets], bool]:
            async with semaphore:
                try:
                    prefs = await self.user_directory.fetch_user_preferences(profile.user_id)
                    if not prefs.show_leaderboard:
                        return None, False
                    wallets = await self.user_directory.fetch_user_wallets(profile.user_id)
                except Exception as e:
                    logger.warning(f"Skipping user {profile.user_id}: wallet lookup failed: {e}")
                    return None, True
            # Dedupe case-insensitively, keep first spelling
            unique: Dict[str, str] = {}
            for address in wallets:
                unique.setdefault(address.lower(), address)
            return _UserWallets(profile=profile, wallets=tuple(unique.values())), False

        loaded = await asyncio.gather(*(load_user(u) for u in users))
        qualifying = [u for u, _ in loaded if u is not None]
        lookup_failures = sum(1 for _, failed in loaded if failed)
        if lookup_failures and not qualifying:
            raise LeaderboardUnavailable(f"Wallet lookup failed for all {lookup_failures} opted-in users")

        addresses = sorted({w for u in qualifying for w in u.wallets})

        async def load_wallet(address: str) -> Optional[FumbleResult]:
            async with semaphore:
                try:
                    return await self.service.compute_fumbles(address, timeframe)
                except Exception as e:
                    logger.warning(f"Wallet {address[:8]}... failed for {timeframe.value}: {e}")
                    return None

        # Caller cancellation propagates through gather to every wallet task
        results = dict(zip(addresses, await asyncio.gather(*(load_wallet(a) for a in addresses))))

        failed_wallets: List[str] = []
        all_entries: List[LeaderboardEntry] = []
        for user in qualifying:
            ok = [results[w] for w in user.wallets if results[w] is not None]
            failed = [w for w in user.wallets if results[w] is None]
            failed_wallets.extend(w for w in failed if w not in failed_wallets)
            all_entries.append(build_entry(user.profile, user.wallets, ok, partial=bool(failed)))

        ranked = rank_entries(all_entries, self.max_entries)
        snapshot = LeaderboardSnapshot(
            timeframe=timeframe,
            window_start=window_start,
            window_end=window_end,
            entries=ranked,
            stats=compute_stats(all_entries, ranked),
            failed_wallets=tuple(failed_wallets),
        )
        assert_snapshot_invariants(snapshot, self.max_entries)

        logger.info(
            f"Leaderboard [{timeframe.value}]: {snapshot.stats.total_users} users, "
            f"{len(ranked)} ranked, {len(failed_wallets)} failed wallets"
        )
        return snapshot
