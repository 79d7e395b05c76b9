"""
Tests for the Leaderboard Aggregator.
"""

import asyncio

import pytest

from conftest import (
    FakeTransactionSource,
    FakeUserDirectory,
    StubFumbleService,
    build_service,
    make_result,
    make_sell,
)

from jeetboard.core.cache import SnapshotCache
from jeetboard.core.errors import LeaderboardUnavailable
from jeetboard.core.leaderboard import LeaderboardAggregator
from jeetboard.core.models import Timeframe


def _aggregator(users, results=None, failing=(), max_entries=100, directory=None):
    service = StubFumbleService(results, failing=failing)
    directory = directory or FakeUserDirectory(users)
    return LeaderboardAggregator(service, directory, SnapshotCache(), max_entries=max_entries), service


def _build(aggregator, timeframe=Timeframe.WEEKLY):
    return asyncio.run(aggregator.compute_leaderboard(timeframe))


class TestAggregation:
    def test_user_losses_summed_across_wallets(self):
        aggregator, _ = _aggregator(
            {"u1": ("alice", True, ["0xa", "0xb"])},
            {"0xa": make_result("0xa", [500.0]), "0xb": make_result("0xb", [300.0])},
        )
        snapshot = _build(aggregator)

        entry = snapshot.entries[0]
        assert entry.total_loss == 800.0
        assert entry.wallet_count == 2
        assert entry.wallet_address == "0xa"
        assert entry.biggest_fumble.loss == 500.0

    def test_jeet_score_uses_summed_ratio(self):
        aggregator, _ = _aggregator(
            {"u1": (None, True, ["0xa", "0xb"])},
            {
                "0xa": make_result("0xa", [500.0], max_possible_loss=1000.0),
                "0xb": make_result("0xb", [300.0], max_possible_loss=3000.0),
            },
        )
        assert _build(aggregator).entries[0].jeet_score == 20

    def test_display_name_falls_back_to_user_prefix(self):
        aggregator, _ = _aggregator({"abcdefgh": (None, True, ["0xa"])})
        assert _build(aggregator).entries[0].display_name == "User_abcdef"

    def test_ties_broken_by_user_id(self):
        aggregator, _ = _aggregator(
            {
                "b": (None, True, ["0xb"]),
                "a": (None, True, ["0xa"]),
                "c": (None, True, ["0xc"]),
            },
            {
                "0xb": make_result("0xb", [800.0]),
                "0xa": make_result("0xa", [800.0]),
                "0xc": make_result("0xc", [200.0]),
            },
        )
        snapshot = _build(aggregator)

        assert [(e.user_id, e.total_loss, e.rank) for e in snapshot.entries] == [
            ("a", 800.0, 1),
            ("b", 800.0, 2),
            ("c", 200.0, 3),
        ]

    def test_opted_out_users_are_excluded(self):
        aggregator, service = _aggregator(
            {"in": (None, True, ["0xa"]), "out": (None, False, ["0xb"])},
        )
        snapshot = _build(aggregator)

        assert [e.user_id for e in snapshot.entries] == ["in"]
        assert [address for address, _ in service.calls] == ["0xa"]

    def test_user_without_wallets_ranks_with_zero_loss(self):
        aggregator, _ = _aggregator({"u1": (None, True, [])})
        entry = _build(aggregator).entries[0]
        assert entry.total_loss == 0.0
        assert entry.wallet_count == 0

    def test_no_users_gives_empty_snapshot(self):
        snapshot = _build(_aggregator({})[0])

        assert snapshot.entries == ()
        assert snapshot.stats.total_users == 0
        assert snapshot.stats.average_loss == 0.0
        assert snapshot.stats.top_entry.is_empty


class TestTruncationAndStats:
    def test_capped_at_max_entries_with_pre_truncation_stats(self):
        users = {f"user{i:03d}": (None, True, [f"0x{i:03d}"]) for i in range(150)}
        results = {f"0x{i:03d}": make_result(f"0x{i:03d}", [float(i + 1)]) for i in range(150)}
        snapshot = _build(_aggregator(users, results)[0])

        assert len(snapshot.entries) == 100
        assert snapshot.entries[0].user_id == "user149"
        assert snapshot.entries[-1].rank == 100
        assert snapshot.stats.total_users == 150
        assert snapshot.stats.total_loss == sum(range(1, 151))
        assert snapshot.stats.average_loss == sum(range(1, 151)) / 150
        assert snapshot.stats.top_entry == snapshot.entries[0]


class TestFailureIsolation:
    def test_failed_wallet_flags_entry_partial(self):
        aggregator, _ = _aggregator(
            {"u1": (None, True, ["0xa", "0xbad"]), "u2": (None, True, ["0xc"])},
            {"0xa": make_result("0xa", [100.0]), "0xc": make_result("0xc", [50.0])},
            failing=["0xbad"],
        )
        snapshot = _build(aggregator)

        assert snapshot.partial
        assert snapshot.failed_wallets == ("0xbad",)
        u1, u2 = snapshot.entries
        assert u1.partial and u1.total_loss == 100.0
        assert not u2.partial

    def test_user_list_failure_raises(self):
        directory = FakeUserDirectory(list_fails=True)
        aggregator, _ = _aggregator({}, directory=directory)

        with pytest.raises(LeaderboardUnavailable):
            _build(aggregator)

    def test_all_wallet_lookups_failing_raises(self):
        directory = FakeUserDirectory({"u1": (None, True, ["0xa"])}, failing_users=["u1"])
        aggregator, _ = _aggregator({}, directory=directory)

        with pytest.raises(LeaderboardUnavailable):
            _build(aggregator)

    def test_single_wallet_lookup_failure_skips_user(self):
        directory = FakeUserDirectory(
            {"u1": (None, True, ["0xa"]), "u2": (None, True, ["0xb"])},
            failing_users=["u1"],
        )
        aggregator, _ = _aggregator({}, directory=directory)
        assert [e.user_id for e in _build(aggregator).entries] == ["u2"]


class TestCachingAndRanks:
    def test_snapshot_cached_per_timeframe(self):
        aggregator, service = _aggregator({"u1": (None, True, ["0xa"])})

        async def scenario():
            first = await aggregator.compute_leaderboard(Timeframe.WEEKLY)
            second = await aggregator.compute_leaderboard(Timeframe.WEEKLY)
            await aggregator.compute_leaderboard(Timeframe.DAILY)
            return first, second

        first, second = asyncio.run(scenario())
        assert second is first
        assert len(service.calls) == 2

    def test_get_user_rank(self):
        aggregator, _ = _aggregator(
            {"a": (None, True, ["0xa"]), "b": (None, True, ["0xb"])},
            {"0xa": make_result("0xa", [10.0]), "0xb": make_result("0xb", [20.0])},
        )

        assert asyncio.run(aggregator.get_user_rank("b", Timeframe.WEEKLY)) == 1
        assert asyncio.run(aggregator.get_user_rank("a", Timeframe.WEEKLY)) == 2
        assert asyncio.run(aggregator.get_user_rank("ghost", Timeframe.WEEKLY)) == 0

    def test_get_user_ranks_covers_every_timeframe(self):
        aggregator, _ = _aggregator({"a": (None, True, ["0xa"])})
        ranks = asyncio.run(aggregator.get_user_ranks("a"))
        assert ranks == {tf: 1 for tf in Timeframe}

    def test_get_leaderboard_stats(self):
        aggregator, _ = _aggregator(
            {"a": (None, True, ["0xa"])},
            {"0xa": make_result("0xa", [42.0])},
        )
        stats = asyncio.run(aggregator.get_leaderboard_stats(Timeframe.WEEKLY))
        assert stats.total_users == 1
        assert stats.total_loss == 42.0


class _CountingService(StubFumbleService):
    """Records the most wallet computations ever running at once."""

    def __init__(self):
        super().__init__()
        self.running = 0
        self.peak = 0

    async def compute_fumbles(self, address, timeframe):
        self.running += 1
        self.peak = max(self.peak, self.running)
        try:
            await asyncio.sleep(0.001)
            return await super().compute_fumbles(address, timeframe)
        finally:
            self.running -= 1


class TestGlobalConcurrency:
    def test_budget_shared_across_concurrent_builds(self):
        users = {f"u{i}": (None, True, [f"0x{i}"]) for i in range(20)}
        service = _CountingService()
        aggregator = LeaderboardAggregator(service, FakeUserDirectory(users), SnapshotCache(), global_concurrency=2)

        ranks = asyncio.run(aggregator.get_user_ranks("u1"))

        assert set(ranks) == set(Timeframe)
        assert len(service.calls) == 20 * len(Timeframe)
        assert service.peak <= 2

    def test_budget_survives_a_new_event_loop(self):
        service = _CountingService()
        aggregator = LeaderboardAggregator(
            service, FakeUserDirectory({"a": (None, True, ["0xa", "0xb", "0xc"])}), SnapshotCache(), global_concurrency=1
        )

        asyncio.run(aggregator.compute_leaderboard(Timeframe.DAILY))
        asyncio.run(aggregator.compute_leaderboard(Timeframe.WEEKLY))

        assert len(service.calls) == 6
        assert service.peak == 1


def test_end_to_end_two_wallets_one_user(rally_prices):
    """Real detector pipeline: two wallets of one user add up."""
    transactions = FakeTransactionSource()
    transactions.add_wallet("0xa", [make_sell("0x1", amount=10.0)])
    transactions.add_wallet("0xb", [make_sell("0x2", amount=6.0)])
    service = build_service(transactions, rally_prices)
    aggregator = LeaderboardAggregator(
        service,
        FakeUserDirectory({"u1": ("alice", True, ["0xa", "0xb"])}),
        service.cache,
    )

    snapshot = asyncio.run(aggregator.compute_leaderboard(Timeframe.ALL_TIME))

    entry = snapshot.entries[0]
    assert entry.total_loss == 800.0
    assert entry.rank == 1
    assert entry.biggest_fumble.token_symbol == "TKN"
    assert entry.biggest_fumble.loss == 500.0
