"""
Tests for FumbleService: end-to-end wallet analysis, caching and invalidation.
"""

import asyncio
from datetime import timedelta

import pytest

from conftest import SALE_TIME, FakeTransactionSource, build_service, make_sell

from jeetboard.core.errors import UpstreamUnavailable
from jeetboard.core.models import FumbleClassification, Timeframe
from jeetboard.core.service import fumbles_key


@pytest.fixture
def transactions(sample_wallet_address):
    source = FakeTransactionSource()
    source.add_wallet(sample_wallet_address, [make_sell(amount=10.0)])
    return source


class TestComputeFumbles:
    def test_sell_before_rally(self, transactions, rally_prices, sample_wallet_address):
        service = build_service(transactions, rally_prices)
        result = asyncio.run(service.compute_fumbles(sample_wallet_address, Timeframe.ALL_TIME))

        assert len(result.fumbles) == 1
        assert result.fumbles[0].loss == 500.0
        assert result.fumbles[0].classification == FumbleClassification.EARLY
        assert result.total_loss == 500.0
        assert result.jeet_score == 33
        assert result.rank_tier == 4

    def test_sell_before_dump(self, transactions, dump_prices, sample_wallet_address):
        service = build_service(transactions, dump_prices)
        result = asyncio.run(service.compute_fumbles(sample_wallet_address, Timeframe.ALL_TIME))

        assert result.fumbles == ()
        assert result.total_loss == 0.0
        assert result.jeet_score == 0
        assert result.rank_tier == 5

    def test_empty_wallet_is_zero_valued_not_an_error(self, rally_prices):
        service = build_service(FakeTransactionSource(), rally_prices)
        result = asyncio.run(service.compute_fumbles("0xempty", Timeframe.DAILY))

        assert result.fumbles == ()
        assert result.jeet_score == 0
        assert result.analyzed_sales == 0

    def test_timeframe_bounds_transactions(self, transactions, rally_prices, sample_wallet_address):
        # The fixed 2024 sale is outside any rolling window but inside allTime
        service = build_service(transactions, rally_prices)
        result = asyncio.run(service.compute_fumbles(sample_wallet_address, Timeframe.MONTHLY))
        assert result.analyzed_sales == 0

    def test_idempotent_for_identical_inputs(self, transactions, rally_prices, sample_wallet_address):
        first = asyncio.run(build_service(transactions, rally_prices).compute_fumbles(
            sample_wallet_address, Timeframe.ALL_TIME
        ))
        second = asyncio.run(build_service(transactions, rally_prices).compute_fumbles(
            sample_wallet_address, Timeframe.ALL_TIME
        ))

        a, b = first.to_dict(), second.to_dict()
        a.pop("computedAt")
        b.pop("computedAt")
        assert a == b

    def test_paginated_history_is_merged(self, rally_prices, sample_wallet_address):
        source = FakeTransactionSource()
        first = make_sell("0x1", amount=10.0)
        second = make_sell("0x2", amount=4.0, timestamp=SALE_TIME + timedelta(minutes=5))
        source.add_wallet(sample_wallet_address, [first, second], [second])

        service = build_service(source, rally_prices)
        result = asyncio.run(service.compute_fumbles(sample_wallet_address, Timeframe.ALL_TIME))

        assert result.analyzed_sales == 2
        assert result.total_loss == 700.0

    def test_transaction_source_failure_propagates(self, rally_prices, sample_wallet_address):
        service = build_service(FakeTransactionSource(failing=[sample_wallet_address]), rally_prices)

        with pytest.raises(UpstreamUnavailable):
            asyncio.run(service.compute_fumbles(sample_wallet_address, Timeframe.ALL_TIME))
        assert service.cache.get(fumbles_key(sample_wallet_address, Timeframe.ALL_TIME)) is None


class TestCachingAndInvalidation:
    def test_second_call_is_served_from_cache(self, transactions, rally_prices, sample_wallet_address):
        service = build_service(transactions, rally_prices)

        async def twice():
            a = await service.compute_fumbles(sample_wallet_address, Timeframe.ALL_TIME)
            b = await service.compute_fumbles(sample_wallet_address, Timeframe.ALL_TIME)
            return a, b

        a, b = asyncio.run(twice())
        assert a is b
        assert len(transactions.calls) == 1

    def test_invalidate_wallet_forces_refetch(self, transactions, rally_prices, sample_wallet_address):
        service = build_service(transactions, rally_prices)

        async def scenario():
            await service.compute_fumbles(sample_wallet_address, Timeframe.ALL_TIME)
            await service.compute_fumbles(sample_wallet_address, Timeframe.WEEKLY)
            removed = service.invalidate_wallet(sample_wallet_address)
            await service.compute_fumbles(sample_wallet_address, Timeframe.ALL_TIME)
            return removed

        assert asyncio.run(scenario()) == 2
        assert len(transactions.calls) == 3

    def test_invalidation_leaves_leaderboard_snapshots(self, transactions, rally_prices, sample_wallet_address):
        service = build_service(transactions, rally_prices)
        service.cache.set("leaderboard:weekly", "snapshot")

        service.invalidate_wallet(sample_wallet_address)
        assert service.cache.get("leaderboard:weekly") == "snapshot"
