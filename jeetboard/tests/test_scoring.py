"""
Tests for Jeet Score calculation and result invariants.
"""

import pytest

from conftest import make_fumble

from jeetboard.core.errors import InvariantViolation
from jeetboard.core.models import DetectionReport, FumbleResult, RankTier, Timeframe
from jeetboard.core.scoring import (
    assert_result_invariants,
    build_fumble_result,
    calculate_jeet_score,
    calculate_total_loss,
    classify_rank_tier,
    sort_fumbles,
)


def _report(fumbles=(), max_possible_loss=0.0, analyzed=1, degraded=0):
    return DetectionReport(
        wallet_address="0xabc",
        fumbles=tuple(fumbles),
        analyzed_sales=analyzed,
        degraded_sales=degraded,
        max_possible_loss=max_possible_loss,
    )


class TestJeetScore:
    def test_ratio_formula(self):
        assert calculate_jeet_score(500.0, 1500.0) == 33
        assert calculate_jeet_score(750.0, 1000.0) == 75

    def test_zero_denominator_is_zero(self):
        assert calculate_jeet_score(0.0, 0.0) == 0
        assert calculate_jeet_score(100.0, 0.0) == 0

    def test_clamped_to_100(self):
        assert calculate_jeet_score(5000.0, 1000.0) == 100

    def test_rounds_half_up(self):
        assert calculate_jeet_score(1.0, 8.0) == 13
        assert calculate_jeet_score(5.0, 8.0) == 63


class TestRankTier:
    @pytest.mark.parametrize(
        "score,tier",
        [(100, 1), (90, 1), (89, 2), (70, 2), (69, 3), (50, 3), (49, 4), (30, 4), (29, 5), (0, 5)],
    )
    def test_thresholds_inclusive_on_lower_bound(self, score, tier):
        assert classify_rank_tier(score) == tier

    def test_labels(self):
        assert RankTier(1).label == "Diamond Hands"
        assert RankTier(5).label == "Normal Trader"


class TestBuildFumbleResult:
    def test_single_fumble_scenario(self):
        fumble = make_fumble(500.0)
        result = build_fumble_result(_report([fumble], max_possible_loss=1500.0), Timeframe.WEEKLY)

        assert result.total_loss == 500.0
        assert result.jeet_score == 33
        assert result.rank_tier == 4
        assert result.biggest_fumble == fumble

    def test_no_fumbles_scenario(self):
        result = build_fumble_result(_report(max_possible_loss=900.0), Timeframe.WEEKLY)

        assert result.fumbles == ()
        assert result.total_loss == 0.0
        assert result.jeet_score == 0
        assert result.rank_tier == 5

    def test_fumbles_sorted_by_loss_desc(self):
        fumbles = [make_fumble(10.0, tx_hash="a"), make_fumble(30.0, tx_hash="b"), make_fumble(20.0, tx_hash="c")]
        result = build_fumble_result(_report(fumbles, max_possible_loss=100.0), Timeframe.DAILY)
        assert [f.tx_hash for f in result.fumbles] == ["b", "c", "a"]

    def test_sort_ties_resolved_by_hash(self):
        fumbles = [make_fumble(10.0, tx_hash="z"), make_fumble(10.0, tx_hash="a")]
        assert [f.tx_hash for f in sort_fumbles(fumbles)] == ["a", "z"]

    def test_degraded_flag(self):
        result = build_fumble_result(_report(degraded=2), Timeframe.DAILY)
        assert result.degraded
        assert result.degraded_sales == 2

    def test_total_loss(self):
        assert calculate_total_loss([make_fumble(1.5), make_fumble(2.5)]) == 4.0


class TestResultInvariants:
    def _result(self, **overrides):
        fields = dict(
            wallet_address="0xabc",
            timeframe=Timeframe.WEEKLY,
            fumbles=(),
            total_loss=0.0,
            max_possible_loss=0.0,
            jeet_score=0,
            rank_tier=5,
        )
        fields.update(overrides)
        return FumbleResult(**fields)

    def test_valid_result_passes(self):
        assert_result_invariants(self._result())

    def test_score_out_of_range_fails_loudly(self):
        with pytest.raises(InvariantViolation):
            assert_result_invariants(self._result(jeet_score=101))

    def test_non_positive_fumble_loss_fails_loudly(self):
        with pytest.raises(InvariantViolation):
            assert_result_invariants(self._result(fumbles=(make_fumble(0.0),)))
