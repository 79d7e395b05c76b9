"""
Jeet Score Calculator

Reduces a wallet's fumbles into:
- Total loss: sum of every fumble's opportunity loss
- Jeet Score (0-100): share of the maximum possible loss actually fumbled
- Rank tier (1-5): discrete bucket of the Jeet Score

The score is the ratio formula::

    jeet_score = round(total_loss / max_possible_loss * 100)

where ``max_possible_loss`` is the sum of ``peak_price * amount`` over every
analyzed sale. It is scale-invariant across wallet sizes. The legacy
"magnitude x frequency" blend (loss / $1000 times fumbles / 10) is not used.
"""

import math
from typing import Iterable, Tuple

from .errors import InvariantViolation
from .models import DetectionReport, Fumble, FumbleResult, LeaderboardSnapshot, RankTier, Timeframe

# Inclusive lower bounds, checked top-down
RANK_TIER_THRESHOLDS: Tuple[Tuple[float, RankTier], ...] = (
    (90.0, RankTier.DIAMOND_HANDS),
    (70.0, RankTier.PAPER_HANDS),
    (50.0, RankTier.WEAK_HANDS),
    (30.0, RankTier.SHAKY_HANDS),
)


def calculate_total_loss(fumbles: Iterable[Fumble]) -> float:
    return sum(f.loss for f in fumbles)


def calculate_jeet_score(total_loss: float, max_possible_loss: float) -> int:
    """
    Calculate the Jeet Score (0-100).

    Args:
        total_loss: Sum of fumble losses
        max_possible_loss: Sum of peak_price * amount over analyzed sales

    Returns:
        Rounded percentage clamped to [0, 100]; 0 when the denominator is 0
    """
    if max_possible_loss <= 0 or total_loss <= 0:
        return 0
    # Half-up rounding, not banker's rounding
    score = math.floor(total_loss / max_possible_loss * 100 + 0.5)
    return int(max(0, min(score, 100)))


def classify_rank_tier(jeet_score: float) -> int:
    """
    Rank tier for a Jeet Score.

    Thresholds:
    - 1 (Diamond Hands, ironically): >= 90
    - 2 (Paper Hands): >= 70
    - 3 (Weak Hands): >= 50
    - 4 (Shaky Hands): >= 30
    - 5 (Normal Trader): < 30
    """
    for threshold, tier in RANK_TIER_THRESHOLDS:
        if jeet_score >= threshold:
            return tier.value
    return RankTier.NORMAL_TRADER.value


def sort_fumbles(fumbles: Iterable[Fumble]) -> Tuple[Fumble, ...]:
    """Loss descending; sale time then hash break ties so output is deterministic."""
    return tuple(sorted(fumbles, key=lambda f: (-f.loss, f.sale_timestamp, f.tx_hash)))


def build_fumble_result(report: DetectionReport, timeframe: Timeframe) -> FumbleResult:
    """Score a detector report into a FumbleResult."""
    fumbles = sort_fumbles(report.fumbles)
    total_loss = calculate_total_loss(fumbles)
    jeet_score = calculate_jeet_score(total_loss, report.max_possible_loss)

    result = FumbleResult(
        wallet_address=report.wallet_address,
        timeframe=timeframe,
        fumbles=fumbles,
        total_loss=total_loss,
        max_possible_loss=report.max_possible_loss,
        jeet_score=jeet_score,
        rank_tier=classify_rank_tier(jeet_score),
        analyzed_sales=report.analyzed_sales,
        degraded_sales=report.degraded_sales,
    )
    assert_result_invariants(result)
    return result


def assert_result_invariants(result: FumbleResult):
    """Raise InvariantViolation if a FumbleResult is internally inconsistent."""
    for fumble in result.fumbles:
        if fumble.loss <= 0:
            raise InvariantViolation(f"Non-positive fumble loss {fumble.loss} for {fumble.tx_hash}")
    if not 0 <= result.jeet_score <= 100:
        raise InvariantViolation(f"Jeet score {result.jeet_score} out of range")
    if result.total_loss < 0:
        raise InvariantViolation(f"Negative total loss {result.total_loss}")


def assert_snapshot_invariants(snapshot: LeaderboardSnapshot, max_entries: int = 100):
    """Raise InvariantViolation on non-dense ranks, bad ordering or oversize."""
    entries = snapshot.entries
    if len(entries) > max_entries:
        raise InvariantViolation(f"Snapshot holds {len(entries)} entries (max {max_entries})")
    for index, entry in enumerate(entries):
        if entry.rank != index + 1:
            raise InvariantViolation(f"Rank {entry.rank} at position {index + 1} is not dense")
        if not 0 <= entry.jeet_score <= 100:
            raise InvariantViolation(f"Jeet score {entry.jeet_score} out of range for {entry.user_id}")
        if index:
            previous = entries[index - 1]
            out_of_order = previous.total_loss < entry.total_loss or (
                previous.total_loss == entry.total_loss and previous.user_id > entry.user_id
            )
            if out_of_order:
                raise InvariantViolation(f"Entries out of order at rank {entry.rank}")
