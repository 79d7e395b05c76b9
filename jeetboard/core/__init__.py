"""
Jeetboard Core Module

Provides price resolution, fumble detection, scoring, leaderboard
aggregation and the snapshot cache fronting them.
"""

from .cache import SnapshotCache
from .detector import FumbleDetector
from .errors import InvariantViolation, JeetboardError, LeaderboardUnavailable, UpstreamUnavailable
from .leaderboard import LeaderboardAggregator
from .models import (
    DetectionReport,
    DetectorConfig,
    Fumble,
    FumbleClassification,
    FumbleResult,
    LeaderboardEntry,
    LeaderboardSnapshot,
    LeaderboardStats,
    PricePoint,
    PriceQuote,
    RankTier,
    Timeframe,
    Transaction,
    TransactionDirection,
)
from .resolver import PriceHistoryResolver
from .scoring import build_fumble_result, calculate_jeet_score, classify_rank_tier
from .service import FumbleService
from .sources import PriceHistorySource, TransactionSource, UserDirectory, collect_transactions

__all__ = [
    # Cache
    "SnapshotCache",
    # Detector
    "FumbleDetector",
    "DetectorConfig",
    "DetectionReport",
    # Errors
    "JeetboardError",
    "UpstreamUnavailable",
    "LeaderboardUnavailable",
    "InvariantViolation",
    # Leaderboard
    "LeaderboardAggregator",
    "LeaderboardEntry",
    "LeaderboardSnapshot",
    "LeaderboardStats",
    # Models
    "Fumble",
    "FumbleClassification",
    "FumbleResult",
    "PricePoint",
    "PriceQuote",
    "RankTier",
    "Timeframe",
    "Transaction",
    "TransactionDirection",
    # Resolver
    "PriceHistoryResolver",
    # Scoring
    "build_fumble_result",
    "calculate_jeet_score",
    "classify_rank_tier",
    # Service
    "FumbleService",
    # Sources
    "PriceHistorySource",
    "TransactionSource",
    "UserDirectory",
    "collect_transactions",
]
