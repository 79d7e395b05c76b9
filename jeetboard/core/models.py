"""
Data models for fumble detection and leaderboard ranking.

This module defines the core data structures shared by the resolver,
detector, score calculator and leaderboard aggregator. Result types are
frozen so a computed snapshot can be handed to many concurrent readers.
"""

import calendar
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """
    Parse a timestamp from an upstream payload.

    Accepts datetimes, unix seconds/milliseconds and ISO-8601 strings
    (with or without a trailing ``Z``).
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = float(value)
        # CoinGecko returns milliseconds
        if seconds > 1e11:
            seconds /= 1000.0
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str) and value:
        text = value.strip()
        if text.isdigit():
            return parse_timestamp(int(text))
        return ensure_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    raise ValueError(f"Unparseable timestamp: {value!r}")


def _subtract_month(value: datetime) -> datetime:
    year, month = (value.year, value.month - 1) if value.month > 1 else (value.year - 1, 12)
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


class Timeframe(Enum):
    """Leaderboard / analysis window."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ALL_TIME = "allTime"

    @classmethod
    def parse(cls, value: Any) -> "Timeframe":
        """Parse a timeframe, accepting the wallet-level aliases (7d, 30d, all)."""
        if isinstance(value, cls):
            return value
        key = str(value).strip()
        aliases = {
            "1d": cls.DAILY,
            "day": cls.DAILY,
            "7d": cls.WEEKLY,
            "week": cls.WEEKLY,
            "30d": cls.MONTHLY,
            "month": cls.MONTHLY,
            "all": cls.ALL_TIME,
            "alltime": cls.ALL_TIME,
            "all_time": cls.ALL_TIME,
        }
        for member in cls:
            if member.value == key:
                return member
        if key.lower() in aliases:
            return aliases[key.lower()]
        raise ValueError(f"Unknown timeframe: {value!r}")

    def window_start(self, now: Optional[datetime] = None) -> datetime:
        """Start of this timeframe's window, relative to ``now``."""
        now = ensure_utc(now or utcnow())
        if self is Timeframe.DAILY:
            return now - timedelta(days=1)
        if self is Timeframe.WEEKLY:
            return now - timedelta(days=7)
        if self is Timeframe.MONTHLY:
            return _subtract_month(now)
        return EPOCH

    def window(self, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
        now = ensure_utc(now or utcnow())
        return self.window_start(now), now


class TransactionDirection(Enum):
    """Direction of a token transfer relative to the analyzed wallet."""
    IN = "in"
    OUT = "out"


class FumbleClassification(Enum):
    """Whether the sale happened before (Early) or after (Late) the peak."""
    EARLY = "Early"
    LATE = "Late"


class RankTier(Enum):
    """Discrete tier derived from the Jeet Score (1 = worst offender)."""
    DIAMOND_HANDS = 1  # Ironic
    PAPER_HANDS = 2
    WEAK_HANDS = 3
    SHAKY_HANDS = 4
    NORMAL_TRADER = 5

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").title()


@dataclass(frozen=True)
class Transaction:
    """
    A historical token transfer made by a wallet.

    Produced by the transaction source; the core never mutates it.
    """
    hash: str
    token_id: str
    token_symbol: str
    amount: float
    unit_price: float
    timestamp: datetime
    direction: TransactionDirection
    counterparty: Optional[str] = None

    def __post_init__(self):
        """Convert string direction to enum and normalise the timestamp."""
        if isinstance(self.direction, str):
            object.__setattr__(self, "direction", TransactionDirection(self.direction.lower()))
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))

    @property
    def is_outgoing(self) -> bool:
        return self.direction is TransactionDirection.OUT


@dataclass(frozen=True)
class PricePoint:
    """A single price observation for a token."""
    token_id: str
    timestamp: datetime
    price: float

    @classmethod
    def from_raw(cls, token_id: str, raw: Any) -> Optional["PricePoint"]:
        """
        Validate one upstream observation.

        Accepts ``[timestamp, price]`` pairs (CoinGecko) or mappings with
        ``unixTime``/``timestamp`` and ``value``/``price`` keys (Birdeye).
        Returns None for anything malformed instead of trusting its shape.
        """
        try:
            if isinstance(raw, (list, tuple)) and len(raw) >= 2:
                ts_raw, price_raw = raw[0], raw[1]
            elif isinstance(raw, dict):
                ts_raw = raw.get("unixTime", raw.get("timestamp"))
                price_raw = raw.get("value", raw.get("price"))
            else:
                return None
            if ts_raw is None or price_raw is None or isinstance(price_raw, bool):
                return None
            price = float(price_raw)
            if price < 0 or price != price:
                return None
            return cls(token_id=token_id, timestamp=parse_timestamp(ts_raw), price=price)
        except (TypeError, ValueError, OverflowError):
            return None


@dataclass(frozen=True)
class PriceQuote:
    """
    Resolver answer that keeps "confirmed zero" apart from "unknown".

    An unknown quote always carries price 0.
    """
    price: float
    known: bool = True

    @classmethod
    def unknown(cls) -> "PriceQuote":
        return cls(price=0.0, known=False)


@dataclass(frozen=True)
class Fumble:
    """A sale followed by a price rally; immutable once detected."""
    token_id: str
    token_symbol: str
    tx_hash: str
    sale_timestamp: datetime
    sale_price: float
    peak_price: float
    amount: float
    loss: float
    classification: FumbleClassification
    # Peak is a lower bound (one half of the window lookup failed)
    degraded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tokenId": self.token_id,
            "tokenSymbol": self.token_symbol,
            "txHash": self.tx_hash,
            "saleTimestamp": self.sale_timestamp.isoformat(),
            "salePrice": self.sale_price,
            "peakPrice": self.peak_price,
            "amount": self.amount,
            "loss": self.loss,
            "classification": self.classification.value,
            "degraded": self.degraded,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Fumble":
        return cls(
            token_id=data["tokenId"],
            token_symbol=data["tokenSymbol"],
            tx_hash=data.get("txHash", ""),
            sale_timestamp=parse_timestamp(data["saleTimestamp"]),
            sale_price=float(data["salePrice"]),
            peak_price=float(data["peakPrice"]),
            amount=float(data["amount"]),
            loss=float(data["loss"]),
            classification=FumbleClassification(data["classification"]),
            degraded=bool(data.get("degraded", False)),
        )


@dataclass(frozen=True)
class DetectionReport:
    """Raw detector output for one wallet, before scoring."""
    wallet_address: str
    fumbles: Tuple[Fumble, ...]
    analyzed_sales: int
    degraded_sales: int
    max_possible_loss: float


@dataclass(frozen=True)
class FumbleResult:
    """
    Scored fumble analysis for one (wallet, timeframe).

    Superseded wholesale on refresh; never updated in place.
    """
    wallet_address: str
    timeframe: Timeframe
    fumbles: Tuple[Fumble, ...]
    total_loss: float
    max_possible_loss: float
    jeet_score: int
    rank_tier: int
    analyzed_sales: int = 0
    degraded_sales: int = 0
    computed_at: datetime = field(default_factory=utcnow)

    @property
    def degraded(self) -> bool:
        """True when some price lookups failed and total_loss is a lower bound."""
        return self.degraded_sales > 0

    @property
    def rank_label(self) -> str:
        return RankTier(self.rank_tier).label

    @property
    def biggest_fumble(self) -> Optional[Fumble]:
        if not self.fumbles:
            return None
        return max(self.fumbles, key=lambda f: f.loss)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "walletAddress": self.wallet_address,
            "timeframe": self.timeframe.value,
            "fumbles": [f.to_dict() for f in self.fumbles],
            "totalLoss": self.total_loss,
            "maxPossibleLoss": self.max_possible_loss,
            "jeetScore": self.jeet_score,
            "rankTier": self.rank_tier,
            "analyzedSales": self.analyzed_sales,
            "degradedSales": self.degraded_sales,
            "computedAt": self.computed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FumbleResult":
        return cls(
            wallet_address=data["walletAddress"],
            timeframe=Timeframe.parse(data["timeframe"]),
            fumbles=tuple(Fumble.from_dict(f) for f in data.get("fumbles", [])),
            total_loss=float(data["totalLoss"]),
            max_possible_loss=float(data.get("maxPossibleLoss", 0.0)),
            jeet_score=int(data["jeetScore"]),
            rank_tier=int(data["rankTier"]),
            analyzed_sales=int(data.get("analyzedSales", 0)),
            degraded_sales=int(data.get("degradedSales", 0)),
            computed_at=parse_timestamp(data["computedAt"]) if data.get("computedAt") else utcnow(),
        )


@dataclass(frozen=True)
class BiggestFumble:
    """Display fact: a user's single highest-loss fumble."""
    token_symbol: str = ""
    loss: float = 0.0


@dataclass(frozen=True)
class LeaderboardEntry:
    """One ranked user inside a snapshot."""
    user_id: str
    wallet_address: str
    display_name: str
    total_loss: float
    jeet_score: int
    rank: int
    biggest_fumble: BiggestFumble = field(default_factory=BiggestFumble)
    wallet_count: int = 0
    partial: bool = False

    @classmethod
    def empty(cls) -> "LeaderboardEntry":
        """Sentinel used as top entry of an empty leaderboard."""
        return cls(user_id="", wallet_address="", display_name="", total_loss=0.0, jeet_score=0, rank=0)

    @property
    def is_empty(self) -> bool:
        return self.rank == 0 and not self.user_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "walletAddress": self.wallet_address,
            "displayName": self.display_name,
            "totalLoss": self.total_loss,
            "jeetScore": self.jeet_score,
            "rank": self.rank,
            "biggestFumble": {"token": self.biggest_fumble.token_symbol, "loss": self.biggest_fumble.loss},
            "walletCount": self.wallet_count,
            "partial": self.partial,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeaderboardEntry":
        biggest = data.get("biggestFumble") or {}
        return cls(
            user_id=data["userId"],
            wallet_address=data.get("walletAddress", ""),
            display_name=data.get("displayName", ""),
            total_loss=float(data["totalLoss"]),
            jeet_score=int(data["jeetScore"]),
            rank=int(data["rank"]),
            biggest_fumble=BiggestFumble(
                token_symbol=biggest.get("token", ""),
                loss=float(biggest.get("loss", 0.0)),
            ),
            wallet_count=int(data.get("walletCount", 0)),
            partial=bool(data.get("partial", False)),
        )


@dataclass(frozen=True)
class LeaderboardStats:
    """Summary statistics over all qualifying users."""
    total_users: int
    total_loss: float
    average_loss: float
    top_entry: LeaderboardEntry

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalUsers": self.total_users,
            "totalLoss": self.total_loss,
            "averageLoss": self.average_loss,
            "topEntry": self.top_entry.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeaderboardStats":
        return cls(
            total_users=int(data["totalUsers"]),
            total_loss=float(data["totalLoss"]),
            average_loss=float(data["averageLoss"]),
            top_entry=LeaderboardEntry.from_dict(data["topEntry"]),
        )


@dataclass(frozen=True)
class LeaderboardSnapshot:
    """
    Fully computed leaderboard for one timeframe.

    Immutable; replaced atomically in the cache when its TTL expires.
    """
    timeframe: Timeframe
    window_start: datetime
    window_end: datetime
    entries: Tuple[LeaderboardEntry, ...]
    stats: LeaderboardStats
    failed_wallets: Tuple[str, ...] = ()
    generated_at: datetime = field(default_factory=utcnow)

    @property
    def partial(self) -> bool:
        return bool(self.failed_wallets)

    def find_user(self, user_id: str) -> Optional[LeaderboardEntry]:
        for entry in self.entries:
            if entry.user_id == user_id:
                return entry
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timeframe": self.timeframe.value,
            "start": self.window_start.isoformat(),
            "end": self.window_end.isoformat(),
            "entries": [e.to_dict() for e in self.entries],
            "stats": self.stats.to_dict(),
            "failedWallets": list(self.failed_wallets),
            "generatedAt": self.generated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeaderboardSnapshot":
        return cls(
            timeframe=Timeframe.parse(data["timeframe"]),
            window_start=parse_timestamp(data["start"]),
            window_end=parse_timestamp(data["end"]),
            entries=tuple(LeaderboardEntry.from_dict(e) for e in data.get("entries", [])),
            stats=LeaderboardStats.from_dict(data["stats"]),
            failed_wallets=tuple(data.get("failedWallets", [])),
            generated_at=parse_timestamp(data["generatedAt"]) if data.get("generatedAt") else utcnow(),
        )


@dataclass(frozen=True)
class UserProfile:
    """A user known to the user directory."""
    user_id: str
    nickname: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.nickname or f"User_{self.user_id[:6]}"


@dataclass(frozen=True)
class UserPreferences:
    """Leaderboard-relevant user preferences."""
    show_leaderboard: bool = False


@dataclass(frozen=True)
class TransactionPage:
    """One page of transactions plus the cursor for the next page."""
    transactions: List[Transaction]
    next_cursor: Optional[str] = None


@dataclass
class DetectorConfig:
    """Tunable constants for fumble detection."""

    # Symmetric lookback/lookahead around each sale
    window: timedelta = field(default_factory=lambda: timedelta(days=30))

    # Peak must reach sale_price * rally_multiplier to count as a fumble
    rally_multiplier: float = 1.2

    # Concurrent price lookups per wallet
    max_concurrency: int = 8
