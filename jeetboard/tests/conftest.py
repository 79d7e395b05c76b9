"""
Pytest configuration and fixtures for jeetboard tests.

In-memory fakes stand in for the external transaction, price and user
sources so the core can be exercised without network access.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence

import pytest

from jeetboard.core.cache import SnapshotCache
from jeetboard.core.detector import FumbleDetector
from jeetboard.core.errors import UpstreamUnavailable
from jeetboard.core.models import (
    DetectorConfig,
    Fumble,
    FumbleClassification,
    FumbleResult,
    PricePoint,
    Timeframe,
    Transaction,
    TransactionDirection,
    TransactionPage,
    UserPreferences,
    UserProfile,
)
from jeetboard.core.resolver import PriceHistoryResolver
from jeetboard.core.service import FumbleService
from jeetboard.core.sources import PriceHistorySource, TransactionSource, UserDirectory

SALE_TIME = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakePriceSource(PriceHistorySource):
    """Serves fixed price histories; tokens in ``failing`` raise UpstreamUnavailable."""

    name = "fake-prices"

    def __init__(
        self,
        history: Optional[Dict[str, Sequence[PricePoint]]] = None,
        failing: Iterable[str] = (),
        fail_from: Optional[datetime] = None,
        delay: float = 0.0,
    ):
        self.history = {k: list(v) for k, v in (history or {}).items()}
        self.failing = set(failing)
        # Queries starting at or after this instant fail
        self.fail_from = fail_from
        self.delay = delay
        self.calls: List[tuple] = []

    async def fetch_price_history(self, token_id, start, end):
        self.calls.append((token_id, start, end))
        if self.delay:
            await asyncio.sleep(self.delay)
        if token_id in self.failing:
            raise UpstreamUnavailable(self.name, f"{token_id} unavailable")
        if self.fail_from is not None and start >= self.fail_from:
            raise UpstreamUnavailable(self.name, "range unavailable")
        return [p for p in self.history.get(token_id, []) if start <= p.timestamp <= end]


class FakeTransactionSource(TransactionSource):
    """Serves pre-built pages per wallet; cursors are page indexes."""

    def __init__(self, pages: Optional[Dict[str, List[List[Transaction]]]] = None, failing: Iterable[str] = ()):
        self.pages = pages or {}
        self.failing = set(failing)
        self.calls: List[tuple] = []

    def add_wallet(self, address: str, *pages: List[Transaction]):
        self.pages[address] = list(pages)

    async def fetch_transactions(self, address, since, cursor=None):
        self.calls.append((address, cursor))
        if address in self.failing:
            raise UpstreamUnavailable("fake-txs", f"{address} unavailable")
        pages = self.pages.get(address, [])
        index = int(cursor) if cursor else 0
        if index >= len(pages):
            return TransactionPage(transactions=[])
        next_cursor = str(index + 1) if index + 1 < len(pages) else None
        return TransactionPage(
            transactions=[t for t in pages[index] if t.timestamp >= since],
            next_cursor=next_cursor,
        )


class FakeUserDirectory(UserDirectory):
    """Users as ``{user_id: (nickname, show_leaderboard, wallets)}``."""

    def __init__(self, users=None, list_fails: bool = False, failing_users: Iterable[str] = ()):
        self.users = users or {}
        self.list_fails = list_fails
        self.failing_users = set(failing_users)

    async def list_users(self):
        if self.list_fails:
            raise UpstreamUnavailable("fake-users", "directory down")
        return [UserProfile(user_id=uid, nickname=nick) for uid, (nick, _, _) in self.users.items()]

    async def fetch_user_preferences(self, user_id):
        return UserPreferences(show_leaderboard=self.users[user_id][1])

    async def fetch_user_wallets(self, user_id):
        if user_id in self.failing_users:
            raise UpstreamUnavailable("fake-users", f"wallets of {user_id} unavailable")
        return list(self.users[user_id][2])


class StubFumbleService:
    """Returns preset FumbleResults per wallet; counts calls."""

    def __init__(self, results: Optional[Dict[str, FumbleResult]] = None, failing: Iterable[str] = ()):
        self.results = results or {}
        self.failing = set(failing)
        self.calls: List[tuple] = []

    async def compute_fumbles(self, address, timeframe):
        self.calls.append((address, timeframe))
        if address in self.failing:
            raise UpstreamUnavailable("fake-txs", f"{address} unavailable")
        return self.results.get(address) or make_result(address, [], timeframe=timeframe)


def make_sell(
    tx_hash: str = "0xsell1",
    token_id: str = "TKN",
    amount: float = 10.0,
    timestamp: datetime = SALE_TIME,
    symbol: Optional[str] = None,
    direction: TransactionDirection = TransactionDirection.OUT,
) -> Transaction:
    return Transaction(
        hash=tx_hash,
        token_id=token_id,
        token_symbol=symbol or token_id,
        amount=amount,
        unit_price=0.0,
        timestamp=timestamp,
        direction=direction,
    )


def make_prices(token_id: str, *offsets_and_prices) -> List[PricePoint]:
    """``make_prices("TKN", (0, 100), (5, 150))``: offsets in days from SALE_TIME."""
    return [
        PricePoint(token_id=token_id, timestamp=SALE_TIME + timedelta(days=days), price=price)
        for days, price in offsets_and_prices
    ]


def make_fumble(loss: float, symbol: str = "TKN", tx_hash: str = "0xf") -> Fumble:
    return Fumble(
        token_id=symbol,
        token_symbol=symbol,
        tx_hash=tx_hash,
        sale_timestamp=SALE_TIME,
        sale_price=1.0,
        peak_price=1.0 + loss,
        amount=1.0,
        loss=loss,
        classification=FumbleClassification.EARLY,
    )


def make_result(
    address: str,
    losses: Sequence[float],
    max_possible_loss: Optional[float] = None,
    timeframe: Timeframe = Timeframe.WEEKLY,
) -> FumbleResult:
    fumbles = tuple(make_fumble(loss, tx_hash=f"{address}-{i}") for i, loss in enumerate(losses))
    total = sum(losses)
    return FumbleResult(
        wallet_address=address,
        timeframe=timeframe,
        fumbles=fumbles,
        total_loss=total,
        max_possible_loss=max_possible_loss if max_possible_loss is not None else total * 2,
        jeet_score=50 if total else 0,
        rank_tier=3 if total else 5,
    )


def build_service(
    transactions: FakeTransactionSource,
    prices: FakePriceSource,
    cache: Optional[SnapshotCache] = None,
    rally_multiplier: float = 1.2,
) -> FumbleService:
    cache = cache or SnapshotCache()
    resolver = PriceHistoryResolver(prices, cache=cache, timeout_seconds=1.0)
    detector = FumbleDetector(resolver, DetectorConfig(rally_multiplier=rally_multiplier))
    return FumbleService(transactions, detector, cache)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def sample_wallet_address():
    """Sample EVM wallet address for testing."""
    return "0x1111111111111111111111111111111111111111"


@pytest.fixture
def rally_prices():
    """Sale at 100, rally to 150 five days later."""
    return FakePriceSource({"TKN": make_prices("TKN", (0, 100.0), (5, 150.0))})


@pytest.fixture
def dump_prices():
    """Sale at 100, price only falls afterwards."""
    return FakePriceSource({"TKN": make_prices("TKN", (0, 100.0), (5, 90.0))})
