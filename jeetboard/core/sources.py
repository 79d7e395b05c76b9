"""
Collaborator interfaces consumed by the core.

Concrete adapters live in ``zapper_client``, ``coingecko_client``,
``birdeye_client`` and ``user_directory``; tests substitute in-memory fakes.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from .models import PricePoint, Transaction, TransactionPage, UserPreferences, UserProfile

logger = logging.getLogger(__name__)


class TransactionSource(ABC):
    """Paginated wallet transaction history."""

    @abstractmethod
    async def fetch_transactions(
        self,
        address: str,
        since: datetime,
        cursor: Optional[str] = None,
    ) -> TransactionPage:
        """Fetch one page of transactions at or after ``since``."""


class PriceHistorySource(ABC):
    """Historical token prices."""

    name = "price"

    @abstractmethod
    async def fetch_price_history(
        self,
        token_id: str,
        start: datetime,
        end: datetime,
    ) -> List[PricePoint]:
        """Fetch observations in ``[start, end]``; may raise UpstreamUnavailable."""


class UserDirectory(ABC):
    """Read-only view of users, their preferences and their wallets."""

    @abstractmethod
    async def list_users(self) -> List[UserProfile]:
        """Enumerate all known users."""

    @abstractmethod
    async def fetch_user_preferences(self, user_id: str) -> UserPreferences:
        """Leaderboard preferences of one user."""

    @abstractmethod
    async def fetch_user_wallets(self, user_id: str) -> List[str]:
        """Wallet addresses registered by one user."""


async def collect_transactions(
    source: TransactionSource,
    address: str,
    since: datetime,
    max_pages: int = 20,
) -> List[Transaction]:
    """
    Drain a paginated transaction source under a moving cursor.

    Pages may overlap while new transactions arrive between requests, so
    results are merged by hash (later pages win) and returned in timestamp
    order. Stops on an empty/repeated cursor or after ``max_pages``.
    """
    merged: Dict[str, Transaction] = {}
    seen_cursors = set()
    cursor: Optional[str] = None

    for page_number in range(max(1, max_pages)):
        page = await source.fetch_transactions(address, since, cursor)
        for tx in page.transactions:
            if tx.timestamp >= since:
                merged[tx.hash] = tx

        next_cursor = page.next_cursor
        if not next_cursor or not page.transactions:
            break
        if next_cursor in seen_cursors:
            logger.warning(f"Cursor repeated for {address[:8]}... after {page_number + 1} pages, stopping")
            break
        seen_cursors.add(next_cursor)
        cursor = next_cursor
    else:
        logger.debug(f"Reached max pages ({max_pages}) for {address[:8]}...")

    return sorted(merged.values(), key=lambda t: (t.timestamp, t.hash))
