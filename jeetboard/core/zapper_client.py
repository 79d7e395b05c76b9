"""
Zapper GraphQL client for wallet transaction history.
"""

import asyncio
import base64
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import aiohttp

from ..config import JeetConfig
from .errors import UpstreamUnavailable
from .models import Transaction, TransactionDirection, TransactionPage, ensure_utc, parse_timestamp
from .sources import TransactionSource

logger = logging.getLogger(__name__)

TRANSACTIONS_QUERY = """
query TransactionsQuery($address: Address!, $before: String, $after: String, $first: Int = 100) {
  transactions(address: $address, before: $before, after: $after, first: $first) {
    pageInfo {
      hasNextPage
      endCursor
    }
    nodes {
      hash
      type
      timestamp
      symbol
      amount
      amountUSD
      token {
        address
        symbol
        decimals
        price
      }
      to {
        address
      }
      from {
        address
      }
    }
  }
}
"""


def parse_transaction_node(node: Dict[str, Any], wallet_address: str) -> Optional[Transaction]:
    """
    Convert one Zapper transaction node into a Transaction.

    A transfer is outgoing when the wallet is the sender. Nodes missing a
    hash, token, timestamp or amount are rejected (None).
    """
    try:
        token = node.get("token") or {}
        sender = ((node.get("from") or {}).get("address") or "").lower()
        receiver = ((node.get("to") or {}).get("address") or "").lower()
        wallet = wallet_address.lower()

        if sender == wallet:
            direction = TransactionDirection.OUT
            counterparty = receiver or None
        else:
            direction = TransactionDirection.IN
            counterparty = sender or None

        token_id = token.get("address")
        if not node.get("hash") or not token_id or node.get("timestamp") is None:
            return None

        return Transaction(
            hash=node["hash"],
            token_id=token_id,
            token_symbol=token.get("symbol") or node.get("symbol") or "",
            amount=abs(float(node["amount"])),
            unit_price=float(token.get("price") or 0.0),
            timestamp=parse_timestamp(node["timestamp"]),
            direction=direction,
            counterparty=counterparty,
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        logger.debug(f"[Zapper] Skipping malformed transaction node: {e}")
        return None


class ZapperClient(TransactionSource):
    """Client for the Zapper public GraphQL API."""

    name = "zapper"

    def __init__(
        self,
        api_key: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        page_size: int = 100,
        timeout_seconds: Optional[float] = None,
    ):
        """
        Initialize the Zapper client.

        Args:
            api_key: Zapper API key (falls back to ZAPPER_API_KEY)
            session: Optional aiohttp session (for connection pooling)
            page_size: Transactions requested per page
            timeout_seconds: Per-request timeout
        """
        self.api_key = api_key or JeetConfig.get_zapper_api_key() or ""
        self.base_url = "https://public.zapper.xyz/graphql"
        self.page_size = page_size
        self.timeout_seconds = timeout_seconds or JeetConfig.get_upstream_timeout()
        self._encoded_key = base64.b64encode(self.api_key.encode()).decode()
        self._session = session
        self._own_session = False

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._own_session = True
        return self._session

    async def close(self):
        """Close session if we own it."""
        if self._own_session and self._session:
            await self._session.close()
            self._session = None
            self._own_session = False

    async def _query(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """POST a GraphQL query; raises UpstreamUnavailable on any failure."""
        session = await self._get_session()
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Basic {self._encoded_key}",
        }
        try:
            async with session.post(
                self.base_url,
                json={"query": query, "variables": variables},
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as response:
                response.raise_for_status()
                payload = await response.json()
        except aiohttp.ClientResponseError as e:
            raise UpstreamUnavailable(self.name, f"HTTP {e.status}: {e.message}", status=e.status) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamUnavailable(self.name, str(e) or type(e).__name__) from e

        if not isinstance(payload, dict):
            raise UpstreamUnavailable(self.name, "unexpected payload")
        if payload.get("errors"):
            messages = "; ".join(str(err.get("message", err)) for err in payload["errors"])
            logger.error(f"[Zapper] GraphQL errors: {messages}")
            raise UpstreamUnavailable(self.name, f"GraphQL errors: {messages}")
        return payload

    async def fetch_transactions(
        self,
        address: str,
        since: datetime,
        cursor: Optional[str] = None,
    ) -> TransactionPage:
        """
        Fetch one page of a wallet's transactions (newest first).

        The next cursor is dropped once the page reaches past ``since`` so
        callers stop paginating at the window boundary.
        """
        since = ensure_utc(since)
        payload = await self._query(
            TRANSACTIONS_QUERY,
            {"address": address, "first": self.page_size, "after": cursor},
        )

        connection = ((payload.get("data") or {}).get("transactions")) or {}
        nodes: List[Dict[str, Any]] = connection.get("nodes") or []
        page_info = connection.get("pageInfo") or {}

        transactions = []
        reached_boundary = False
        for node in nodes:
            tx = parse_transaction_node(node, address)
            if tx is None:
                continue
            if tx.timestamp < since:
                reached_boundary = True
                continue
            transactions.append(tx)

        next_cursor = page_info.get("endCursor") if page_info.get("hasNextPage") else None
        if reached_boundary:
            next_cursor = None

        logger.debug(f"[Zapper] {address[:8]}...: {len(transactions)} txs on page, more={bool(next_cursor)}")
        return TransactionPage(transactions=transactions, next_cursor=next_cursor)
