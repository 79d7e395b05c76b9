"""
CoinGecko API client for historical token prices.
"""

import asyncio
import logging
import re
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp

from ..config import JeetConfig
from .errors import UpstreamUnavailable
from .models import PricePoint, ensure_utc
from .sources import PriceHistorySource

logger = logging.getLogger(__name__)

_EVM_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")


def _redact(s: str) -> str:
    # Keep API keys out of logs
    return re.sub(r"(api[-_]key=)[^&\s]+", r"\1REDACTED", s, flags=re.IGNORECASE)


class CoinGeckoClient(PriceHistorySource):
    """Client for CoinGecko's ``market_chart/range`` endpoint."""

    name = "coingecko"
    PRO_URL = "https://pro-api.coingecko.com/api/v3"
    PUBLIC_URL = "https://api.coingecko.com/api/v3"

    def __init__(
        self,
        api_key: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        platform: str = "ethereum",
    ):
        """
        Initialize the CoinGecko client.

        Args:
            api_key: CoinGecko Pro API key (falls back to COINGECKO_API_KEY)
            session: Optional aiohttp session (for connection pooling)
            timeout_seconds: Per-request timeout
            max_retries: Attempts per request before giving up
            backoff_base: First retry delay; doubles on every attempt
            platform: Asset platform used for contract-address lookups
        """
        self.platform = platform
        self.api_key = api_key or JeetConfig.get_coingecko_api_key()
        self.base_url = self.PRO_URL if self.api_key else self.PUBLIC_URL
        self.timeout_seconds = timeout_seconds or JeetConfig.get_upstream_timeout()
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base

        # Public API allows ~30 calls/min; Pro is far higher
        self.rate_limit_delay = 0.2 if self.api_key else 2.0
        self.last_request_time = 0.0
        self._rate_lock: Optional[asyncio.Lock] = None

        # Circuit breaker
        self._circuit_breaker_failures = 0
        self._circuit_breaker_threshold = 5
        self._circuit_breaker_reset_time: Optional[float] = None

        self._api_calls_made = 0
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

    async def __aenter__(self) -> "CoinGeckoClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    def _check_circuit_breaker(self) -> bool:
        """Check if circuit breaker should prevent requests."""
        if self._circuit_breaker_reset_time and time.time() > self._circuit_breaker_reset_time:
            self._circuit_breaker_failures = 0
            self._circuit_breaker_reset_time = None
        return self._circuit_breaker_failures < self._circuit_breaker_threshold

    def _record_failure(self):
        self._circuit_breaker_failures += 1
        if self._circuit_breaker_failures >= self._circuit_breaker_threshold:
            # Open circuit for 60 seconds
            self._circuit_breaker_reset_time = time.time() + 60

    def _record_success(self):
        if self._circuit_breaker_failures > 0:
            self._circuit_breaker_failures -= 1

    async def _rate_limit(self):
        if self._rate_lock is None:
            self._rate_lock = asyncio.Lock()
        async with self._rate_lock:
            elapsed = time.monotonic() - self.last_request_time
            if elapsed < self.rate_limit_delay:
                await asyncio.sleep(self.rate_limit_delay - elapsed)
            self.last_request_time = time.monotonic()

    async def _retry_with_backoff(self, make_call: Callable[[], Awaitable[Any]]) -> Any:
        """Retry a call with exponential backoff (1s, 2s, 4s by default)."""
        for attempt in range(self.max_retries):
            try:
                result = await make_call()
                self._record_success()
                return result
            except (aiohttp.ClientError, asyncio.TimeoutError):
                if attempt == self.max_retries - 1:
                    self._record_failure()
                    raise
                await asyncio.sleep(self.backoff_base * (2 ** attempt))
        return None

    async def _make_request(self, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        GET an endpoint and return its JSON body.

        Raises:
            UpstreamUnavailable: on open circuit, transport error or bad payload
        """
        if not self._check_circuit_breaker():
            raise UpstreamUnavailable(self.name, "circuit breaker open")

        url = f"{self.base_url}{endpoint}"
        headers = {"accept": "application/json"}
        if self.api_key:
            headers["x-cg-pro-api-key"] = self.api_key
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)

        async def _do_request():
            await self._rate_limit()
            session = await self._get_session()
            async with session.get(url, params=params, headers=headers, timeout=timeout) as response:
                if response.status == 429:
                    retry_after = int(response.headers.get("Retry-After", 5))
                    logger.warning(f"[CoinGecko] Rate limited, waiting {retry_after}s")
                    await asyncio.sleep(retry_after)
                    response.raise_for_status()
                response.raise_for_status()
                self._api_calls_made += 1
                return await response.json()

        try:
            data = await self._retry_with_backoff(_do_request)
        except aiohttp.ClientResponseError as e:
            raise UpstreamUnavailable(self.name, _redact(str(e)), status=e.status) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamUnavailable(self.name, _redact(str(e)) or type(e).__name__) from e

        if not isinstance(data, dict):
            raise UpstreamUnavailable(self.name, f"unexpected payload type {type(data).__name__}")
        return data

    def _range_endpoint(self, token_id: str) -> str:
        # Contract addresses (as returned by Zapper) use the platform route
        if _EVM_ADDRESS.match(token_id):
            return f"/coins/{self.platform}/contract/{token_id.lower()}/market_chart/range"
        return f"/coins/{token_id}/market_chart/range"

    async def fetch_price_history(self, token_id: str, start: datetime, end: datetime) -> List[PricePoint]:
        """
        Price observations for a token in ``[start, end]``.

        Args:
            token_id: CoinGecko coin id (e.g. "ethereum") or contract address
            start: Window start
            end: Window end

        Returns:
            PricePoints ordered by timestamp; malformed points are dropped
        """
        start, end = ensure_utc(start), ensure_utc(end)
        if end < start:
            return []

        data = await self._make_request(
            self._range_endpoint(token_id),
            {
                "vs_currency": "usd",
                "from": int(start.timestamp()),
                "to": int(end.timestamp()),
            },
        )

        prices = data.get("prices")
        if not isinstance(prices, list):
            raise UpstreamUnavailable(self.name, f"missing 'prices' for {token_id}")

        points = [p for p in (PricePoint.from_raw(token_id, raw) for raw in prices) if p is not None]
        if len(points) < len(prices):
            logger.debug(f"[CoinGecko] Dropped {len(prices) - len(points)} malformed points for {token_id}")
        return sorted(points, key=lambda p: p.timestamp)
