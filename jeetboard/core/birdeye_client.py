"""Birdeye API client for historical price data."""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from ..config import JeetConfig
from .errors import UpstreamUnavailable
from .models import PricePoint, ensure_utc
from .sources import PriceHistorySource

logger = logging.getLogger(__name__)


class BirdeyeClient:
    """Client for Birdeye API to fetch historical and current token prices."""

    def __init__(self, api_key: Optional[str] = None, chain: str = "solana", timeout_seconds: Optional[float] = None):
        """
        Initialize Birdeye client.

        Args:
            api_key: Birdeye API key (from BIRDEYE_API_KEY env var if not provided)
            chain: Value of the ``x-chain`` header
            timeout_seconds: Per-request timeout
        """
        self.api_key = api_key or JeetConfig.get_birdeye_api_key() or ""
        self.chain = chain
        self.base_url = "https://public-api.birdeye.so"
        self.timeout_seconds = timeout_seconds or JeetConfig.get_upstream_timeout()
        self.rate_limit_delay = 1.0  # Seconds between requests to avoid rate limits
        self.last_request_time = 0.0

    def _rate_limit(self):
        """Ensure we don't exceed rate limits."""
        time_since_last = time.time() - self.last_request_time
        if time_since_last < self.rate_limit_delay:
            time.sleep(self.rate_limit_delay - time_since_last)
        self.last_request_time = time.time()

    def _make_request(self, endpoint: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Make a request to Birdeye API.

        Returns:
            JSON response or None if request failed
        """
        if not self.api_key:
            return None

        self._rate_limit()

        url = f"{self.base_url}{endpoint}"
        headers = {"X-API-KEY": self.api_key, "x-chain": self.chain}

        try:
            response = requests.get(url, params=params, headers=headers, timeout=self.timeout_seconds)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            logger.warning(f"Birdeye API request failed: {e}")
            return None
        except ValueError as e:
            logger.warning(f"Birdeye API returned invalid JSON: {e}")
            return None

        if not isinstance(data, dict) or data.get("success") is False:
            return None
        return data

    def get_price_history(
        self,
        token_address: str,
        start: datetime,
        end: datetime,
        interval: str = "15m",
    ) -> Optional[List[PricePoint]]:
        """
        Get price observations for a token in ``[start, end]``.

        Args:
            token_address: Token mint address
            start: Window start
            end: Window end
            interval: Candle interval accepted by Birdeye (1m, 15m, 1H, 1D...)

        Returns:
            PricePoints ordered by timestamp, or None if the request failed
        """
        params = {
            "address": token_address,
            "address_type": "token",
            "type": interval,
            "time_from": int(ensure_utc(start).timestamp()),
            "time_to": int(ensure_utc(end).timestamp()),
        }

        data = self._make_request("/defi/history_price", params)
        if data is None:
            return None

        payload = data.get("data")
        items = payload.get("items") if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            return None

        points = [p for p in (PricePoint.from_raw(token_address, item) for item in items) if p is not None]
        return sorted(points, key=lambda p: p.timestamp)

    def get_current_price(self, token_address: str) -> Optional[float]:
        """Current USD price of a token, or None if not available."""
        data = self._make_request("/defi/price", {"address": token_address})
        if not data or not isinstance(data.get("data"), dict):
            return None
        value = data["data"].get("value")
        try:
            return float(value) if value is not None else None
        except (TypeError, ValueError):
            return None


class BirdeyePriceSource(PriceHistorySource):
    """Async adapter running the blocking Birdeye client in a worker thread."""

    name = "birdeye"

    def __init__(self, client: Optional[BirdeyeClient] = None, interval: str = "15m"):
        self.client = client or BirdeyeClient()
        self.interval = interval

    async def fetch_price_history(self, token_id: str, start: datetime, end: datetime) -> List[PricePoint]:
        points = await asyncio.to_thread(self.client.get_price_history, token_id, start, end, self.interval)
        if points is None:
            raise UpstreamUnavailable(self.name, f"no price history for {token_id[:8]}...")
        return points
