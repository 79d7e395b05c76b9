"""
Fumble Detector

Flags sales that were followed by a price rally.

For every outgoing transaction:
- sale_price: price at the moment of the sale
- peak_price: highest price within +/- window around the sale
- loss = max(0, peak_price - sale_price) * amount

A sale is a fumble only when loss > 0 and the peak reached at least
``rally_multiplier`` times the sale price. Sales whose price lookups failed
degrade to loss 0 and are counted in ``degraded_sales``; they never abort
the wallet.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .models import (
    DetectionReport,
    DetectorConfig,
    Fumble,
    FumbleClassification,
    Transaction,
)
from .resolver import PriceHistoryResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _SaleOutcome:
    """Per-sale detector output before merging."""
    fumble: Optional[Fumble]
    degraded: bool
    # peak_price * amount, 0 when no price was usable
    max_loss: float


class FumbleDetector:
    """
    Detects fumbles in a wallet's transaction history.

    Usage:
        detector = FumbleDetector(resolver, DetectorConfig(rally_multiplier=1.5))
        report = await detector.detect("0xabc...", transactions)
    """

    def __init__(self, resolver: PriceHistoryResolver, config: Optional[DetectorConfig] = None):
        self.resolver = resolver
        self.config = config or DetectorConfig()

    async def detect(self, wallet_address: str, transactions: Iterable[Transaction]) -> DetectionReport:
        """
        Analyze every outgoing transaction of a wallet concurrently.

        Args:
            wallet_address: Analyzed wallet
            transactions: Wallet transactions in any order; incoming ones are ignored

        Returns:
            DetectionReport with fumbles in transaction order (timestamp, hash)
        """
        sales = sorted(
            (t for t in transactions if t.is_outgoing),
            key=lambda t: (t.timestamp, t.hash),
        )
        if not sales:
            return DetectionReport(
                wallet_address=wallet_address,
                fumbles=(),
                analyzed_sales=0,
                degraded_sales=0,
                max_possible_loss=0.0,
            )

        semaphore = asyncio.Semaphore(max(1, self.config.max_concurrency))

        async def bounded(sale: Transaction) -> _SaleOutcome:
            async with semaphore:
                return await self._analyze_sale(sale)

        # gather preserves argument order, so the merge below is deterministic
        outcomes: List[_SaleOutcome] = await asyncio.gather(*(bounded(sale) for sale in sales))

        fumbles = tuple(o.fumble for o in outcomes if o.fumble is not None)
        degraded = sum(1 for o in outcomes if o.degraded)
        if degraded:
            logger.warning(f"{wallet_address[:8]}...: {degraded}/{len(sales)} sales degraded by failed price lookups")

        return DetectionReport(
            wallet_address=wallet_address,
            fumbles=fumbles,
            analyzed_sales=len(sales),
            degraded_sales=degraded,
            max_possible_loss=sum(o.max_loss for o in outcomes),
        )

    async def _analyze_sale(self, sale: Transaction) -> _SaleOutcome:
        window = self.config.window
        sale_quote, peak_quote = await asyncio.gather(
            self.resolver.quote_at(sale.token_id, sale.timestamp),
            self.resolver.peak_quote_in_window(
                sale.token_id,
                sale.timestamp - window,
                sale.timestamp + window,
                reference=sale.timestamp,
            ),
        )

        if not sale_quote.known or sale_quote.price <= 0:
            # Without a sale price the loss cannot be bounded
            logger.debug(f"No sale price for {sale.token_symbol} in {sale.hash[:10]}..., loss degraded to 0")
            return _SaleOutcome(fumble=None, degraded=True, max_loss=0.0)

        sale_price = sale_quote.price
        peak_price = peak_quote.price
        degraded = not peak_quote.known
        if degraded and peak_price <= 0:
            return _SaleOutcome(fumble=None, degraded=True, max_loss=0.0)

        fumble = self._build_fumble(sale, sale_price, peak_price, degraded)
        # A lower-bound peak still bounds its own loss
        return _SaleOutcome(fumble=fumble, degraded=degraded, max_loss=peak_price * sale.amount)

    def _build_fumble(self, sale: Transaction, sale_price: float, peak_price: float, degraded: bool) -> Optional[Fumble]:
        loss = max(0.0, peak_price - sale_price) * sale.amount
        if loss <= 0:
            return None
        if peak_price < sale_price * self.config.rally_multiplier:
            # Below the rally threshold: noise, not a fumble
            return None

        classification = FumbleClassification.EARLY if peak_price > sale_price else FumbleClassification.LATE
        return Fumble(
            token_id=sale.token_id,
            token_symbol=sale.token_symbol,
            tx_hash=sale.hash,
            sale_timestamp=sale.timestamp,
            sale_price=sale_price,
            peak_price=peak_price,
            amount=sale.amount,
            loss=loss,
            classification=classification,
            degraded=degraded,
        )
