"""
Quote Aggregator

- Quotes every enabled provider concurrently
- One provider failing or timing out never fails the others
- Returns successful quotes sorted by total price (lowest first); equal
  totals keep provider registration order

Usage:
    aggregator = QuoteAggregator(quote_client, courier)
    aggregation = await aggregator.get_quotes(order, pickup_postcode="2013")
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from shipbridge.core.config import settings
from shipbridge.core.exceptions import ProviderError
from shipbridge.modules.shipping.providers.base import ParcelItem, QuoteResult
from shipbridge.services.courier_client import CourierClient, ProviderQuoteClient

logger = logging.getLogger(__name__)


@dataclass
class QuoteAggregation:
    """Outcome of one aggregation run."""
    quotes: List[QuoteResult] = field(default_factory=list)
    failures: Dict[int, str] = field(default_factory=dict)
    is_rural: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.quotes


def parcels_for(items: Optional[List[Dict[str, Any]]]) -> List[ParcelItem]:
    """Provider parcels for an order's stored line items."""
    return [ParcelItem.from_order_item(item) for item in (items or [])]


class QuoteAggregator:
    """
    Runs the provider quote client against all configured providers.
    """

    def __init__(
        self,
        quote_client: ProviderQuoteClient,
        courier: CourierClient,
        provider_ids: Optional[List[int]] = None,
    ):
        self.quote_client = quote_client
        self.courier = courier
        self.provider_ids = list(settings.ENABLED_PROVIDERS if provider_ids is None else provider_ids)

    async def check_rural(self, postcode: str) -> bool:
        return await self.courier.check_rural(postcode)

    async def _quote_one(
        self,
        provider_id: int,
        pickup_postcode: str,
        delivery_postcode: str,
        parcels: List[ParcelItem],
        is_rural: bool,
    ) -> QuoteResult:
        logger.debug(f"Fetching quote from provider {provider_id}")
        return await self.quote_client.quote(
            provider_id, pickup_postcode, delivery_postcode, parcels, is_rural
        )

    async def collect(
        self,
        pickup_postcode: str,
        delivery_postcode: str,
        parcels: List[ParcelItem],
        is_rural: bool = False,
    ) -> QuoteAggregation:
        """
        Quote all providers in parallel and merge the results.

        Returns:
            QuoteAggregation; `is_empty` when no provider produced a usable quote
        """
        if not self.provider_ids:
            logger.warning("No providers enabled for quoting")
            return QuoteAggregation(is_rural=is_rural)

        results = await asyncio.gather(
            *(
                self._quote_one(pid, pickup_postcode, delivery_postcode, parcels, is_rural)
                for pid in self.provider_ids
            ),
            return_exceptions=True,
        )

        aggregation = QuoteAggregation(is_rural=is_rural)
        for provider_id, result in zip(self.provider_ids, results):
            if isinstance(result, ProviderError):
                logger.warning(f"Provider {provider_id} quote failed: {result.message}")
                aggregation.failures[provider_id] = result.message
            elif isinstance(result, Exception):
                logger.error(f"Provider {provider_id} quote raised {type(result).__name__}: {result}")
                aggregation.failures[provider_id] = str(result) or type(result).__name__
            elif isinstance(result, BaseException):
                raise result
            else:
                aggregation.quotes.append(result)

        # sorted() is stable, so ties keep provider order
        aggregation.quotes = sorted(aggregation.quotes, key=lambda q: q.total_price)

        logger.info(
            f"Quoted {len(aggregation.quotes)}/{len(self.provider_ids)} providers "
            f"for {pickup_postcode} -> {delivery_postcode}"
        )
        return aggregation

    async def get_quotes(self, order, pickup_postcode: Optional[str] = None) -> QuoteAggregation:
        """
        Determine the rural flag for the order's postcode, then quote it.

        The caller is responsible for persisting `is_rural` on the order.
        """
        pickup = pickup_postcode or settings.DEFAULT_PICKUP_POSTCODE
        is_rural = await self.check_rural(order.delivery_postcode)
        return await self.collect(pickup, order.delivery_postcode, parcels_for(order.items), is_rural)
