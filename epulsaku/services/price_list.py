"""Cached Digiflazz price list"""

import asyncio
import logging
import time
from typing import Callable, List, Optional

from epulsaku.config import settings
from epulsaku.domain.models import DigiflazzProduct
from epulsaku.infrastructure.cache import TimedCache
from epulsaku.infrastructure.clients.digiflazz import DigiflazzClient

logger = logging.getLogger(__name__)


class DigiflazzPriceList:
    """
    Serves the price list from a short-lived cache. Refreshes are
    single-flight; a failed fetch leaves the cache as it was and propagates.
    """

    def __init__(
        self,
        client: DigiflazzClient,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        ttl = settings.price_list_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self.cache: TimedCache[List[DigiflazzProduct]] = TimedCache(None, ttl, clock=clock)
        self._refresh_lock = asyncio.Lock()

    async def get(self, force_refresh: bool = False) -> List[DigiflazzProduct]:
        """
        Raises:
            ValidationError: Digiflazz credentials are not configured
            UpstreamApiError: the price list could not be fetched
        """
        if not force_refresh:
            cached = self.cache.fresh()
            if cached is not None:
                logger.debug("Returning Digiflazz products from cache")
                return cached

        async with self._refresh_lock:
            # another caller may have refreshed while we waited
            if not force_refresh:
                cached = self.cache.fresh()
                if cached is not None:
                    return cached
            logger.info(
                "Force refreshing Digiflazz products from API"
                if force_refresh
                else "Fetching Digiflazz products from API (cache stale or empty)"
            )
            products = await self.client.fetch_price_list()
            self.cache.put(products)
            return products
