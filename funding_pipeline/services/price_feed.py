"""
CoinGecko price feed for the supported deposit chains.
Falls back to a configured static price table when the API is unreachable.
"""

import asyncio
import time
from decimal import Decimal
from typing import Dict, Optional, Tuple

import aiohttp
import structlog

from funding_pipeline.core.config import Settings
from funding_pipeline.core.exceptions import PriceFeedError
from funding_pipeline.models.enums import Chain


logger = structlog.get_logger(__name__)


class PriceFeedService:
    """Fetches USD prices from CoinGecko with a short cache."""

    COINGECKO_IDS: Dict[Chain, str] = {
        Chain.BTC: "bitcoin",
        Chain.ETH: "ethereum",
        Chain.SOL: "solana",
    }

    def __init__(self, settings: Settings):
        self.settings = settings
        self.base_url = settings.price_feed_url.rstrip("/")
        self.cache_duration = settings.price_cache_seconds
        self._cache: Dict[Chain, Tuple[Decimal, float]] = {}
        self._session: Optional[aiohttp.ClientSession] = None
        self.logger = logger.bind(service="price_feed")

    async def get_price_usd(self, chain: Chain) -> Decimal:
        """Current USD price of one native unit of ``chain``."""
        price, _ = await self.get_price_with_source(chain)
        return price

    async def get_price_with_source(self, chain: Chain) -> Tuple[Decimal, str]:
        """Price plus where it came from: ``cache``, ``coingecko`` or ``fallback``."""
        cached = self._cache.get(chain)
        if cached is not None and time.monotonic() - cached[1] < self.cache_duration:
            return cached[0], "cache"

        try:
            prices = await self._fetch_prices()
            if chain in prices:
                return prices[chain], "coingecko"
            self.logger.warning("Price missing from feed response", chain=chain.value)
        except asyncio.TimeoutError:
            self.logger.warning("CoinGecko API timeout", chain=chain.value)
        except Exception as e:
            self.logger.warning("Price feed unavailable", chain=chain.value, error=str(e))

        fallback = self.settings.fallback_prices_usd.get(chain.value)
        if fallback is None:
            raise PriceFeedError(f"No price available for {chain.value}", {"chain": chain.value})

        self.logger.warning("Using fallback price", chain=chain.value, price=str(fallback))
        return Decimal(str(fallback)), "fallback"

    async def _fetch_prices(self) -> Dict[Chain, Decimal]:
        """Fetch all chain prices in one request and refresh the cache."""
        params = {
            "ids": ",".join(self.COINGECKO_IDS.values()),
            "vs_currencies": "usd",
        }
        data = await self._get_json(f"{self.base_url}/simple/price", params)

        now = time.monotonic()
        prices: Dict[Chain, Decimal] = {}
        for chain, coin_id in self.COINGECKO_IDS.items():
            price = data.get(coin_id, {}).get("usd")
            if price:
                prices[chain] = Decimal(str(price))
                self._cache[chain] = (prices[chain], now)

        self.logger.debug("Prices updated", prices={c.value: str(p) for c, p in prices.items()})
        return prices

    async def _get_json(self, url: str, params: Dict[str, str]) -> Dict:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.price_feed_timeout)
            )
        async with self._session.get(url, params=params) as response:
            if response.status != 200:
                raise PriceFeedError(f"CoinGecko returned HTTP {response.status}")
            return await response.json()

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
