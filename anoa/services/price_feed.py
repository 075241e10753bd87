"""
Reference price feed (MON/USD).

Sources are tried in order: CoinGecko, then CoinMarketCap (only when an
API key is configured). A successful answer is cached for
price_cache_ttl seconds. When every source fails, the last cached price is
returned regardless of age; with no cached price at all the lookup raises
PriceUnavailableError.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx

from ..core.circuit_breaker import get_price_feed_circuit_breaker
from ..core.config import get_settings
from ..core.errors import PriceUnavailableError
from ..core.retry_utils import try_in_order

logger = logging.getLogger(__name__)

# CoinGecko / CoinMarketCap identifiers per asset symbol
COINGECKO_IDS = {"MON": "monad"}
COINMARKETCAP_SLUGS = {"MON": "monad"}


@dataclass
class CachedPrice:
    price: float
    fetched_at: float


class PriceSource(ABC):
    """One upstream USD price API"""

    name: str

    def __init__(self, http_client: httpx.AsyncClient):
        self.http = http_client

    @abstractmethod
    async def fetch(self, asset: str) -> float:
        """Return a positive USD price or raise."""
        pass

    @staticmethod
    def _positive(price, source: str, asset: str) -> float:
        try:
            value = float(price)
        except (TypeError, ValueError):
            raise ValueError(f"{source} returned no usable {asset} price: {price!r}")
        if value <= 0:
            raise ValueError(f"{source} returned non-positive {asset} price: {value}")
        return value


class CoinGeckoSource(PriceSource):
    name = "coingecko"

    def __init__(self, http_client: httpx.AsyncClient, api_url: str, api_key: str = ""):
        super().__init__(http_client)
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key

    async def fetch(self, asset: str) -> float:
        coin_id = COINGECKO_IDS.get(asset.upper())
        if coin_id is None:
            raise ValueError(f"No CoinGecko id for {asset}")

        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-cg-demo-api-key"] = self.api_key

        response = await self.http.get(
            f"{self.api_url}/simple/price",
            params={"ids": coin_id, "vs_currencies": "usd"},
            headers=headers,
        )
        response.raise_for_status()
        data = response.json()
        return self._positive(data.get(coin_id, {}).get("usd"), self.name, asset)


class CoinMarketCapSource(PriceSource):
    name = "coinmarketcap"

    def __init__(self, http_client: httpx.AsyncClient, api_url: str, api_key: str):
        super().__init__(http_client)
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key

    async def fetch(self, asset: str) -> float:
        slug = COINMARKETCAP_SLUGS.get(asset.upper())
        if slug is None:
            raise ValueError(f"No CoinMarketCap slug for {asset}")

        response = await self.http.get(
            f"{self.api_url}/cryptocurrency/quotes/latest",
            params={"slug": slug, "convert": "USD"},
            headers={"X-CMC_PRO_API_KEY": self.api_key, "Accept": "application/json"},
        )
        response.raise_for_status()
        # data is keyed by CoinMarketCap id; take the first entry
        entries = list((response.json().get("data") or {}).values())
        if not entries:
            raise ValueError(f"{self.name} returned no entries for {asset}")
        price = entries[0].get("quote", {}).get("USD", {}).get("price")
        return self._positive(price, self.name, asset)


class PriceFeed:
    """
    Usage:
        feed = PriceFeed()
        mon_usd = await feed.price_of("MON")
    """

    def __init__(
        self,
        sources: Optional[list[PriceSource]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        cache_ttl: Optional[int] = None,
    ):
        settings = get_settings()
        self._owns_client = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=settings.price_timeout)
        self.cache_ttl = settings.price_cache_ttl if cache_ttl is None else cache_ttl
        self._cache: dict[str, CachedPrice] = {}

        if sources is None:
            sources = [
                CoinGeckoSource(self.http, settings.coingecko_api_url, settings.coingecko_api_key)
            ]
            if settings.coinmarketcap_api_key:
                sources.append(
                    CoinMarketCapSource(
                        self.http,
                        settings.coinmarketcap_api_url,
                        settings.coinmarketcap_api_key,
                    )
                )
        self.sources = sources

    async def _fetch(self, source: PriceSource, asset: str) -> float:
        breaker = get_price_feed_circuit_breaker(source.name)
        return await breaker.call(source.fetch, asset)

    async def price_of(self, asset: str = "MON") -> float:
        """USD price of an asset. Raises PriceUnavailableError."""
        key = asset.upper()
        cached = self._cache.get(key)
        if cached and time.monotonic() - cached.fetched_at < self.cache_ttl:
            return cached.price

        try:
            source, price = await try_in_order(
                self.sources,
                lambda s: self._fetch(s, key),
                label="Price source",
            )
        except Exception as e:
            if cached:
                age = time.monotonic() - cached.fetched_at
                logger.warning(
                    f"All price sources failed for {key}, using cached price "
                    f"{cached.price} ({age:.0f}s old): {e}"
                )
                return cached.price
            raise PriceUnavailableError(key, f"Reference price unavailable for {key}: {e}") from e

        self._cache[key] = CachedPrice(price=price, fetched_at=time.monotonic())
        logger.debug(f"{key}/USD = {price} from {source.name}")
        return price

    async def close(self) -> None:
        if self._owns_client:
            await self.http.aclose()
