"""
Tests for the MON/USD reference price feed.
"""

import httpx
import pytest
import pytest_asyncio

from anoa.core.errors import ErrorCode, PriceUnavailableError
from anoa.services.price_feed import CoinGeckoSource, CoinMarketCapSource, PriceFeed

COINGECKO_URL = "https://api.coingecko.com/api/v3/simple/price"
CMC_URL = "https://pro-api.coinmarketcap.com/v1/cryptocurrency/quotes/latest"


@pytest_asyncio.fixture
async def feed():
    price_feed = PriceFeed()
    yield price_feed
    await price_feed.close()


class TestPriceFeed:
    """Tests for PriceFeed.price_of."""

    @pytest.mark.asyncio
    async def test_coingecko_price(self, feed, respx_mock):
        route = respx_mock.get(COINGECKO_URL).mock(
            return_value=httpx.Response(200, json={"monad": {"usd": 3.25}})
        )

        assert await feed.price_of("MON") == 3.25
        assert route.calls.last.request.url.params["ids"] == "monad"

    @pytest.mark.asyncio
    async def test_price_is_cached(self, feed, respx_mock):
        route = respx_mock.get(COINGECKO_URL).mock(
            return_value=httpx.Response(200, json={"monad": {"usd": 3.25}})
        )

        await feed.price_of("MON")
        await feed.price_of("mon")

        assert route.call_count == 1

    def test_coinmarketcap_needs_api_key(self, override_settings):
        override_settings(coinmarketcap_api_key="")
        assert [type(s) for s in PriceFeed().sources] == [CoinGeckoSource]

        override_settings(coinmarketcap_api_key="cmc-key")
        assert [type(s) for s in PriceFeed().sources] == [CoinGeckoSource, CoinMarketCapSource]

    @pytest.mark.asyncio
    async def test_falls_back_to_coinmarketcap(self, override_settings, respx_mock):
        override_settings(coinmarketcap_api_key="cmc-key")
        respx_mock.get(COINGECKO_URL).mock(return_value=httpx.Response(503))
        cmc = respx_mock.get(CMC_URL).mock(
            return_value=httpx.Response(
                200, json={"data": {"12345": {"quote": {"USD": {"price": 3.1}}}}}
            )
        )
        feed = PriceFeed()

        assert await feed.price_of("MON") == 3.1
        assert cmc.calls.last.request.headers["X-CMC_PRO_API_KEY"] == "cmc-key"
        await feed.close()

    @pytest.mark.asyncio
    async def test_unavailable_without_cache(self, feed, respx_mock):
        respx_mock.get(COINGECKO_URL).mock(return_value=httpx.Response(500))

        with pytest.raises(PriceUnavailableError) as exc_info:
            await feed.price_of("MON")
        assert exc_info.value.code == ErrorCode.PRICE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_non_positive_price_is_rejected(self, feed, respx_mock):
        respx_mock.get(COINGECKO_URL).mock(
            return_value=httpx.Response(200, json={"monad": {"usd": 0}})
        )
        with pytest.raises(PriceUnavailableError):
            await feed.price_of("MON")

    @pytest.mark.asyncio
    async def test_stale_cache_used_when_sources_fail(self, respx_mock):
        """An expired cached price beats no price at all."""
        respx_mock.get(COINGECKO_URL).mock(
            side_effect=[
                httpx.Response(200, json={"monad": {"usd": 2.9}}),
                httpx.Response(500),
            ]
        )
        feed = PriceFeed(cache_ttl=0)

        assert await feed.price_of("MON") == 2.9
        assert await feed.price_of("MON") == 2.9
        await feed.close()

    @pytest.mark.asyncio
    async def test_unknown_asset(self, feed):
        with pytest.raises(PriceUnavailableError):
            await feed.price_of("NOPE")
