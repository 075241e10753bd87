"""
Market Snapshot Builder - per-cycle market state for the strategies.

Provides:
- NadFunClient: nad.fun REST API (market data, timeframe metrics) with a
  response cache and 429/5xx retries (Retry-After is honoured)
- SnapshotBuilder: combines API data with the Lens bonding-curve state into
  immutable MarketSnapshot objects; tokens that fail to load are dropped
- TokenDiscovery: finds actively traded and newly created tokens from the
  Curve contract's events and ranks them by volume and curve progress
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import httpx

from ..core.circuit_breaker import CircuitBreakerOpen, get_market_data_circuit_breaker
from ..core.config import get_settings
from ..core.errors import AppError, MarketDataError
from ..core.retry_utils import ErrorType, classify_error, retry_with_backoff
from ..core.tokens import symbol_for_address
from ..models.market import MarketSnapshot, TimeframeMetrics
from ..traders.chain import ChainClient
from ..traders.nadfun import NadFunLens

logger = logging.getLogger(__name__)

# Timeframe labels used by the strategies -> nad.fun API values
TIMEFRAME_MAP = {
    "1m": "1",
    "5m": "5",
    "15m": "15",
    "1h": "60",
    "4h": "240",
    "6h": "360",
    "24h": "1D",
}
TIMEFRAME_LABELS = {v: k for k, v in TIMEFRAME_MAP.items()}

SNAPSHOT_TIMEFRAMES = ("5m", "1h", "4h")

MAX_CACHE_ENTRIES = 200
MAX_RETRY_DELAY = 30.0


def _to_float(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _to_int(value) -> int:
    try:
        return int(float(value or 0))
    except (TypeError, ValueError):
        return 0


@dataclass
class CachedResponse:
    """Cached API payload with its expiry (monotonic seconds)"""

    data: dict
    expires_at: float


@dataclass(frozen=True)
class TokenMarketData:
    """Normalized /agent/market payload"""

    price_usd: float = 0.0
    holders: int = 0
    volume_24h: float = 0.0
    market_cap: float = 0.0
    liquidity: float = 0.0
    price_native: float = 0.0


class NadFunClient:
    """
    Async client for the nad.fun agent API.

    Responses are cached per path for ``nadfun_cache_ttl`` seconds. Rate
    limits (429) wait for Retry-After; server errors back off 2^attempt
    seconds; other 4xx responses fail immediately.
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        cache_ttl: Optional[float] = None,
        max_retries: Optional[int] = None,
    ):
        settings = get_settings()
        self.api_url = (api_url or settings.get_nadfun_api_url()).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.nadfun_api_key
        self.cache_ttl = cache_ttl if cache_ttl is not None else settings.nadfun_cache_ttl
        self.max_retries = max_retries or settings.nadfun_max_retries
        self._client = http_client or httpx.AsyncClient(timeout=settings.nadfun_timeout)
        self._cache: dict[str, CachedResponse] = {}
        self._breaker = get_market_data_circuit_breaker()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        return headers

    def _cache_get(self, path: str) -> Optional[dict]:
        entry = self._cache.get(path)
        if entry and entry.expires_at > time.monotonic():
            return entry.data
        return None

    def _cache_put(self, path: str, data: dict) -> None:
        now = time.monotonic()
        self._cache[path] = CachedResponse(data=data, expires_at=now + self.cache_ttl)
        if len(self._cache) > MAX_CACHE_ENTRIES:
            for key in [k for k, v in self._cache.items() if v.expires_at <= now]:
                del self._cache[key]

    def clear_cache(self) -> None:
        self._cache.clear()

    async def _get(self, path: str) -> dict:
        response = await self._client.get(f"{self.api_url}{path}", headers=self._headers())
        if response.status_code == 429:
            logger.warning(f"nad.fun rate limited on {path}")
        response.raise_for_status()
        return response.json()

    async def _fetch(self, path: str) -> dict:
        success, data, error = await retry_with_backoff(
            self._get,
            path,
            max_attempts=self.max_retries,
            base_delay=1.0,
            max_delay=MAX_RETRY_DELAY,
            jitter=False,
            retry_on=(httpx.HTTPError,),
        )
        if success:
            return data

        if isinstance(error, httpx.HTTPStatusError) and classify_error(error) == ErrorType.PERMANENT:
            response = error.response
            raise MarketDataError(
                f"nad.fun API error {response.status_code} on {path}: {response.text[:200]}"
            )
        raise MarketDataError(
            f"nad.fun API request failed after {self.max_retries} attempts: "
            f"{path} ({type(error).__name__}: {error})"
        )

    async def request(self, path: str) -> dict:
        """GET a path through the cache, retries and the market data breaker."""
        cached = self._cache_get(path)
        if cached is not None:
            return cached

        try:
            data = await self._breaker.call(self._fetch, path)
        except CircuitBreakerOpen as e:
            raise MarketDataError(f"nad.fun API unavailable: {e}") from e

        self._cache_put(path, data)
        return data

    async def get_market_data(self, token: str) -> TokenMarketData:
        data = await self.request(f"/agent/market/{token}")
        info = data.get("market_info") or {}
        return TokenMarketData(
            price_usd=_to_float(info.get("price_usd")),
            holders=_to_int(info.get("holder_count")),
            volume_24h=_to_float(info.get("volume")),
            market_cap=_to_float(info.get("market_cap")),
            liquidity=_to_float(info.get("liquidity")),
            price_native=_to_float(info.get("price")),
        )

    async def get_token_metrics(
        self,
        token: str,
        timeframes: Iterable[str] = SNAPSHOT_TIMEFRAMES,
    ) -> dict[str, TimeframeMetrics]:
        """
        Price/volume changes per timeframe label.

        Unknown labels are ignored; windows missing from the response are
        simply absent from the result.
        """
        codes = [TIMEFRAME_MAP[tf] for tf in timeframes if tf in TIMEFRAME_MAP]
        if not codes:
            return {}

        data = await self.request(f"/agent/metrics/{token}?timeframes={','.join(codes)}")
        metrics: dict[str, TimeframeMetrics] = {}
        for item in data.get("metrics") or []:
            label = TIMEFRAME_LABELS.get(str(item.get("timeframe")))
            if label is None:
                continue
            metrics[label] = TimeframeMetrics(
                price_change_pct=_to_float(item.get("percent")),
                volume_change_pct=_to_float(item.get("volume")),
                tx_count=_to_int(item.get("transactions")),
            )
        return metrics

    async def close(self) -> None:
        await self._client.aclose()


class SnapshotBuilder:
    """
    Builds MarketSnapshot objects for a cycle.

    Usage:
        builder = SnapshotBuilder(nadfun_client, lens, chain)
        snapshots = await builder.build(tokens, creation_blocks)
    """

    def __init__(self, client: NadFunClient, lens: NadFunLens, chain: ChainClient):
        self.client = client
        self.lens = lens
        self.chain = chain

    async def _latest_block(self) -> Optional[int]:
        try:
            return await self.chain.get_block_number()
        except Exception as e:
            # Unknown latest block makes every token with a creation block "too new"
            logger.warning(f"Could not read latest block: {e}")
            return None

    async def build_one(
        self,
        token: str,
        created_at_block: Optional[int] = None,
        latest_block: Optional[int] = None,
    ) -> MarketSnapshot:
        market, metrics, curve = await asyncio.gather(
            self.client.get_market_data(token),
            self.client.get_token_metrics(token, SNAPSHOT_TIMEFRAMES),
            self.lens.get_bonding_curve_state(token),
        )
        progress, graduated, locked = curve

        return MarketSnapshot(
            token_address=token,
            symbol=symbol_for_address(token),
            price_usd=market.price_usd,
            volume_24h=market.volume_24h,
            holders=market.holders,
            market_cap=market.market_cap,
            liquidity=market.liquidity,
            metrics=metrics,
            bonding_curve_progress=progress,
            is_graduated=graduated,
            is_locked=locked,
            created_at_block=created_at_block,
            latest_block=latest_block,
        )

    async def build(
        self,
        tokens: Sequence[str],
        creation_blocks: Optional[dict[str, int]] = None,
    ) -> list[MarketSnapshot]:
        """
        Fetch snapshots for all tokens concurrently.

        A token whose market data, metrics or curve state cannot be read is
        dropped from the result rather than failing the cycle.
        """
        creation_blocks = {k.lower(): v for k, v in (creation_blocks or {}).items()}
        latest_block = await self._latest_block() if creation_blocks else None

        results = await asyncio.gather(
            *(
                self.build_one(token, creation_blocks.get(token.lower()), latest_block)
                for token in tokens
            ),
            return_exceptions=True,
        )

        snapshots = []
        for token, result in zip(tokens, results):
            if isinstance(result, (AppError, httpx.HTTPError, ValueError)):
                logger.warning(f"Dropping {token} from snapshot: {result}")
                continue
            if isinstance(result, BaseException):
                raise result
            snapshots.append(result)

        logger.debug(f"Built {len(snapshots)}/{len(tokens)} market snapshots")
        return snapshots


# ==================== Token Discovery ====================

CURVE_EVENTS_ABI = [
    {
        "type": "event",
        "name": "CurveCreate",
        "anonymous": False,
        "inputs": [
            {"name": "creator", "type": "address", "indexed": True},
            {"name": "token", "type": "address", "indexed": True},
            {"name": "pool", "type": "address", "indexed": True},
            {"name": "name", "type": "string", "indexed": False},
            {"name": "symbol", "type": "string", "indexed": False},
            {"name": "tokenURI", "type": "string", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "CurveBuy",
        "anonymous": False,
        "inputs": [
            {"name": "sender", "type": "address", "indexed": True},
            {"name": "token", "type": "address", "indexed": True},
            {"name": "amountIn", "type": "uint256", "indexed": False},
            {"name": "amountOut", "type": "uint256", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "CurveSell",
        "anonymous": False,
        "inputs": [
            {"name": "sender", "type": "address", "indexed": True},
            {"name": "token", "type": "address", "indexed": True},
            {"name": "amountIn", "type": "uint256", "indexed": False},
            {"name": "amountOut", "type": "uint256", "indexed": False},
        ],
    },
]


@dataclass(frozen=True)
class DiscoveredToken:
    """A tradable token found by discovery"""

    address: str
    symbol: str
    volume_24h: float
    holders: int
    progress: int
    is_graduated: bool
    created_at_block: Optional[int] = None


class TokenDiscovery:
    """
    Finds tradable nad.fun tokens.

    1. CurveBuy / CurveSell events over the last ``event_blocks`` blocks
       rank tokens by trade count; CurveCreate events add new tokens and
       their creation blocks.
    2. The most active tokens are merged with the caller's candidates.
    3. Each is enriched into a snapshot, filtered on volume, holders and
       lock status, and ranked by volume then curve progress.
    """

    def __init__(
        self,
        chain: ChainClient,
        builder: SnapshotBuilder,
        curve_address: Optional[str] = None,
        event_blocks: int = 7200,
        chunk_size: int = 500,
        max_enrich: int = 8,
        max_tokens: int = 5,
        min_volume: float = 100.0,
        min_holders: int = 5,
    ):
        self.chain = chain
        self.builder = builder
        self.curve_address = curve_address or get_settings().nadfun_contracts["curve"]
        self.event_blocks = event_blocks
        self.chunk_size = chunk_size
        self.max_enrich = max_enrich
        self.max_tokens = max_tokens
        self.min_volume = min_volume
        self.min_holders = min_holders

    async def _events_chunked(self, event_name: str, from_block: int, to_block: int) -> list:
        events = []
        start = from_block
        while start <= to_block:
            end = min(start + self.chunk_size, to_block)
            try:
                events.extend(
                    await self.chain.get_event_logs(
                        self.curve_address, CURVE_EVENTS_ABI, event_name, start, end
                    )
                )
            except Exception as e:
                logger.warning(f"{event_name} logs {start}-{end} failed: {e}")
            start = end + 1
        return events

    async def _active_tokens(self) -> tuple[list[str], dict[str, int]]:
        """Token addresses ranked by recent trade count, plus creation blocks."""
        latest = await self.chain.get_block_number()
        from_block = max(0, latest - self.event_blocks)

        buys, sells, creates = await asyncio.gather(
            self._events_chunked("CurveBuy", from_block, latest),
            self._events_chunked("CurveSell", from_block, latest),
            self._events_chunked("CurveCreate", from_block, latest),
        )

        trade_count: dict[str, int] = {}
        for event in [*buys, *sells]:
            token = str(event["args"]["token"]).lower()
            trade_count[token] = trade_count.get(token, 0) + 1

        created_at: dict[str, int] = {}
        for event in creates:
            token = str(event["args"]["token"]).lower()
            trade_count.setdefault(token, 0)
            block = int(event.get("blockNumber") or 0)
            if block > 0:
                created_at[token] = block

        logger.info(
            f"Discovery found {len(buys)} buys + {len(sells)} sells across "
            f"{len(trade_count)} tokens, {len(creates)} new"
        )
        ranked = sorted(trade_count, key=lambda t: trade_count[t], reverse=True)
        return ranked[: self.max_enrich], created_at

    async def discover(self, candidates: Sequence[str] = ()) -> list[DiscoveredToken]:
        event_tokens: list[str] = []
        created_at: dict[str, int] = {}
        try:
            event_tokens, created_at = await self._active_tokens()
        except Exception as e:
            logger.warning(f"Event discovery failed, using candidates only: {e}")

        addresses = list(dict.fromkeys([*event_tokens, *(c.lower() for c in candidates)]))
        addresses = addresses[: self.max_enrich]
        if not addresses:
            return []

        snapshots = await self.builder.build(addresses, created_at)
        tradable = [
            s for s in snapshots
            if s.volume_24h >= self.min_volume
            and s.holders >= self.min_holders
            and not s.is_locked
        ]
        tradable.sort(key=lambda s: (s.volume_24h, s.bonding_curve_progress), reverse=True)

        found = [
            DiscoveredToken(
                address=s.token_address,
                symbol=s.symbol,
                volume_24h=s.volume_24h,
                holders=s.holders,
                progress=s.bonding_curve_progress,
                is_graduated=s.is_graduated,
                created_at_block=created_at.get(s.token_address.lower()),
            )
            for s in tradable[: self.max_tokens]
        ]
        logger.info(f"Discovered {len(found)} tradable tokens from {len(addresses)} evaluated")
        return found
