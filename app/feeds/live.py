import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import aiohttp
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from app.cache.redis_client import RedisClient, redis_client
from app.config import settings
from app.engine.errors import FeedUnavailable
from app.engine.models import Sample, TokenCandidate
from app.utils.logging_config import logger
from app.utils.rate_limiter import AsyncRateLimiter

# DexScreener allows ~300 req/min; stay well below. Birdeye public tier is tighter.
dex_limiter = AsyncRateLimiter("dexscreener", max_calls=60, period=60)
birdeye_limiter = AsyncRateLimiter("birdeye", max_calls=30, period=60)
goplus_limiter = AsyncRateLimiter("goplus", max_calls=30, period=60)

BIRDEYE_INTERVALS = {1: "1m", 3: "3m", 5: "5m", 15: "15m", 30: "30m", 60: "1H", 240: "4H", 1440: "1D"}

GOPLUS_URL = "https://api.gopluslabs.io/api/v1/solana/token_security"

TRANSIENT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)


class LiveFeed:
    """
    Live market data: DexScreener snapshots, Birdeye OHLCV history
    (cached in Redis), GoPlus security flags for candidates.
    """

    def __init__(self, cache: RedisClient = None, chain: str = "solana"):
        self.cache = cache or redis_client
        self.chain = chain
        self.session: Optional[aiohttp.ClientSession] = None

    async def start(self):
        self.session = aiohttp.ClientSession(
            headers={"User-Agent": "MemeTradingEngine/1.0"},
            timeout=aiohttp.ClientTimeout(total=30)
        )
        if not self.cache.connected:
            await self.cache.connect()

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    @retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    async def _get_json(self, url: str, limiter: AsyncRateLimiter, headers: Dict = None, params: Dict = None) -> Dict:
        if not self.session:
            raise RuntimeError("Feed not started")

        await limiter.acquire()
        async with self.session.get(url, headers=headers, params=params) as response:
            if response.status == 429:
                logger.warning("Upstream rate limit 429", api=limiter.name)
            response.raise_for_status()
            return await response.json()

    async def _best_pair(self, token: str) -> Dict:
        try:
            data = await self._get_json(f"{settings.DEXSCREENER_API_URL}/tokens/{token}", dex_limiter)
        except (*TRANSIENT_ERRORS, RuntimeError) as e:
            raise FeedUnavailable("DexScreener request failed", token=token, error=str(e)) from e

        pairs = [p for p in (data.get("pairs") or []) if p.get("chainId") == self.chain]
        if not pairs:
            raise FeedUnavailable("No pairs listed", token=token)
        # Deepest pool is the most reliable price
        return max(pairs, key=lambda p: float((p.get("liquidity") or {}).get("usd") or 0))

    async def get_current_sample(self, token: str) -> Sample:
        pair = await self._best_pair(token)
        price = float(pair.get("priceUsd") or 0)
        if price <= 0:
            raise FeedUnavailable("Pair has no USD price", token=token)
        volume = float((pair.get("volume") or {}).get("m5") or 0)
        return Sample.flat(datetime.now(timezone.utc), price, volume)

    async def get_historical_series(self, token: str, days: int = 1, interval_minutes: int = 15) -> List[Sample]:
        cached = await self.cache.get_series(token, days, interval_minutes)
        if cached is not None:
            return cached

        interval = BIRDEYE_INTERVALS.get(interval_minutes)
        if interval is None:
            raise ValueError(f"Unsupported interval: {interval_minutes}m")

        now = datetime.now(timezone.utc)
        params = {
            "address": token,
            "type": interval,
            "time_from": int((now - timedelta(days=days)).timestamp()),
            "time_to": int(now.timestamp()),
        }
        headers = {"X-API-KEY": settings.BIRDEYE_API_KEY or "", "x-chain": self.chain, "accept": "application/json"}
        try:
            data = await self._get_json(f"{settings.BIRDEYE_API_URL}/defi/ohlcv", birdeye_limiter, headers, params)
        except (*TRANSIENT_ERRORS, RuntimeError) as e:
            raise FeedUnavailable("Birdeye history request failed", token=token, error=str(e)) from e

        items = (data.get("data") or {}).get("items") or []
        samples = sorted(
            (
                Sample(
                    datetime.fromtimestamp(item["unixTime"], tz=timezone.utc),
                    float(item["o"]), float(item["h"]), float(item["l"]), float(item["c"]), float(item["v"]),
                )
                for item in items
            ),
            key=lambda s: s.timestamp,
        )
        await self.cache.set_series(token, days, interval_minutes, samples)
        logger.debug("History fetched", token=token, samples=len(samples))
        return samples

    async def _security_flags(self, token: str) -> Dict:
        """
        GoPlus token security. Unknown means unsafe: not locked, honeypot
        flag left False so the lock check is what rejects the token.
        """
        flags = {"liquidity_locked": False, "is_honeypot": False}
        try:
            data = await self._get_json(GOPLUS_URL, goplus_limiter, params={"contract_addresses": token})
        except TRANSIENT_ERRORS as e:
            logger.warning("GoPlus lookup failed", token=token, error=str(e))
            return flags

        result = (data.get("result") or {})
        info = result.get(token) or result.get(token.lower()) or {}
        flags["is_honeypot"] = str(info.get("is_honeypot", "0")) == "1"
        lp_holders = info.get("lp_holders") or []
        flags["liquidity_locked"] = bool(lp_holders) and any(str(h.get("is_locked")) == "1" for h in lp_holders)
        return flags

    async def get_candidate(self, token: str) -> TokenCandidate:
        pair = await self._best_pair(token)
        flags = await self._security_flags(token)

        created_ms = pair.get("pairCreatedAt") or 0
        base = pair.get("baseToken") or {}
        return TokenCandidate(
            address=token,
            symbol=base.get("symbol", "UNK"),
            launch_time=datetime.fromtimestamp(created_ms / 1000, tz=timezone.utc),
            market_cap=float(pair.get("marketCap") or pair.get("fdv") or 0),
            volume_24h=float((pair.get("volume") or {}).get("h24") or 0),
            liquidity_locked=flags["liquidity_locked"],
            is_honeypot=flags["is_honeypot"],
            price=float(pair.get("priceUsd") or 0),
        )
