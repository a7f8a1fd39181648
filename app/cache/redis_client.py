import json
from datetime import datetime
from typing import List, Optional

import redis.asyncio as redis
from app.config import settings
from app.engine.models import Sample
from app.utils.logging_config import logger

class RedisClient:
    def __init__(self, url: str = None):
        self.url = url or settings.REDIS_URL
        self._redis: redis.Redis = None

    async def connect(self):
        """Initializes the Redis connection pool."""
        try:
            self._redis = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=1 # Fast fail to switch to fake
            )
            await self._redis.ping()
            logger.info("Connected to Real Redis", url=self.url)
        except Exception:
            # Expected for local runs without a Redis server.
            logger.info("No external Redis server found. Using In-Memory Cache (Stand-alone Mode).")
            from fakeredis import aioredis
            self._redis = aioredis.FakeRedis(decode_responses=True)

    @property
    def connected(self) -> bool:
        return self._redis is not None

    async def close(self):
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def get(self, key: str):
        return await self._redis.get(key)

    async def set(self, key: str, value: str, ex: int = None):
        await self._redis.set(key, value, ex=ex)

    @staticmethod
    def series_key(token: str, days: int, interval_minutes: int) -> str:
        return f"series:{token}:{days}d:{interval_minutes}m"

    async def get_series(self, token: str, days: int, interval_minutes: int) -> Optional[List[Sample]]:
        raw = await self.get(self.series_key(token, days, interval_minutes))
        if raw is None:
            return None
        return [
            Sample(datetime.fromisoformat(r["t"]), r["o"], r["h"], r["l"], r["c"], r["v"])
            for r in json.loads(raw)
        ]

    async def set_series(self, token: str, days: int, interval_minutes: int, samples: List[Sample], ttl: int = None):
        payload = json.dumps([
            {"t": s.timestamp.isoformat(), "o": s.open, "h": s.high, "l": s.low, "c": s.close, "v": s.volume}
            for s in samples
        ])
        await self.set(self.series_key(token, days, interval_minutes), payload, ex=ttl or settings.SERIES_CACHE_TTL)

redis_client = RedisClient()
