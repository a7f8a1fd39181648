from collections import deque
from typing import Deque, Dict, List, Optional

from app.config import settings
from app.engine.errors import FeedUnavailable
from app.engine.models import Sample
from app.feeds.base import DataSource
from app.utils.logging_config import logger


class MarketHistory:
    """
    Rolling per-token sample windows built from feed snapshots. The first
    refresh of a token seeds its window from the feed's historical series.
    """

    def __init__(self, feed: DataSource, max_samples: int = 500, seed_days: int = None, interval_minutes: int = None):
        self.feed = feed
        self.max_samples = max_samples
        self.seed_days = settings.HISTORY_DAYS if seed_days is None else seed_days
        self.interval_minutes = interval_minutes or settings.HISTORY_INTERVAL_MINUTES
        self._buffers: Dict[str, Deque[Sample]] = {}

    async def _seed(self, token: str, before: Sample) -> Deque[Sample]:
        buf: Deque[Sample] = deque(maxlen=self.max_samples)
        if self.seed_days > 0:
            try:
                series = await self.feed.get_historical_series(token, self.seed_days, self.interval_minutes)
                buf.extend(s for s in series if s.timestamp < before.timestamp)
            except FeedUnavailable as e:
                # Live snapshots alone will build the window
                logger.warning("History seed unavailable", token=token, error=str(e))
        return buf

    async def refresh(self, token: str) -> List[Sample]:
        """Pull the current snapshot and return the token's full window."""
        sample = await self.feed.get_current_sample(token)
        buf = self._buffers.get(token)
        if buf is None:
            buf = await self._seed(token, sample)
            self._buffers[token] = buf
        if not buf or sample.timestamp > buf[-1].timestamp:
            buf.append(sample)
        return list(buf)

    def latest(self, token: str) -> Optional[Sample]:
        buf = self._buffers.get(token)
        return buf[-1] if buf else None

    async def price_of(self, token: str) -> float:
        sample = self.latest(token)
        if sample is None:
            raise FeedUnavailable("No sample observed yet", token=token)
        return sample.close

    def forget(self, token: str):
        self._buffers.pop(token, None)
