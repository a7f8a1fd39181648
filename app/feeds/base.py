from typing import List, Protocol

from app.engine.models import Sample, TokenCandidate


class DataSource(Protocol):
    """
    Market data capability behind which live and synthetic data are
    interchangeable. Implementations raise FeedUnavailable on failure.
    """

    async def get_current_sample(self, token: str) -> Sample:
        ...

    async def get_historical_series(self, token: str, days: int = 1, interval_minutes: int = 15) -> List[Sample]:
        ...

    async def get_candidate(self, token: str) -> TokenCandidate:
        ...


def build_feed(kind: str = None):
    """Select the DataSource implementation once, at construction time."""
    from app.config import settings

    kind = (kind or settings.DATA_SOURCE).lower()
    if kind == "live":
        from app.feeds.live import LiveFeed
        return LiveFeed()
    if kind == "synthetic":
        from app.feeds.synthetic import SyntheticFeed
        return SyntheticFeed()
    raise ValueError(f"Unknown data source: {kind}")
