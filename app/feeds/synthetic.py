import hashlib
from typing import Dict, List, Tuple

import numpy as np
import pandas as pd

from app.config import settings
from app.engine.errors import FeedUnavailable
from app.engine.models import Sample, TokenCandidate
from app.utils.logging_config import logger

# Market character per bot type, used when no real data is wired in
MARKET_PATTERNS = {
    "volume-tracker": {"volatility": 0.15, "trend": 0.03, "volume_spikes": 4, "recovery_rate": 0.6},
    "trend-surfer": {"volatility": 0.25, "trend": 0.05, "volume_spikes": 2, "recovery_rate": 0.7},
    "dip-hunter": {"volatility": 0.20, "trend": 0.02, "volume_spikes": 6, "recovery_rate": 0.9},
    "new-token-hunter": {"volatility": 0.30, "trend": 0.04, "volume_spikes": 5, "recovery_rate": 0.5},
}


def seed_for(token: str) -> int:
    """Stable across processes (unlike hash())."""
    digest = hashlib.sha256(token.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


class SyntheticFeed:
    """
    Deterministic OHLCV generator. Randomness is seeded from the token id so
    the same token always produces the same series; this is the only place
    randomness enters the system.
    """

    def __init__(self, start: str = None, replay_days: int = 7, replay_interval_minutes: int = None):
        self.start = pd.Timestamp(start or settings.SYNTHETIC_START, tz="UTC")
        self.replay_days = replay_days
        self.replay_interval = replay_interval_minutes or settings.HISTORY_INTERVAL_MINUTES
        self._cache: Dict[Tuple[str, int, int], List[Sample]] = {}
        self._cursors: Dict[str, int] = {}

    def pattern_for(self, token: str) -> dict:
        if token in MARKET_PATTERNS:
            return MARKET_PATTERNS[token]
        names = sorted(MARKET_PATTERNS)
        return MARKET_PATTERNS[names[seed_for(token) % len(names)]]

    def series(self, token: str, days: int = 7, interval_minutes: int = 15) -> List[Sample]:
        key = (token, days, interval_minutes)
        if key not in self._cache:
            self._cache[key] = self._generate(token, days, interval_minutes)
        return self._cache[key]

    def _generate(self, token: str, days: int, interval_minutes: int) -> List[Sample]:
        pattern = self.pattern_for(token)
        rng = np.random.default_rng(seed_for(token))
        intervals = int(days * 24 * 60 // interval_minutes)
        if intervals <= 0:
            return []

        index = pd.date_range(self.start, periods=intervals, freq=f"{interval_minutes}min")
        # Pre-draw all randomness so the path only depends on the seed
        draws = rng.random((intervals, 9))
        spike_prob = 0.01 * pattern["volume_spikes"]

        samples: List[Sample] = []
        price = 1.0
        volume = 1_000_000.0
        for i, ts in enumerate(index):
            u = draws[i]
            # Busier during trading hours, quieter on weekends
            time_mult = 1.2 if 8 <= ts.hour <= 22 else 0.8
            weekend_mult = 0.7 if ts.dayofweek >= 5 else 1.1

            random_change = (u[0] * 2 - 1) * pattern["volatility"] * time_mult * weekend_mult
            trend_change = pattern["trend"] * (1 if u[1] > 0.45 else -1) * time_mult

            has_spike = u[2] < spike_prob
            volume_mult = 3 + u[3] * 5 if has_spike else 0.8 + u[3] * 0.4

            prev_close = samples[-1].close if samples else price
            price = max(0.1, price * (1 + random_change + trend_change))
            volume *= volume_mult
            if has_spike:
                direction = 1 if u[4] > 0.4 else -1
                price = price * (1 + direction * 0.08 * (1 + u[5]))

            # Sharp drops partially recover
            if samples and price < prev_close * 0.85 and u[6] < pattern["recovery_rate"]:
                price = prev_close * (0.9 + u[7] * 0.15)

            spread = price * pattern["volatility"] * (0.5 + u[8] * 0.5)
            open_ = prev_close
            high = max(open_, price) + spread * u[4]
            floor = min(open_, price)
            low = max(floor - spread * u[5], floor * 0.05)
            samples.append(Sample(ts.to_pydatetime(), open_, high, low, price, volume))

            # Keep volume bounded so spikes stay relative
            if volume > 50_000_000 or volume < 20_000:
                volume = 1_000_000.0

        return samples

    async def get_historical_series(self, token: str, days: int = 1, interval_minutes: int = 15) -> List[Sample]:
        return list(self.series(token, days, interval_minutes))

    async def get_current_sample(self, token: str) -> Sample:
        """Replays the token's series one sample per call."""
        series = self.series(token, self.replay_days, self.replay_interval)
        cursor = self._cursors.get(token, 0)
        if cursor >= len(series):
            raise FeedUnavailable("Synthetic series exhausted", token=token)
        self._cursors[token] = cursor + 1
        return series[cursor]

    async def get_candidate(self, token: str) -> TokenCandidate:
        return self.candidate(token)

    def candidate(self, token: str) -> TokenCandidate:
        rng =np.random.default_rng(seed_for(f"candidate:{token}"))
        u = rng.random(5)
        series = self.series(token, self.replay_days, self.replay_interval)
        market_cap = 50_000 + u[0] * 1_950_000
        candidate = TokenCandidate(
            address=token,
            symbol=token[:6].upper(),
            launch_time=(self.start - pd.Timedelta(hours=float(u[1] * 36))).to_pydatetime(),
            market_cap=market_cap,
            volume_24h=market_cap * u[2] * 0.3,
            liquidity_locked=bool(u[3] > 0.3),
            is_honeypot=bool(u[4] < 0.1),
            price=series[0].close if series else 0.0,
        )
        logger.debug("Synthetic candidate", token=token, market_cap=round(market_cap))
        return candidate
