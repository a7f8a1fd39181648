"""
Entry rules for every bot variant.

A Strategy is a closed tagged variant: its `kind` selects the rule and its
`params` carry that rule's thresholds. All rules are pure functions of the
sample history (and, for new-token-hunter, the candidate snapshot).
"""
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Sequence

from app.engine.models import Sample, TokenCandidate
from app.strategies.config import StrategyConfig, StrategyKind


@dataclass(frozen=True)
class EntryParams:
    # volume-tracker
    volume_lookback: int = 5
    volume_spike_multiplier: float = 2.0
    # trend-surfer
    rising_candles: int = 3
    trend_lookback: int = 4
    min_trend_gain: float = 0.15
    trend_warmup: int = 6
    # dip-hunter
    dip_lookback: int = 10
    min_dip: float = 0.30
    max_dip: float = 0.60
    min_volume_retention: float = 0.70


@dataclass(frozen=True)
class Strategy:
    kind: StrategyKind
    params: EntryParams = field(default_factory=EntryParams)

    @classmethod
    def of(cls, kind, **params) -> "Strategy":
        if isinstance(kind, str):
            kind = StrategyKind.parse(kind)
        return cls(kind=kind, params=EntryParams(**params))

    @property
    def name(self) -> str:
        return self.kind.value

    def default_config(self, **overrides) -> StrategyConfig:
        return StrategyConfig.for_kind(self.kind, **overrides)


def _avg_volume(history: Sequence[Sample], start: int, end: int) -> float:
    window = history[start:end]
    return sum(s.volume for s in window) / len(window)


def volume_spike(history: Sequence[Sample], i: int, p: EntryParams) -> bool:
    if i < p.volume_lookback:
        return False
    avg = _avg_volume(history, i - p.volume_lookback, i)
    return history[i].volume > avg * p.volume_spike_multiplier and history[i].close > history[i - 1].close


def rising_trend(history: Sequence[Sample], i: int, p: EntryParams) -> bool:
    if i < max(p.trend_warmup, p.trend_lookback, p.rising_candles - 1):
        return False

    candles = [history[i - k] for k in range(p.rising_candles)]
    if not all(c.close > c.open for c in candles):
        return False

    # Strictly increasing volume across the rising candles (oldest -> newest)
    volumes = [c.volume for c in reversed(candles)]
    if not all(a < b for a, b in zip(volumes, volumes[1:])):
        return False

    base = history[i - p.trend_lookback].close
    if base <= 0:
        return False
    return (history[i].close - base) / base >= p.min_trend_gain


def dip_with_liquidity(history: Sequence[Sample], i: int, p: EntryParams) -> bool:
    if i < max(p.dip_lookback, p.volume_lookback):
        return False

    local_high = max(s.high for s in history[i - p.dip_lookback:i])
    if local_high <= 0:
        return False
    drop = (local_high - history[i].close) / local_high
    if not p.min_dip <= drop <= p.max_dip:
        return False

    # Liquidity hasn't evaporated
    avg = _avg_volume(history, i - p.volume_lookback, i)
    return history[i].volume >= avg * p.min_volume_retention


def fresh_token(candidate: TokenCandidate, history: Sequence[Sample], i: int, config: StrategyConfig) -> bool:
    if not history:
        return False
    now = history[i].timestamp
    age_hours = (now - candidate.launch_time).total_seconds() / 3600

    if age_hours > config.max_token_age_hours:
        return False
    if candidate.market_cap < config.min_market_cap:
        return False
    if not candidate.liquidity_locked or candidate.is_honeypot:
        return False
    # 24h volume must be a meaningful share of market cap
    return candidate.volume_24h >= candidate.market_cap * config.min_volume_ratio


_INTERVAL_RULES: Dict[StrategyKind, Callable[[Sequence[Sample], int, EntryParams], bool]] = {
    StrategyKind.VOLUME_TRACKER: volume_spike,
    StrategyKind.TREND_SURFER: rising_trend,
    StrategyKind.DIP_HUNTER: dip_with_liquidity,
}


def should_enter(
    strategy: Strategy,
    history: Sequence[Sample],
    candidate: Optional[TokenCandidate] = None,
    index: Optional[int] = None,
    config: Optional[StrategyConfig] = None,
) -> bool:
    """
    Single entry dispatch for all variants. Evaluates at `index`
    (defaults to the newest sample).
    """
    if not history:
        return False
    i = len(history) - 1 if index is None else index

    if strategy.kind is StrategyKind.NEW_TOKEN_HUNTER:
        if candidate is None:
            return False
        return fresh_token(candidate, history, i, config or strategy.default_config())

    return _INTERVAL_RULES[strategy.kind](history, i, strategy.params)
