import asyncio
from typing import Dict, Iterable, Optional, Sequence

import pandas as pd

from app.engine.errors import FeedUnavailable
from app.engine.models import Sample, TokenCandidate
from app.feeds.base import DataSource
from app.feeds.synthetic import SyntheticFeed
from app.strategies.config import StrategyConfig, StrategyKind
from app.strategies.rules import Strategy
from app.utils.logging_config import logger
from backtest.engine import BacktestEngine
from backtest.models import BatchResult, SimulationResult


def simulate_bot(
    kind,
    days: int = 7,
    interval_minutes: int = 15,
    initial_capital: float = None,
    feed: SyntheticFeed = None,
    token: str = None,
    config: Optional[StrategyConfig] = None,
) -> SimulationResult:
    """Backtest one bot kind over its synthetic market."""
    strategy = Strategy.of(kind)
    feed = feed or SyntheticFeed()
    # Kind names select their own market pattern
    token = token or strategy.name
    samples = feed.series(token, days, interval_minutes)

    candidate = None
    if strategy.kind is StrategyKind.NEW_TOKEN_HUNTER:
        candidate = feed.candidate(token)

    result = BacktestEngine(initial_capital=initial_capital).run(
        samples, strategy, config=config, candidate=candidate, token=token
    )
    logger.info("Simulation finished", strategy=strategy.name, days=days,
                trades=result.trade_count, profit_pct=round(result.profit_percentage, 2))
    return result


def aggregate_daily(results: Dict[str, SimulationResult]):
    frames = [
        pd.DataFrame(r.daily_performance, columns=["date", "value"])
        for r in results.values() if r.daily_performance
    ]
    if not frames:
        return ()
    daily = pd.concat(frames).groupby("date", sort=True)["value"].mean()
    return tuple((date, float(value)) for date, value in daily.items())


async def run_batch(
    series_by_token: Dict[str, Sequence[Sample]],
    strategy: Strategy,
    config: Optional[StrategyConfig] = None,
    candidates: Dict[str, TokenCandidate] = None,
    initial_capital: float = None,
    max_concurrency: int = 4,
) -> BatchResult:
    """
    Independent backtests per token on worker threads. Each run gets its
    own engine, so results match running them one after another.
    """
    candidates = candidates or {}
    semaphore = asyncio.Semaphore(max_concurrency)

    async def run_one(token: str, samples: Sequence[Sample]) -> SimulationResult:
        async with semaphore:
            engine = BacktestEngine(initial_capital=initial_capital)
            return await asyncio.to_thread(
                engine.run, samples, strategy, config, candidates.get(token), token
            )

    tokens = list(series_by_token)
    outcomes = await asyncio.gather(*(run_one(t, series_by_token[t]) for t in tokens))
    results = dict(zip(tokens, outcomes))

    batch = BatchResult(results=results, aggregate_daily=aggregate_daily(results))
    logger.info("Batch finished", strategy=strategy.name, tokens=len(tokens),
                total_profit=round(batch.total_profit, 4))
    return batch


async def simulate_with_feed(
    kind,
    tokens: Iterable[str],
    feed: DataSource,
    days: int = 7,
    interval_minutes: int = 15,
    initial_capital: float = None,
    config: Optional[StrategyConfig] = None,
    max_concurrency: int = 4,
) -> BatchResult:
    """
    Backtest a bot kind over whatever history the feed serves for each token,
    e.g. real Birdeye candles through LiveFeed. Tokens the feed cannot serve
    are skipped.
    """
    strategy = Strategy.of(kind)
    series: Dict[str, Sequence[Sample]] = {}
    candidates: Dict[str, TokenCandidate] = {}

    for token in tokens:
        try:
            samples = await feed.get_historical_series(token, days, interval_minutes)
            if strategy.kind is StrategyKind.NEW_TOKEN_HUNTER:
                candidates[token] = await feed.get_candidate(token)
        except FeedUnavailable as e:
            logger.warning("Skipping token: no market data", token=token, error=str(e))
            continue
        if not samples:
            logger.warning("Skipping token: empty history", token=token)
            candidates.pop(token, None)
            continue
        series[token] = samples

    logger.info("Market data loaded", strategy=strategy.name, tokens=len(series), days=days)
    return await run_batch(series, strategy, config=config, candidates=candidates,
                           initial_capital=initial_capital, max_concurrency=max_concurrency)
