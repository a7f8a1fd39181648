"""
In-memory collaborators for engine tests: a scripted price feed, an
execution venue that can be told to fail, and a trade store.
"""
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Sequence

from app.engine.errors import ExecutionFailure, FeedUnavailable, PersistenceFailure
from app.engine.models import Sample, TokenCandidate, TradeAction
from app.execution.paper import PaperExecutionService

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
STEP = timedelta(minutes=15)


def flat_samples(prices: Sequence[float], volumes: Sequence[float] = None, start: datetime = T0) -> List[Sample]:
    volumes = volumes or [1_000.0] * len(prices)
    return [
        Sample(start + STEP * i, p, p, p, p, v)
        for i, (p, v) in enumerate(zip(prices, volumes))
    ]


def fresh_candidate(address: str, **overrides) -> TokenCandidate:
    """Passes every new-token-hunter filter at T0."""
    fields = dict(
        address=address,
        symbol=address[:4].upper(),
        launch_time=T0 - timedelta(hours=1),
        market_cap=500_000.0,
        volume_24h=100_000.0,
        liquidity_locked=True,
        is_honeypot=False,
        price=1.0,
    )
    fields.update(overrides)
    return TokenCandidate(**fields)


class ScriptedFeed:
    """Each get_current_sample call advances one step along the token's path."""

    def __init__(self, paths: Dict[str, Sequence[float]], candidates: Dict[str, TokenCandidate] = None):
        self.paths = {token: flat_samples(prices) for token, prices in paths.items()}
        self.candidates = candidates or {}
        self.cursors: Dict[str, int] = {}
        self.unavailable = set()
        self.errors: Dict[str, Exception] = {}
        self.calls: List[str] = []

    async def get_current_sample(self, token: str) -> Sample:
        self.calls.append(token)
        if token in self.errors:
            raise self.errors[token]
        if token in self.unavailable or token not in self.paths:
            raise FeedUnavailable("scripted outage", token=token)
        series = self.paths[token]
        cursor = self.cursors.get(token, 0)
        self.cursors[token] = cursor + 1
        # Hold the last price once the path runs out
        return series[min(cursor, len(series) - 1)]

    async def get_historical_series(self, token: str, days: int = 1, interval_minutes: int = 15) -> List[Sample]:
        return []

    async def get_candidate(self, token: str) -> TokenCandidate:
        if token not in self.candidates:
            raise FeedUnavailable("no candidate", token=token)
        return self.candidates[token]


class ReplayFeed:
    """Serves fixed historical series, the way a live feed returns Birdeye history."""

    def __init__(self, series: Dict[str, Sequence[float]], candidates: Dict[str, TokenCandidate] = None):
        self.series = {token: flat_samples(prices) for token, prices in series.items()}
        self.candidates = candidates or {}
        self.requests: List[tuple] = []

    async def get_current_sample(self, token: str) -> Sample:
        if token not in self.series:
            raise FeedUnavailable("unknown token", token=token)
        return self.series[token][-1]

    async def get_historical_series(self, token: str, days: int = 1, interval_minutes: int = 15) -> List[Sample]:
        self.requests.append((token, days, interval_minutes))
        if token not in self.series:
            raise FeedUnavailable("no history", token=token)
        return list(self.series[token])

    async def get_candidate(self, token: str) -> TokenCandidate:
        if token not in self.candidates:
            raise FeedUnavailable("no candidate", token=token)
        return self.candidates[token]


class FlakyExecution(PaperExecutionService):
    """Paper venue that rejects orders for selected tokens."""

    def __init__(self, price_of, fee_rate: float = 0.01):
        super().__init__(price_of, fee_rate=fee_rate)
        self.fail_buys = set()
        self.fail_sells = set()
        self.sell_errors: Dict[str, Exception] = {}
        self.sell_attempts: List[str] = []

    async def submit_buy(self, token: str, quote_amount: float):
        if token in self.fail_buys:
            raise ExecutionFailure("venue rejected buy", token=token)
        return await super().submit_buy(token, quote_amount)

    async def submit_sell(self, token: str, units: float):
        self.sell_attempts.append(token)
        if token in self.fail_sells:
            raise ExecutionFailure("venue rejected sell", token=token)
        if token in self.sell_errors:
            raise self.sell_errors[token]
        return await super().submit_sell(token, units)


class MemoryStore:
    def __init__(self, failing: bool = False):
        self.failing = failing
        self.trades: List[TradeAction] = []
        self.balances: Dict[str, float] = {}
        self.bots: Dict[str, dict] = {}

    def _check(self):
        if self.failing:
            raise PersistenceFailure("store offline")

    async def append_trade(self, action: TradeAction):
        self._check()
        self.trades.append(action)

    async def update_bot_balance(self, bot_id: str, balance: float):
        self._check()
        self.balances[bot_id] = balance

    async def save_bot(self, bot_id, name, strategy_type, config, balance, is_active=False):
        self._check()
        self.bots[bot_id] = {"name": name, "strategy_type": strategy_type, "config": config,
                             "balance": balance, "is_active": is_active}

    async def save_config(self, bot_id, config):
        self._check()
        self.bots[bot_id]["config"] = config

    async def set_active(self, bot_id, is_active):
        self._check()
        self.bots[bot_id]["is_active"] = is_active


def sells(actions: Iterable[TradeAction]) -> List[TradeAction]:
    return [a for a in actions if a.side.value == "sell"]


def buys(actions: Iterable[TradeAction]) -> List[TradeAction]:
    return [a for a in actions if a.side.value == "buy"]
