import asyncio
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Union

from app.config import settings
from app.engine.errors import ConfigurationInvalid, FeedUnavailable, PersistenceFailure
from app.engine.history import MarketHistory
from app.engine.ledger import CapitalLedger
from app.engine.manager import PositionManager
from app.engine.models import TokenCandidate, TradeAction
from app.execution.paper import PaperExecutionService
from app.feeds.base import build_feed
from app.scheduler import BotScheduler
from app.strategies.config import StrategyConfig
from app.strategies.rules import Strategy
from app.utils.logging_config import logger


@dataclass
class BotInstance:
    bot_id: str
    name: str
    strategy: Strategy
    feed: object
    manager: PositionManager
    is_active: bool = False

    @property
    def config(self) -> StrategyConfig:
        """Latest accepted config, including one not yet applied."""
        return self.manager.pending_config or self.manager.config

    @property
    def ledger(self) -> CapitalLedger:
        return self.manager.ledger


class BotRuntime:
    """
    Configuration surface for bot instances: create, reconfigure,
    activate and deactivate. Active bots tick on the shared scheduler.
    """

    def __init__(
        self,
        feed_factory: Callable = None,
        store=None,
        scheduler: BotScheduler = None,
        watchlist: List[str] = None,
        execution_factory: Callable = None,
    ):
        # Each bot gets its own feed handle (synthetic replays are per consumer)
        self.feed_factory = feed_factory or build_feed
        self.store = store
        self.scheduler = scheduler or BotScheduler()
        self.watchlist = list(settings.WATCHLIST if watchlist is None else watchlist)
        self.execution_factory = execution_factory or PaperExecutionService
        self.bots: Dict[str, BotInstance] = {}

    def get(self, bot_id: str) -> BotInstance:
        bot = self.bots.get(bot_id)
        if bot is None:
            raise KeyError(f"Unknown bot: {bot_id}")
        return bot

    async def create_bot(
        self,
        kind: str,
        config: Union[StrategyConfig, Dict, None] = None,
        name: str = None,
        bot_id: str = None,
        balance: float = None,
    ) -> BotInstance:
        try:
            strategy = Strategy.of(kind)
        except ValueError as e:
            raise ConfigurationInvalid("Unknown strategy kind", kind=kind) from e

        if isinstance(config, StrategyConfig):
            strategy_config = config
        else:
            strategy_config = strategy.default_config(**(config or {}))

        bot_id = bot_id or f"{strategy.name}-{uuid.uuid4().hex[:8]}"
        if bot_id in self.bots:
            raise ConfigurationInvalid("Bot id already in use", bot_id=bot_id)
        balance = settings.BOT_INITIAL_BALANCE if balance is None else balance

        feed = self.feed_factory()
        history = MarketHistory(feed)
        manager = PositionManager(
            bot_id=bot_id,
            strategy=strategy,
            config=strategy_config,
            ledger=CapitalLedger(bot_id, balance),
            history=history,
            execution=self.execution_factory(history.price_of),
            store=self.store,
        )
        bot = BotInstance(bot_id, name or strategy.name, strategy, feed, manager)
        self.bots[bot_id] = bot

        await self._persist("save_bot", bot_id, bot.name, strategy.name,
                            strategy_config.model_dump(mode="json"), balance)
        logger.info("Bot created", bot_id=bot_id, strategy=strategy.name, balance=balance)
        return bot

    async def update_config(self, bot_id: str, **changes) -> StrategyConfig:
        """Validated now, applied at the start of the bot's next tick."""
        bot = self.get(bot_id)
        config = bot.config.updated(**changes)
        bot.manager.reconfigure(config)
        await self._persist("save_config", bot_id, config.model_dump(mode="json"))
        logger.info("Config update queued", bot_id=bot_id, changes=list(changes))
        return config

    async def activate(self, bot_id: str):
        bot = self.get(bot_id)
        if bot.is_active:
            return
        bot.is_active = True
        self.scheduler.start(bot_id, lambda: self.tick(bot_id), strategy=bot.strategy.name)
        await self._persist("set_active", bot_id, True)

    async def deactivate(self, bot_id: str):
        bot = self.get(bot_id)
        if not bot.is_active:
            return
        bot.is_active = False
        await self.scheduler.stop(bot_id)
        await self._persist("set_active", bot_id, False)

    async def shutdown(self):
        for bot_id in [b.bot_id for b in self.bots.values() if b.is_active]:
            await self.deactivate(bot_id)

    async def candidates(self, bot: BotInstance) -> List[TokenCandidate]:
        results = await asyncio.gather(
            *(bot.feed.get_candidate(token) for token in self.watchlist),
            return_exceptions=True,
        )
        found = []
        for token, result in zip(self.watchlist, results):
            if isinstance(result, FeedUnavailable):
                logger.debug("Candidate unavailable", token=token, error=str(result))
            elif isinstance(result, Exception):
                logger.error("Candidate lookup failed", token=token, error=repr(result))
            else:
                found.append(result)
        return found

    async def tick(self, bot_id: str) -> List[TradeAction]:
        bot = self.get(bot_id)
        return await bot.manager.run_tick(await self.candidates(bot))

    async def _persist(self, op: str, *args):
        if self.store is None:
            return
        try:
            await getattr(self.store, op)(*args)
        except PersistenceFailure as e:
            logger.warning("Bot state not persisted", op=op, error=str(e))
