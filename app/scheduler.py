import asyncio
from typing import Awaitable, Callable, Dict, List

from app.config import settings
from app.utils.logging_config import bind_bot, logger

TickFn = Callable[[], Awaitable[List]]


class BotScheduler:
    """
    One periodic loop per active bot. Tick N is awaited before the poll
    sleep, so ticks of one bot never overlap. Stopping a bot never cancels
    an in-flight tick: the loop finishes it and then exits.
    """

    def __init__(self, poll_interval: float = None, tick_budget: float = None):
        self.poll_interval = settings.POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        self.tick_budget = settings.TICK_BUDGET_SECONDS if tick_budget is None else tick_budget
        self._tasks: Dict[str, asyncio.Task] = {}
        self._stops: Dict[str, asyncio.Event] = {}
        self.ticks: Dict[str, int] = {}

    def is_running(self, bot_id: str) -> bool:
        task = self._tasks.get(bot_id)
        return task is not None and not task.done()

    def start(self, bot_id: str, tick: TickFn, strategy: str = "") -> asyncio.Task:
        if self.is_running(bot_id):
            return self._tasks[bot_id]
        stop = asyncio.Event()
        self._stops[bot_id] = stop
        self.ticks.setdefault(bot_id, 0)
        task = asyncio.create_task(self._run(bot_id, tick, stop, strategy), name=f"bot-{bot_id}")
        self._tasks[bot_id] = task
        return task

    async def stop(self, bot_id: str):
        stop = self._stops.pop(bot_id, None)
        task = self._tasks.pop(bot_id, None)
        if stop is None or task is None:
            return
        stop.set()
        await task
        logger.info("Bot loop stopped", bot_id=bot_id, ticks=self.ticks.get(bot_id, 0))

    async def stop_all(self):
        await asyncio.gather(*(self.stop(bot_id) for bot_id in list(self._tasks)))

    async def _run(self, bot_id: str, tick: TickFn, stop: asyncio.Event, strategy: str):
        bind_bot(bot_id, strategy)
        logger.info("Bot loop started", poll_interval=self.poll_interval)

        while not stop.is_set():
            pending = asyncio.create_task(self._guarded_tick(bot_id, tick))
            done, _ = await asyncio.wait({pending}, timeout=self.tick_budget)
            if not done:
                logger.warning("Tick over budget, waiting for completion", budget=self.tick_budget)
                await pending
            self.ticks[bot_id] += 1

            if stop.is_set():
                break
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def _guarded_tick(self, bot_id: str, tick: TickFn):
        try:
            actions = await tick()
            if actions:
                logger.info("Tick complete", actions=len(actions))
            return actions
        except Exception as e:
            # A failed tick never takes the loop down
            logger.error("Error in bot tick", bot_id=bot_id, error=str(e), exc_info=True)
            return []
