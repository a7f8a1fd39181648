"""
Bot loops: scheduling, deactivation, and the configuration surface.
"""
import asyncio

import pytest

from app.bots import BotRuntime
from app.engine.errors import ConfigurationInvalid
from app.scheduler import BotScheduler
from tests.fakes import FlakyExecution, MemoryStore, ScriptedFeed, fresh_candidate


async def wait_for_ticks(scheduler, bot_id, n, timeout=2.0):
    async def poll():
        while scheduler.ticks.get(bot_id, 0) < n:
            await asyncio.sleep(0.005)
    await asyncio.wait_for(poll(), timeout)


class TestBotScheduler:
    """Periodic ticks per bot"""

    def test_ticks_never_overlap(self):
        state = {"running": 0, "max": 0}

        async def tick():
            state["running"] += 1
            state["max"] = max(state["max"], state["running"])
            await asyncio.sleep(0.01)
            state["running"] -= 1
            return []

        async def go():
            scheduler = BotScheduler(poll_interval=0, tick_budget=1)
            scheduler.start("bot", tick)
            await wait_for_ticks(scheduler, "bot", 3)
            await scheduler.stop("bot")

        asyncio.run(go())
        assert state["max"] == 1

    def test_stop_waits_for_in_flight_tick(self):
        events = []

        async def tick():
            events.append("start")
            await asyncio.sleep(0.1)
            events.append("end")
            return []

        async def go():
            scheduler = BotScheduler(poll_interval=10, tick_budget=1)
            scheduler.start("bot", tick)
            await asyncio.sleep(0.02)
            await scheduler.stop("bot")
            return scheduler

        scheduler = asyncio.run(go())
        assert events == ["start", "end"]
        assert scheduler.ticks["bot"] == 1
        assert not scheduler.is_running("bot")

    def test_tick_error_does_not_stop_loop(self):
        async def tick():
            raise RuntimeError("boom")

        async def go():
            scheduler = BotScheduler(poll_interval=0, tick_budget=1)
            scheduler.start("bot", tick)
            await wait_for_ticks(scheduler, "bot", 3)
            running = scheduler.is_running("bot")
            await scheduler.stop("bot")
            return running

        assert asyncio.run(go())

    def test_over_budget_tick_completes(self):
        finished = []

        async def tick():
            await asyncio.sleep(0.05)
            finished.append(True)
            return []

        async def go():
            scheduler = BotScheduler(poll_interval=10, tick_budget=0.01)
            scheduler.start("bot", tick)
            await wait_for_ticks(scheduler, "bot", 1)
            await scheduler.stop("bot")

        asyncio.run(go())
        assert finished == [True]


def make_runtime(paths, store=None, watchlist=None):
    feed = ScriptedFeed(paths, candidates={t: fresh_candidate(t) for t in paths})
    runtime = BotRuntime(
        feed_factory=lambda: feed,
        store=store,
        scheduler=BotScheduler(poll_interval=0, tick_budget=1),
        watchlist=list(paths) if watchlist is None else watchlist,
        execution_factory=FlakyExecution,
    )
    return runtime, feed


class TestBotRuntime:
    """Creating, configuring and running bots"""

    def test_create_with_overrides(self):
        store = MemoryStore()
        runtime, _ = make_runtime({}, store=store)
        bot = asyncio.run(runtime.create_bot("new-token-hunter", {"max_positions": 5}, bot_id="b1"))

        assert bot.config.max_positions == 5
        assert bot.config.stop_loss_pct == 40
        assert bot.ledger.balance == 100.0
        assert store.bots["b1"]["strategy_type"] == "new-token-hunter"

    def test_invalid_creation_refused(self):
        runtime, _ = make_runtime({})
        with pytest.raises(ConfigurationInvalid):
            asyncio.run(runtime.create_bot("dip-hunter", {"stop_loss_pct": 100}))
        with pytest.raises(ConfigurationInvalid):
            asyncio.run(runtime.create_bot("grid-bot"))
        assert runtime.bots == {}

    def test_update_applies_on_next_tick(self):
        runtime, _ = make_runtime({"AAA": [1.0], "BBB": [1.0]})

        async def go():
            bot = await runtime.create_bot("new-token-hunter", bot_id="b1")
            await runtime.update_config("b1", max_positions=1)
            assert bot.manager.config.max_positions == 3
            actions = await runtime.tick("b1")
            return bot, actions

        bot, actions = asyncio.run(go())
        assert len(actions) == 1
        assert bot.manager.config.max_positions == 1

    def test_invalid_update_keeps_prior(self):
        runtime, _ = make_runtime({})

        async def go():
            bot = await runtime.create_bot("trend-surfer", bot_id="b1")
            with pytest.raises(ConfigurationInvalid):
                await runtime.update_config("b1", max_positions=0)
            return bot

        bot = asyncio.run(go())
        assert bot.config.max_positions == 3
        assert bot.manager.pending_config is None

    def test_activate_and_deactivate(self):
        store = MemoryStore()
        runtime, _ = make_runtime({"AAA": [1.0, 1.1, 1.2]}, store=store)

        async def go():
            bot = await runtime.create_bot("new-token-hunter", bot_id="b1")
            await runtime.activate("b1")
            assert store.bots["b1"]["is_active"]
            await wait_for_ticks(runtime.scheduler, "b1", 3)
            await runtime.deactivate("b1")
            return bot

        bot = asyncio.run(go())
        assert not bot.is_active
        assert not runtime.scheduler.is_running("b1")
        assert not store.bots["b1"]["is_active"]
        assert "AAA" in bot.manager.registry
        assert len(store.trades) == 1

    def test_missing_candidates_skipped(self):
        runtime, _ = make_runtime({"AAA": [1.0]}, watchlist=["AAA", "GONE"])

        async def go():
            bot = await runtime.create_bot("new-token-hunter")
            return await runtime.candidates(bot)

        assert [c.address for c in asyncio.run(go())] == ["AAA"]
