"""
SQL trade store on an in-memory SQLite database.
"""
import asyncio
from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.db.models import init_db
from app.db.store import SqlTradeStore
from app.engine.errors import PersistenceFailure
from app.engine.models import ExitReason, Side, TradeAction
from tests.fakes import T0


def trade(side, profit=0.0, at=T0, reason=None):
    return TradeAction(
        bot_id="bot-1", token="AAA", timestamp=at, side=side, price=1.0, size=10.0,
        value=10.0, fee=0.1, profit=profit, reason=reason, signature=f"sig-{side.value}",
    )


def with_store(scenario, create_tables=True):
    async def go():
        engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
        if create_tables:
            await init_db(engine)
        store = SqlTradeStore(async_sessionmaker(engine, expire_on_commit=False))
        try:
            return await scenario(store)
        finally:
            await engine.dispose()
    return asyncio.run(go())


class TestSqlTradeStore:
    """Bot registry, trade log and statistics"""

    def test_trade_updates_stats(self):
        async def scenario(store):
            await store.save_bot("bot-1", "Hunter", "new-token-hunter", {"max_positions": 3}, 100.0)
            await store.append_trade(trade(Side.BUY))
            await store.append_trade(trade(Side.SELL, profit=4.0, reason=ExitReason.TAKE_PROFIT))
            await store.append_trade(trade(Side.BUY))
            await store.append_trade(trade(Side.SELL, profit=-1.5, reason=ExitReason.STOP_LOSS))
            await store.update_bot_balance("bot-1", 102.5)
            return await store.get_bot("bot-1"), await store.list_trades("bot-1")

        bot, trades = with_store(scenario)
        assert bot.total_trades == 4
        assert bot.successful_trades == 1
        assert bot.total_profit == pytest.approx(2.5)
        assert bot.balance == pytest.approx(102.5)
        assert [t.side for t in trades] == ["buy", "sell", "buy", "sell"]
        assert trades[1].reason == "take_profit"
        assert trades[0].reason is None

    def test_config_and_activation(self):
        async def scenario(store):
            await store.save_bot("bot-1", "Dip", "dip-hunter", {"stop_loss_pct": 10.0}, 100.0)
            await store.save_config("bot-1", {"stop_loss_pct": 12.0})
            await store.set_active("bot-1", True)
            return await store.get_bot("bot-1")

        bot = with_store(scenario)
        assert bot.config == {"stop_loss_pct": 12.0}
        assert bot.is_active

    def test_daily_profit(self):
        async def scenario(store):
            await store.save_bot("bot-1", "Vol", "volume-tracker", {}, 100.0)
            await store.append_trade(trade(Side.SELL, profit=2.0))
            await store.append_trade(trade(Side.SELL, profit=1.0, at=T0 + timedelta(hours=2)))
            await store.append_trade(trade(Side.SELL, profit=-0.5, at=T0 + timedelta(days=1)))
            return await store.daily_profit("bot-1")

        assert with_store(scenario) == [
            {"date": "2024-01-01", "profit": 3.0, "cumulative": 3.0},
            {"date": "2024-01-02", "profit": -0.5, "cumulative": 2.5},
        ]

    def test_failure_surfaces_as_persistence_failure(self):
        async def scenario(store):
            await store.append_trade(trade(Side.BUY))

        with pytest.raises(PersistenceFailure):
            with_store(scenario, create_tables=False)
