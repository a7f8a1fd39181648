import asyncio
from collections import defaultdict
from typing import Dict, List, Optional, Protocol

import pandas as pd
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from app.db.models import AsyncSessionLocal, BotRecord, TradeRecord
from app.engine.errors import PersistenceFailure
from app.engine.models import Side, TradeAction
from app.utils.logging_config import logger


class TradeStore(Protocol):
    async def append_trade(self, action: TradeAction) -> None:
        ...

    async def update_bot_balance(self, bot_id: str, balance: float) -> None:
        ...


class SqlTradeStore:
    """
    Durable trade log and bot registry. Writes for one bot are serialized;
    different bots write independently.
    """

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or AsyncSessionLocal
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def _write(self, bot_id: str, op: str, fn):
        async with self._locks[bot_id]:
            try:
                async with self.session_factory() as session:
                    await fn(session)
                    await session.commit()
            except SQLAlchemyError as e:
                raise PersistenceFailure(f"{op} failed", bot_id=bot_id, error=str(e)) from e

    async def save_bot(self, bot_id: str, name: str, strategy_type: str, config: dict,
                       balance: float, is_active: bool = False):
        async def op(session):
            await session.merge(BotRecord(
                id=bot_id,
                name=name,
                strategy_type=strategy_type,
                config=config,
                balance=balance,
                is_active=is_active,
            ))
        await self._write(bot_id, "save_bot", op)

    async def save_config(self, bot_id: str, config: dict):
        async def op(session):
            await session.execute(update(BotRecord).where(BotRecord.id == bot_id).values(config=config))
        await self._write(bot_id, "save_config", op)

    async def set_active(self, bot_id: str, is_active: bool):
        async def op(session):
            await session.execute(update(BotRecord).where(BotRecord.id == bot_id).values(is_active=is_active))
        await self._write(bot_id, "set_active", op)

    async def append_trade(self, action: TradeAction):
        async def op(session):
            session.add(TradeRecord(
                bot_id=action.bot_id,
                token=action.token,
                side=action.side.value,
                price=action.price,
                amount=action.size,
                value=action.value,
                fee=action.fee,
                profit=action.profit,
                reason=action.reason.value if action.reason else None,
                tx_signature=action.signature,
                timestamp=action.timestamp,
            ))
            values = {"total_trades": BotRecord.total_trades + 1}
            if action.side is Side.SELL:
                values["total_profit"] = BotRecord.total_profit + action.profit
                if action.profit > 0:
                    values["successful_trades"] = BotRecord.successful_trades + 1
            await session.execute(update(BotRecord).where(BotRecord.id == action.bot_id).values(**values))
        await self._write(action.bot_id, "append_trade", op)

    async def update_bot_balance(self, bot_id: str, balance: float):
        async def op(session):
            await session.execute(update(BotRecord).where(BotRecord.id == bot_id).values(balance=balance))
        await self._write(bot_id, "update_bot_balance", op)

    async def get_bot(self, bot_id: str) -> Optional[BotRecord]:
        async with self.session_factory() as session:
            return await session.get(BotRecord, bot_id)

    async def list_trades(self, bot_id: str) -> List[TradeRecord]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(TradeRecord).where(TradeRecord.bot_id == bot_id).order_by(TradeRecord.id)
            )
            return list(result.scalars())

    async def daily_profit(self, bot_id: str) -> List[dict]:
        """Realized profit per day plus running total."""
        trades = await self.list_trades(bot_id)
        if not trades:
            return []
        df = pd.DataFrame({
            "date": [pd.Timestamp(t.timestamp).strftime("%Y-%m-%d") for t in trades],
            "profit": [t.profit for t in trades],
        })
        daily = df.groupby("date", sort=True)["profit"].sum()
        cumulative = daily.cumsum()
        logger.debug("Daily profit computed", bot_id=bot_id, days=len(daily))
        return [
            {"date": date, "profit": round(float(p), 2), "cumulative": round(float(c), 2)}
            for date, p, c in zip(daily.index, daily.values, cumulative.values)
        ]
