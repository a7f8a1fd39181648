import asyncio
import itertools
from typing import Dict, Iterable, List, Optional, Set

from app.db.store import TradeStore
from app.engine.errors import ExecutionFailure, FeedUnavailable, PersistenceFailure
from app.engine.history import MarketHistory
from app.engine.ledger import CapitalLedger
from app.engine.models import ExitReason, Position, Sample, Side, TokenCandidate, TradeAction
from app.execution.base import ExecutionService
from app.strategies.config import StrategyConfig
from app.strategies.exits import exit_levels, should_exit
from app.strategies.rules import Strategy, should_enter
from app.utils.logging_config import logger


class PositionRegistry:
    """Open positions of one bot instance, keyed by token."""

    def __init__(self):
        self._positions: Dict[str, Position] = {}
        self._seq = itertools.count(1)

    def __contains__(self, token: str) -> bool:
        return token in self._positions

    def __len__(self) -> int:
        return len(self._positions)

    def get(self, token: str) -> Optional[Position]:
        return self._positions.get(token)

    def next_seq(self) -> int:
        return next(self._seq)

    def add(self, position: Position):
        if position.token in self._positions:
            raise ValueError(f"Position already open for {position.token}")
        self._positions[position.token] = position

    def remove(self, token: str) -> Position:
        return self._positions.pop(token)

    def oldest_first(self) -> List[Position]:
        return sorted(self._positions.values(), key=lambda p: p.opened_seq)


class PositionManager:
    """
    Owns position state for one bot instance and turns rule output into
    ledger-backed entries and exits. Each tick: exits first (oldest position
    first), then entries; at most one action per token per tick.
    """

    def __init__(
        self,
        bot_id: str,
        strategy: Strategy,
        config: StrategyConfig,
        ledger: CapitalLedger,
        history: MarketHistory,
        execution: ExecutionService,
        store: TradeStore = None,
    ):
        self.bot_id = bot_id
        self.strategy = strategy
        self.config = config
        self.ledger = ledger
        self.history = history
        self.execution = execution
        self.store = store
        self.registry = PositionRegistry()
        self.pending_config: Optional[StrategyConfig] = None
        self._lock = asyncio.Lock()

    def reconfigure(self, config: StrategyConfig):
        """Queue a validated config; applied at the start of the next tick."""
        self.pending_config = config

    @property
    def positions(self) -> List[Position]:
        return self.registry.oldest_first()

    async def run_tick(self, candidates: Iterable[TokenCandidate] = ()) -> List[TradeAction]:
        async with self._lock:
            if self.pending_config is not None:
                self.config, self.pending_config = self.pending_config, None
                logger.info("Config applied", bot_id=self.bot_id, config=self.config.model_dump(mode="json"))

            config = self.config
            actions: List[TradeAction] = []
            touched: Set[str] = set()

            await self._evaluate_exits(config, actions, touched)
            await self._evaluate_entries(candidates, config, actions, touched)
            return actions

    async def _evaluate_exits(self, config: StrategyConfig, actions: List[TradeAction], touched: Set[str]):
        positions = self.registry.oldest_first()
        if not positions:
            return

        # Feed reads are independent per token; mutations below stay sequential
        histories = await asyncio.gather(
            *(self.history.refresh(p.token) for p in positions),
            return_exceptions=True,
        )

        for position, history in zip(positions, histories):
            touched.add(position.token)
            if isinstance(history, FeedUnavailable):
                logger.warning("Feed unavailable, holding position", bot_id=self.bot_id, token=position.token, error=str(history))
                continue
            if isinstance(history, Exception):
                logger.error("Exit evaluation failed", bot_id=self.bot_id, token=position.token, exc_info=history)
                continue

            reason = should_exit(config, history, position)
            if reason is None:
                continue
            action = await self._exit(position, reason, history[-1], config)
            if action:
                actions.append(action)

    async def _evaluate_entries(self, candidates, config: StrategyConfig, actions: List[TradeAction], touched: Set[str]):
        deferred = 0
        for candidate in candidates:
            token = candidate.address
            if token in touched or token in self.registry:
                continue
            if len(self.registry) >= config.max_positions:
                deferred += 1
                continue

            touched.add(token)
            try:
                history = await self.history.refresh(token)
                if not should_enter(self.strategy, history, candidate, config=config):
                    continue
                action = await self._enter(candidate, history[-1], config)
            except FeedUnavailable as e:
                logger.warning("Feed unavailable, skipping candidate", bot_id=self.bot_id, token=token, error=str(e))
                continue
            except Exception:
                logger.error("Entry evaluation failed", bot_id=self.bot_id, token=token, exc_info=True)
                continue

            if action:
                actions.append(action)
            elif len(self.registry) >= config.max_positions:
                deferred += 1

        if deferred:
            logger.info("Entries deferred: max positions reached", bot_id=self.bot_id,
                        deferred=deferred, max_positions=config.max_positions)

    async def _enter(self, candidate: TokenCandidate, sample: Sample, config: StrategyConfig) -> Optional[TradeAction]:
        token = candidate.address
        amount = self.ledger.size_entry(config.risk_percentage)
        if not self.ledger.can_afford(amount):
            logger.info("Entry rejected: insufficient balance", bot_id=self.bot_id, token=token,
                        amount=amount, balance=self.ledger.balance)
            return None

        try:
            fill = await self.execution.submit_buy(token, amount)
        except ExecutionFailure as e:
            logger.warning("Buy failed, no position opened", bot_id=self.bot_id, token=token, error=str(e))
            return None

        levels = exit_levels(fill.filled_price, config)
        position = Position(
            bot_id=self.bot_id,
            token=token,
            entry_price=fill.filled_price,
            size=fill.filled_units,
            stop_loss=levels.stop_loss,
            take_profit=levels.take_profit,
            entry_time=sample.timestamp,
            cost_basis=fill.quote_spent,
            opened_seq=self.registry.next_seq(),
        )
        self.ledger.debit(fill.quote_spent)
        self.registry.add(position)

        action = TradeAction(
            bot_id=self.bot_id,
            token=token,
            timestamp=sample.timestamp,
            side=Side.BUY,
            price=fill.filled_price,
            size=fill.filled_units,
            value=fill.quote_spent - fill.fee,
            fee=fill.fee,
            signature=fill.signature,
        )
        logger.info("Position opened", bot_id=self.bot_id, token=token, symbol=candidate.symbol,
                    entry=position.entry_price, size=position.size, stop=position.stop_loss, target=position.take_profit)
        await self._record(action)
        return action

    async def _exit(self, position: Position, reason: ExitReason, sample: Sample, config: StrategyConfig) -> Optional[TradeAction]:
        units = position.units_for(reason, config.partial_take_profit_fraction)

        # Still holding the asset on any failure: leave the position untouched and retry next tick
        try:
            fill = await self.execution.submit_sell(position.token, units)
        except ExecutionFailure as e:
            logger.warning("Sell failed, position kept", bot_id=self.bot_id, token=position.token,
                           reason=reason.value, error=str(e))
            return None
        except Exception:
            logger.error("Sell errored, position kept", bot_id=self.bot_id, token=position.token,
                         reason=reason.value, exc_info=True)
            return None

        cost, closed = position.apply_sell(units, reason)
        profit = fill.quote_amount_out - cost

        if closed:
            self.registry.remove(position.token)
            logger.info("Position closed", bot_id=self.bot_id, token=position.token, reason=reason.value,
                        price=fill.filled_price, profit=round(profit, 6))
        else:
            logger.info("Partial take profit", bot_id=self.bot_id, token=position.token,
                        sold=units, remaining=position.size, profit=round(profit, 6))

        self.ledger.credit(fill.quote_amount_out, profit)

        action = TradeAction(
            bot_id=self.bot_id,
            token=position.token,
            timestamp=sample.timestamp,
            side=Side.SELL,
            price=fill.filled_price,
            size=units,
            value=fill.quote_amount_out,
            fee=fill.fee,
            profit=profit,
            reason=reason,
            signature=fill.signature,
        )
        await self._record(action)
        return action

    async def _record(self, action: TradeAction):
        if self.store is None:
            return
        try:
            await self.store.append_trade(action)
            await self.store.update_bot_balance(self.bot_id, self.ledger.balance)
        except PersistenceFailure as e:
            # In-memory state stays authoritative
            logger.warning("Trade not persisted", bot_id=self.bot_id, token=action.token, error=str(e))
