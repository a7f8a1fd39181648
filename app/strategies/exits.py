from dataclasses import dataclass
from typing import Optional, Sequence

from app.engine.models import ExitReason, Position, Sample
from app.strategies.config import StrategyConfig


@dataclass(frozen=True)
class ExitLevels:
    stop_loss: float
    take_profit: float
    partial_trigger: Optional[float]


def exit_levels(entry_price: float, config: StrategyConfig) -> ExitLevels:
    partial = None
    if config.partial_take_profit_pct is not None:
        partial = entry_price * (1 + config.partial_take_profit_pct / 100)
    return ExitLevels(
        stop_loss=entry_price * (1 - config.stop_loss_pct / 100),
        take_profit=entry_price * (1 + config.take_profit_pct / 100),
        partial_trigger=partial,
    )


def should_exit(
    config: StrategyConfig,
    history: Sequence[Sample],
    position: Position,
    now_index: Optional[int] = None,
) -> Optional[ExitReason]:
    """
    Central exit evaluation shared by every variant.

    Priority is fixed: StopLoss > TakeProfit > PartialTakeProfit > TimeExit.
    Stop is tested against the sample low, targets against the sample high,
    so one wide sample can cross both; it is then recorded as a stop loss.
    Partial levels are always measured from the original entry price.
    """
    if not history:
        return None
    i = len(history) - 1 if now_index is None else now_index
    sample = history[i]

    # 1. Capital preservation first
    if sample.low <= position.stop_loss:
        return ExitReason.STOP_LOSS

    # 2. Full target
    if sample.high >= position.take_profit:
        return ExitReason.TAKE_PROFIT

    # 3. Partial target (once)
    if config.partial_take_profit_pct is not None and not position.partial_taken:
        trigger = position.entry_price * (1 + config.partial_take_profit_pct / 100)
        if sample.high >= trigger:
            return ExitReason.PARTIAL_TAKE_PROFIT

    # 4. Time based exit
    if config.max_holding is not None:
        if sample.timestamp - position.entry_time >= config.max_holding:
            return ExitReason.TIME_EXIT

    return None
