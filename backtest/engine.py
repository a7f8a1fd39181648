from datetime import datetime
from typing import List, Optional, Sequence, Tuple

import pandas as pd

from app.config import settings
from app.engine.models import ExitReason, Position, Sample, Side, TokenCandidate, TradeAction
from app.strategies.config import StrategyConfig
from app.strategies.exits import exit_levels, should_exit
from app.strategies.rules import Strategy, should_enter
from app.utils.logging_config import logger
from backtest.fills import FeeFillModel
from backtest.models import DailyValue, SimulationResult


def utc_day(ts: datetime) -> str:
    stamp = pd.Timestamp(ts)
    stamp = stamp.tz_localize("UTC") if stamp.tzinfo is None else stamp.tz_convert("UTC")
    return stamp.strftime("%Y-%m-%d")


def bucket_daily(points: List[Tuple[str, float]]) -> Tuple[DailyValue, ...]:
    """Last valuation of each day wins."""
    if not points:
        return ()
    df = pd.DataFrame(points, columns=["date", "value"])
    daily = df.groupby("date", sort=True)["value"].last()
    return tuple((date, float(value)) for date, value in daily.items())


class BacktestEngine:
    """
    Single-token replay of the entry rules and exit evaluation.

    Synchronous and free of wall-clock or randomness, so the same samples,
    strategy and capital always give the same result. One position at a
    time; every fill becomes a TradeAction and any open position is closed
    at the final close.
    """

    def __init__(self, initial_capital: float = None, fee_rate: float = None, invest_fraction: float = None):
        self.initial_capital = settings.BACKTEST_INITIAL_CAPITAL if initial_capital is None else initial_capital
        self.fills = FeeFillModel(
            fee_rate=settings.BACKTEST_FEE_RATE if fee_rate is None else fee_rate,
            invest_fraction=settings.BACKTEST_INVEST_FRACTION if invest_fraction is None else invest_fraction,
        )

    def run(
        self,
        samples: Sequence[Sample],
        strategy: Strategy,
        config: Optional[StrategyConfig] = None,
        candidate: Optional[TokenCandidate] = None,
        token: str = "SIM",
    ) -> SimulationResult:
        config = config or strategy.default_config()
        bot_id = f"backtest-{strategy.name}"
        cash = self.initial_capital
        position: Optional[Position] = None
        trades: List[TradeAction] = []
        valuations: List[Tuple[str, float]] = []

        for i, sample in enumerate(samples):
            held = position.size if position else 0.0
            valuations.append((utc_day(sample.timestamp), cash + held * sample.close))

            if position is None:
                if should_enter(strategy, samples, candidate, index=i, config=config):
                    fill = self.fills.buy(cash, sample.close, len(trades) + 1)
                    levels = exit_levels(fill.filled_price, config)
                    position = Position(
                        bot_id=bot_id,
                        token=token,
                        entry_price=fill.filled_price,
                        size=fill.filled_units,
                        stop_loss=levels.stop_loss,
                        take_profit=levels.take_profit,
                        entry_time=sample.timestamp,
                        cost_basis=fill.quote_spent,
                    )
                    cash -= fill.quote_spent
                    trades.append(TradeAction(
                        bot_id=bot_id,
                        token=token,
                        timestamp=sample.timestamp,
                        side=Side.BUY,
                        price=fill.filled_price,
                        size=fill.filled_units,
                        value=fill.quote_spent - fill.fee,
                        fee=fill.fee,
                        signature=fill.signature,
                    ))
            else:
                reason = should_exit(config, samples, position, now_index=i)
                if reason is not None:
                    cash, position = self._sell(position, reason, sample, config, cash, trades)

        if position is not None and samples:
            last = samples[-1]
            cash, position = self._sell(position, ExitReason.END_OF_DATA, last, config, cash, trades)
            # Force-close is the day's final valuation
            valuations.append((utc_day(last.timestamp), cash))

        profit = cash - self.initial_capital
        result = SimulationResult(
            strategy=strategy.name,
            token=token,
            initial_capital=self.initial_capital,
            final_capital=cash,
            profit=profit,
            profit_percentage=(profit / self.initial_capital * 100) if self.initial_capital else 0.0,
            trades=tuple(trades),
            daily_performance=bucket_daily(valuations),
        )
        logger.debug("Backtest complete", strategy=strategy.name, token=token,
                     trades=result.trade_count, final=round(cash, 4))
        return result

    def _sell(self, position: Position, reason: ExitReason, sample: Sample, config: StrategyConfig,
              cash: float, trades: List[TradeAction]) -> Tuple[float, Optional[Position]]:
        units = position.units_for(reason, config.partial_take_profit_fraction)
        fill = self.fills.sell(units, sample.close, len(trades) + 1)
        cost, closed = position.apply_sell(units, reason)
        profit = fill.quote_amount_out - cost

        trades.append(TradeAction(
            bot_id=position.bot_id,
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
        ))
        cash += fill.quote_amount_out
        return cash, (None if closed else position)
