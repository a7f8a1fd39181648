from dataclasses import dataclass
from typing import Dict, Tuple

from app.engine.models import Side, TradeAction

# (UTC date "YYYY-MM-DD", portfolio value)
DailyValue = Tuple[str, float]


@dataclass(frozen=True)
class SimulationResult:
    strategy: str
    token: str
    initial_capital: float
    final_capital: float
    profit: float
    profit_percentage: float
    trades: Tuple[TradeAction, ...]
    daily_performance: Tuple[DailyValue, ...]

    @property
    def trade_count(self) -> int:
        return len(self.trades)

    @property
    def sells(self) -> Tuple[TradeAction, ...]:
        return tuple(t for t in self.trades if t.side is Side.SELL)

    @property
    def success_rate(self) -> float:
        """Share of sells that realized more than their entry cost."""
        sells = self.sells
        if not sells:
            return 0.0
        return sum(1 for t in sells if t.profit > 0) / len(sells)


@dataclass(frozen=True)
class BatchResult:
    results: Dict[str, SimulationResult]
    # Mean portfolio value per day across every token that has that day
    aggregate_daily: Tuple[DailyValue, ...]

    @property
    def total_profit(self) -> float:
        return sum(r.profit for r in self.results.values())
