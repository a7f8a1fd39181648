from typing import Dict, Sequence

import pandas as pd

from backtest.models import DailyValue, SimulationResult


def max_drawdown(daily: Sequence[DailyValue]) -> float:
    """Largest peak-to-trough fall of the daily series, in percent (0..100)."""
    if not daily:
        return 0.0
    equity = pd.Series([value for _, value in daily], dtype=float)
    peak = equity.cummax()
    drawdown = (equity - peak) / peak
    return float(-drawdown.min() * 100)


def summarize(result: SimulationResult) -> Dict:
    return {
        "strategy": result.strategy,
        "token": result.token,
        "initial_capital": round(result.initial_capital, 2),
        "final_capital": round(result.final_capital, 2),
        "profit": round(result.profit, 2),
        "profit_percentage": round(result.profit_percentage, 2),
        "trade_count": result.trade_count,
        "success_rate": round(result.success_rate * 100, 2),
        "max_drawdown": round(max_drawdown(result.daily_performance), 2),
        "daily_data": [{"date": date, "value": round(value, 2)} for date, value in result.daily_performance],
    }
