"""
Deterministic replays, fee math, daily bucketing and batch runs.
"""
import asyncio
from datetime import timedelta

import pytest

from app.engine.models import ExitReason, Side
from app.feeds.synthetic import SyntheticFeed
from app.strategies.config import StrategyKind
from app.strategies.rules import Strategy
from backtest.engine import BacktestEngine
from backtest.metrics import max_drawdown, summarize
from backtest.runner import run_batch, simulate_bot, simulate_with_feed
from tests.fakes import T0, ReplayFeed, flat_samples, fresh_candidate

HUNTER = Strategy.of(StrategyKind.NEW_TOKEN_HUNTER)


class TestBacktestEngine:
    """Single-token replay"""

    def test_take_profit_on_rising_series(self):
        """Capital 100, 1% fees, 5% per interval, +20% target"""
        prices = [1.05 ** k for k in range(11)]
        config = HUNTER.default_config(take_profit_pct=20, stop_loss_pct=10,
                                       partial_take_profit_pct=None, max_token_age_hours=1.5)
        result = BacktestEngine(100, 0.01).run(flat_samples(prices), HUNTER, config, fresh_candidate("AAA"))

        assert [t.side for t in result.trades] == [Side.BUY, Side.SELL]
        assert result.trades[1].reason is ExitReason.TAKE_PROFIT
        # 5% stays in cash; the first close at or above +20% is 1.05**4
        expected = 5 + 95 * 0.99 * 1.05 ** 4 * 0.99
        assert result.final_capital == pytest.approx(expected)
        assert result.final_capital == pytest.approx(117.61, rel=0.01)

    def test_take_profit_with_full_investment(self):
        """All capital in, exact +20% close: 100 x 0.99 x 1.2 x 0.99"""
        config = HUNTER.default_config(take_profit_pct=20, stop_loss_pct=10,
                                       partial_take_profit_pct=None, max_token_age_hours=1.5)
        engine = BacktestEngine(100, 0.01, invest_fraction=1.0)
        result = engine.run(flat_samples([1.0, 1.1, 1.2]), HUNTER, config, fresh_candidate("AAA"))

        assert result.trades[-1].reason is ExitReason.TAKE_PROFIT
        assert result.trades[-1].price == 1.2
        assert round(result.final_capital, 2) == 117.61

    def test_partial_then_stop(self):
        result = BacktestEngine().run(flat_samples([1.0, 2.0, 0.6]), HUNTER, candidate=fresh_candidate("AAA"))
        reasons = [t.reason for t in result.trades if t.side is Side.SELL]
        assert reasons == [ExitReason.PARTIAL_TAKE_PROFIT, ExitReason.STOP_LOSS]
        assert result.trades[1].size == pytest.approx(result.trades[0].size / 2)

    def test_force_close_at_final_close(self):
        prices = [1.0, 1.01, 1.02, 1.03]
        result = BacktestEngine().run(flat_samples(prices), HUNTER, candidate=fresh_candidate("AAA"))
        last = result.trades[-1]
        assert last.reason is ExitReason.END_OF_DATA
        assert last.price == 1.03
        assert result.trade_count == 2

    def test_no_entry_keeps_capital(self):
        result = BacktestEngine().run(flat_samples([1.0] * 20), Strategy.of(StrategyKind.VOLUME_TRACKER))
        assert result.trades == ()
        assert result.final_capital == 100.0
        assert result.success_rate == 0.0

    def test_daily_bucket_keeps_last_value(self):
        day_two = T0 + timedelta(days=1)
        samples = flat_samples([1.0, 1.0]) + flat_samples([1.0, 1.0], start=day_two)
        result = BacktestEngine().run(samples, Strategy.of(StrategyKind.VOLUME_TRACKER))
        assert result.daily_performance == (("2024-01-01", 100.0), ("2024-01-02", 100.0))

    def test_profit_sums_to_capital_change(self):
        for kind in StrategyKind:
            result = simulate_bot(kind, days=3)
            realized = sum(t.profit for t in result.trades)
            assert realized == pytest.approx(result.final_capital - result.initial_capital)
            assert all(t.profit == 0.0 for t in result.trades if t.side is Side.BUY)

    def test_runs_are_identical(self):
        for kind in StrategyKind:
            first = simulate_bot(kind, days=3)
            second = simulate_bot(kind, days=3)
            assert first == second
            assert repr(first) == repr(second)

    def test_buy_fee_before_conversion(self):
        result = BacktestEngine(100, 0.01).run(flat_samples([2.0, 2.0]), HUNTER, candidate=fresh_candidate("AAA"))
        buy = result.trades[0]
        assert buy.fee == pytest.approx(0.95)
        assert buy.size == pytest.approx(94.05 / 2.0)


class TestMetrics:
    """Summaries of a finished run"""

    def test_max_drawdown(self):
        daily = [("d1", 100.0), ("d2", 80.0), ("d3", 120.0), ("d4", 90.0)]
        assert max_drawdown(daily) == pytest.approx(25.0)
        assert max_drawdown([]) == 0.0

    def test_summary_fields(self):
        prices = [1.0, 2.0, 3.5]
        result = BacktestEngine().run(flat_samples(prices), HUNTER, candidate=fresh_candidate("AAA"))
        summary = summarize(result)
        assert summary["trade_count"] == 3
        assert summary["success_rate"] == 100.0
        assert summary["profit"] > 0
        assert summary["daily_data"][0]["date"] == "2024-01-01"


class TestBatch:
    """Independent runs across tokens"""

    def test_batch_matches_single_runs(self):
        feed = SyntheticFeed()
        tokens = ["tok-a", "tok-b", "tok-c"]
        series = {t: feed.series(t, 2, 15) for t in tokens}
        strategy = Strategy.of(StrategyKind.DIP_HUNTER)

        batch = asyncio.run(run_batch(series, strategy, max_concurrency=2))

        assert set(batch.results) == set(tokens)
        for token in tokens:
            assert batch.results[token] == BacktestEngine().run(series[token], strategy, token=token)
        assert [d for d, _ in batch.aggregate_daily] == ["2024-01-01", "2024-01-02"]
        day_one = [r.daily_performance[0][1] for r in batch.results.values()]
        assert batch.aggregate_daily[0][1] == pytest.approx(sum(day_one) / len(day_one))

    def test_feed_history_backtest_skips_missing_tokens(self):
        prices = [1.0, 1.1, 1.2, 0.9]
        feed = ReplayFeed({"AAA": prices, "BBB": prices}, candidates={"AAA": fresh_candidate("AAA")})

        batch = asyncio.run(simulate_with_feed(StrategyKind.NEW_TOKEN_HUNTER, ["AAA", "BBB", "ZZZ"], feed,
                                               days=3, interval_minutes=60))

        # BBB has no candidate data and ZZZ no history
        assert set(batch.results) == {"AAA"}
        expected = BacktestEngine().run(flat_samples(prices), HUNTER, candidate=fresh_candidate("AAA"), token="AAA")
        assert batch.results["AAA"] == expected
        assert ("AAA", 3, 60) in feed.requests

    def test_feed_history_backtest_without_candidates(self):
        feed = ReplayFeed({"AAA": [1.0] * 8, "BBB": [1.0, 0.9, 0.8, 0.85, 0.9]})
        strategy = Strategy.of(StrategyKind.DIP_HUNTER)

        batch = asyncio.run(simulate_with_feed(StrategyKind.DIP_HUNTER, ["AAA", "BBB"], feed, days=1))

        assert set(batch.results) == {"AAA", "BBB"}
        assert batch.results["AAA"].final_capital == 100.0
        for token in ("AAA", "BBB"):
            assert batch.results[token] == BacktestEngine().run(feed.series[token], strategy, token=token)
