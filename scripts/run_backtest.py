import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import argparse
import asyncio

import pandas as pd
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from app.config import settings
from app.feeds.base import build_feed
from app.feeds.synthetic import SyntheticFeed
from app.strategies.config import StrategyKind
from app.strategies.rules import Strategy
from app.utils.logging_config import configure_logging
from backtest.metrics import summarize
from backtest.runner import run_batch, simulate_bot, simulate_with_feed

def print_summary(summary: dict):
    print("\n" + "="*40)
    print(f"BACKTEST: {summary['strategy']} on {summary['token']}")
    print("="*40)
    print(f"Trades:           {summary['trade_count']}")
    print(f"Success Rate:     {summary['success_rate']:.2f}%")
    print("-" * 20)
    print(f"Initial Capital:  ${summary['initial_capital']:.2f}")
    print(f"Final Capital:    ${summary['final_capital']:.2f}")
    print(f"Net PnL:          ${summary['profit']:.2f}")
    print(f"Net ROI:          {summary['profit_percentage']:.2f}%")
    print(f"Max Drawdown:     {summary['max_drawdown']:.2f}%")
    print("="*40)

def print_trades(result, limit: int = 5):
    print(f"\nTrades (first {limit}):")
    for t in result.trades[:limit]:
        reason = t.reason.value if t.reason else "-"
        print(f"{t.timestamp:%Y-%m-%d %H:%M} | {t.side.value:4} | ${t.price:.4f} | {reason} | PnL: ${t.profit:.2f}")

def plot_equity(daily, title: str, path: str):
    if not daily:
        return
    df = pd.DataFrame(daily, columns=["date", "value"])
    df["date"] = pd.to_datetime(df["date"])
    plt.figure(figsize=(10, 6))
    plt.plot(df["date"], df["value"], marker="o", label="Portfolio value")
    plt.title(title)
    plt.xlabel("Date")
    plt.ylabel("Capital ($)")
    plt.legend()
    plt.grid(True)
    plt.savefig(path)
    plt.close()
    print(f"Equity curve saved to '{path}'")

def run_synthetic(kinds, args):
    feed = SyntheticFeed()

    for kind in kinds:
        result = simulate_bot(kind, days=args.days, interval_minutes=args.interval,
                              initial_capital=args.capital, feed=feed)
        print_summary(summarize(result))
        print_trades(result)
        plot_equity(result.daily_performance, f"{kind.value} equity", f"backtest_{kind.value}.png")

        if args.batch:
            tokens = [f"{kind.value}-{n}" for n in range(args.batch)]
            series = {t: feed.series(t, args.days, args.interval) for t in tokens}
            candidates = {t: feed.candidate(t) for t in tokens}
            batch = asyncio.run(run_batch(series, Strategy.of(kind), candidates=candidates,
                                          initial_capital=args.capital))
            print(f"\nBatch of {len(tokens)} tokens: total PnL ${batch.total_profit:.2f}")
            plot_equity(batch.aggregate_daily, f"{kind.value} batch mean equity", f"backtest_{kind.value}_batch.png")

async def run_live(kinds, tokens, args):
    feed = build_feed("live")
    await feed.start()
    try:
        for kind in kinds:
            batch = await simulate_with_feed(kind, tokens, feed, days=args.days,
                                             interval_minutes=args.interval, initial_capital=args.capital)
            for result in batch.results.values():
                print_summary(summarize(result))
                print_trades(result)
            print(f"\n{kind.value}: {len(batch.results)} tokens, total PnL ${batch.total_profit:.2f}")
            plot_equity(batch.aggregate_daily, f"{kind.value} real-data mean equity", f"backtest_{kind.value}_live.png")
    finally:
        await feed.close()

def main():
    parser = argparse.ArgumentParser(description="Replay bot strategies over synthetic or real market history")
    parser.add_argument("--kind", default="all", help="strategy kind or 'all'")
    parser.add_argument("--source", default="synthetic", choices=["synthetic", "live"])
    parser.add_argument("--tokens", nargs="*", default=None, help="token addresses for --source live (default: WATCHLIST)")
    parser.add_argument("--days", type=int, default=7)
    parser.add_argument("--interval", type=int, default=15, help="minutes per sample")
    parser.add_argument("--capital", type=float, default=None)
    parser.add_argument("--batch", type=int, default=0, help="extra synthetic tokens to backtest per kind")
    args = parser.parse_args()

    configure_logging("WARNING")
    kinds = list(StrategyKind) if args.kind == "all" else [StrategyKind.parse(args.kind)]

    if args.source == "live":
        tokens = args.tokens or settings.WATCHLIST
        if not tokens:
            parser.error("--source live needs --tokens or a WATCHLIST setting")
        asyncio.run(run_live(kinds, tokens, args))
    else:
        run_synthetic(kinds, args)

if __name__ == "__main__":
    main()
