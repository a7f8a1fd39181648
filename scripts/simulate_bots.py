import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import argparse
import asyncio

from app.bots import BotRuntime
from app.feeds.synthetic import SyntheticFeed
from app.scheduler import BotScheduler
from app.utils.logging_config import configure_logging

async def run(kinds, ticks: int, watchlist):
    # Fast loop over replayed synthetic data, no persistence
    runtime = BotRuntime(
        feed_factory=SyntheticFeed,
        scheduler=BotScheduler(poll_interval=0.01, tick_budget=5),
        watchlist=watchlist,
    )
    bots = [await runtime.create_bot(kind) for kind in kinds]
    for bot in bots:
        await runtime.activate(bot.bot_id)

    while min(runtime.scheduler.ticks.get(b.bot_id, 0) for b in bots) < ticks:
        await asyncio.sleep(0.05)
    await runtime.shutdown()

    print("\n" + "="*40)
    for bot in bots:
        snap = bot.ledger.snapshot()
        print(f"{bot.name:18} balance ${snap['balance']:.2f} | realized ${snap['realized_pnl']:.2f} "
              f"| open positions {len(bot.manager.positions)}")
    print("="*40)

def main():
    parser = argparse.ArgumentParser(description="Run live bot loops against synthetic data")
    parser.add_argument("--kinds", nargs="+", default=["volume-tracker", "trend-surfer", "dip-hunter"])
    parser.add_argument("--ticks", type=int, default=200)
    parser.add_argument("--tokens", nargs="+", default=["volume-tracker", "trend-surfer", "dip-hunter"])
    args = parser.parse_args()

    configure_logging()
    asyncio.run(run(args.kinds, args.ticks, args.tokens))

if __name__ == "__main__":
    main()
