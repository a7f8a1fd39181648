import asyncio
import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.config import settings
from app.utils.logging_config import configure_logging, logger
from app.cache.redis_client import redis_client
from app.db.models import init_db
from app.db.store import SqlTradeStore
from app.feeds.base import build_feed

configure_logging()

async def check_redis():
    logger.info("--- Checking Redis ---")
    try:
        await redis_client.connect()
        logger.info("✅ Redis reachable (or in-memory fallback active)")
        await redis_client.close()
    except Exception as e:
        logger.error(f"❌ Redis Failed: {e}")

async def check_db():
    logger.info("--- Checking Database ---", url=settings.DATABASE_URL)
    try:
        await init_db()
        store = SqlTradeStore()
        await store.save_bot("verify-setup", "Setup Check", "volume-tracker", {}, 0.0)
        bot = await store.get_bot("verify-setup")
        logger.info("✅ Database OK", bot=bot.id)
    except Exception as e:
        logger.error(f"❌ Database Failed: {e}")

async def check_feed():
    logger.info(f"--- Checking Feed ({settings.DATA_SOURCE}) ---")
    token = settings.WATCHLIST[0] if settings.WATCHLIST else "volume-tracker"
    feed = build_feed()
    if hasattr(feed, "start"):
        await feed.start()
    try:
        sample = await feed.get_current_sample(token)
        logger.info("✅ Feed OK", token=token, price=sample.close, at=sample.timestamp.isoformat())
        candidate = await feed.get_candidate(token)
        logger.info("✅ Candidate OK", symbol=candidate.symbol, market_cap=candidate.market_cap,
                    locked=candidate.liquidity_locked, honeypot=candidate.is_honeypot)
    except Exception as e:
        logger.error(f"❌ Feed Failed: {e}")
    finally:
        if hasattr(feed, "close"):
            await feed.close()

async def main():
    await check_redis()
    await check_db()
    await check_feed()
    logger.info("--- Verification Complete ---")

if __name__ == "__main__":
    asyncio.run(main())
