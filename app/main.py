import asyncio
from app.config import settings
from app.utils.logging_config import configure_logging, logger
from app.cache.redis_client import redis_client
from app.db.models import init_db
from app.db.store import SqlTradeStore
from app.feeds.base import build_feed
from app.bots import BotRuntime

async def main():
    # 1. Config & Logging
    configure_logging()
    logger.info("Starting Strategy Engine", env=settings.ENV, data_source=settings.DATA_SOURCE)

    # 2. Infrastructure Init
    await redis_client.connect()
    await init_db()

    live_feed = None
    if settings.DATA_SOURCE.lower() == "live":
        # One shared HTTP session for every bot
        live_feed = build_feed("live")
        await live_feed.start()
        feed_factory = lambda: live_feed
    else:
        feed_factory = build_feed

    runtime = BotRuntime(feed_factory=feed_factory, store=SqlTradeStore())

    # 3. One bot per configured kind
    for kind in settings.BOT_KINDS:
        bot = await runtime.create_bot(kind)
        await runtime.activate(bot.bot_id)

    if not runtime.watchlist:
        logger.warning("WATCHLIST is empty, bots will only manage existing positions")

    # 4. Run until interrupted
    try:
        await asyncio.Event().wait()
    except asyncio.CancelledError:
        logger.info("Stopping...")
    finally:
        await runtime.shutdown()
        if live_feed:
            await live_feed.close()
        await redis_client.close()

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
