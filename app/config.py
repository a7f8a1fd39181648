from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional

class Settings(BaseSettings):
    # General
    LOG_LEVEL: str = "INFO"
    ENV: str = "development"

    # Redis (historical series cache)
    REDIS_URL: str = "redis://localhost:6379/0"
    SERIES_CACHE_TTL: int = 900 # seconds

    # Ledger / Persistence
    DATABASE_URL: str = "sqlite+aiosqlite:///trading_bots.db"

    # Market Data
    DATA_SOURCE: str = "synthetic" # 'live' or 'synthetic'
    DEXSCREENER_API_URL: str = "https://api.dexscreener.com/latest/dex"
    BIRDEYE_API_URL: str = "https://public-api.birdeye.so"
    BIRDEYE_API_KEY: Optional[str] = None
    SYNTHETIC_START: str = "2024-01-01"
    HISTORY_DAYS: int = 1
    HISTORY_INTERVAL_MINUTES: int = 15

    # Live Loop
    POLL_INTERVAL_SECONDS: float = 60.0
    TICK_BUDGET_SECONDS: float = 45.0
    PAPER_FEE_RATE: float = 0.01
    BOT_INITIAL_BALANCE: float = 100.0
    BOT_KINDS: List[str] = ["volume-tracker", "trend-surfer", "dip-hunter"]
    WATCHLIST: List[str] = []

    # Backtest
    BACKTEST_INITIAL_CAPITAL: float = 100.0
    BACKTEST_FEE_RATE: float = 0.01
    BACKTEST_INVEST_FRACTION: float = 0.95

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

settings = Settings()
