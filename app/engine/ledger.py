from app.engine.errors import InsufficientBalance
from app.utils.logging_config import logger


class CapitalLedger:
    """
    Available quote balance for one bot instance.
    Only the PositionManager (or the backtest engine) mutates it.
    """

    def __init__(self, bot_id: str, balance: float):
        if balance < 0:
            raise InsufficientBalance("Initial balance cannot be negative", bot_id=bot_id, balance=balance)
        self.bot_id = bot_id
        self.balance = balance
        self.initial_balance = balance
        self.realized_pnl = 0.0

    def size_entry(self, risk_percentage: float) -> float:
        return self.balance * (risk_percentage / 100)

    def can_afford(self, amount: float) -> bool:
        return 0 < amount <= self.balance

    def debit(self, amount: float) -> float:
        # Rejected outright, never partially filled
        if not self.can_afford(amount):
            raise InsufficientBalance(
                "Entry exceeds available balance",
                bot_id=self.bot_id,
                requested=round(amount, 8),
                available=round(self.balance, 8),
            )
        self.balance -= amount
        return self.balance

    def credit(self, amount: float, profit: float = 0.0) -> float:
        self.balance += amount
        self.realized_pnl += profit
        logger.debug("Ledger credit", bot_id=self.bot_id, amount=amount, balance=self.balance)
        return self.balance

    def snapshot(self) -> dict:
        return {
            "balance": self.balance,
            "initial_balance": self.initial_balance,
            "realized_pnl": self.realized_pnl,
            "roi_pct": ((self.balance - self.initial_balance) / self.initial_balance * 100)
            if self.initial_balance else 0.0,
        }
