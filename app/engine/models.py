from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from app.engine.errors import EngineError

# Remainders below this share of the position are closed, not kept
DUST_FRACTION = 1e-9


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"


class ExitReason(str, Enum):
    # Declaration order is the evaluation priority
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    PARTIAL_TAKE_PROFIT = "partial_take_profit"
    TIME_EXIT = "time_exit"
    END_OF_DATA = "end_of_data"  # backtest force-close only

    @property
    def is_full_exit(self) -> bool:
        return self is not ExitReason.PARTIAL_TAKE_PROFIT


@dataclass(frozen=True)
class TokenCandidate:
    address: str
    symbol: str
    launch_time: datetime
    market_cap: float
    volume_24h: float
    liquidity_locked: bool = False
    is_honeypot: bool = False
    price: float = 0.0


@dataclass(frozen=True)
class Sample:
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    @classmethod
    def flat(cls, timestamp: datetime, price: float, volume: float = 0.0) -> "Sample":
        """Snapshot sample where only one price is known."""
        return cls(timestamp, price, price, price, price, volume)


@dataclass
class Position:
    bot_id: str
    token: str
    entry_price: float
    size: float # units of the asset
    stop_loss: float
    take_profit: float
    entry_time: datetime
    cost_basis: float # quote spent (fee included) attributable to the remaining size
    partial_taken: bool = False
    opened_seq: int = 0

    def __post_init__(self):
        if self.size <= 0:
            raise EngineError("Position size must be positive", token=self.token, size=self.size)
        if not (self.stop_loss < self.entry_price < self.take_profit):
            raise EngineError(
                "Inconsistent exit levels",
                token=self.token,
                stop_loss=self.stop_loss,
                entry=self.entry_price,
                take_profit=self.take_profit,
            )

    def current_value(self, current_price: float) -> float:
        return self.size * current_price

    def cost_of(self, units: float) -> float:
        """Cost basis share of `units` out of the current size."""
        return self.cost_basis * (units / self.size)

    def units_for(self, reason: ExitReason, partial_fraction_pct: float) -> float:
        if reason.is_full_exit:
            return self.size
        return self.size * (partial_fraction_pct / 100)

    def apply_sell(self, units: float, reason: ExitReason) -> Tuple[float, bool]:
        """
        Book a filled sell of `units` against this position.

        Returns the cost basis released and whether the position is now
        closed. A partial that leaves only dust closes the position; otherwise
        size and cost basis shrink and the partial is marked as taken.
        """
        cost = self.cost_of(units)
        remaining = self.size - units
        if reason.is_full_exit or remaining <= self.size * DUST_FRACTION:
            return cost, True
        self.size = remaining
        self.cost_basis -= cost
        self.partial_taken = True
        return cost, False


@dataclass(frozen=True)
class TradeAction:
    bot_id: str
    token: str
    timestamp: datetime
    side: Side
    price: float
    size: float
    value: float # quote realized: spent net of fee (buy) / received net of fee (sell)
    fee: float
    profit: float = 0.0
    reason: Optional[ExitReason] = None
    signature: str = ""

    def to_dict(self) -> dict:
        return {
            "bot_id": self.bot_id,
            "token": self.token,
            "timestamp": self.timestamp.isoformat(),
            "side": self.side.value,
            "price": self.price,
            "size": self.size,
            "value": self.value,
            "fee": self.fee,
            "profit": self.profit,
            "reason": self.reason.value if self.reason else None,
            "signature": self.signature,
        }


@dataclass(frozen=True)
class BuyFill:
    signature: str
    filled_price: float
    filled_units: float
    quote_spent: float
    fee: float = 0.0


@dataclass(frozen=True)
class SellFill:
    signature: str
    filled_price: float
    quote_amount_out: float
    fee: float = 0.0
