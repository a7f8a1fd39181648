from dataclasses import dataclass

from app.engine.models import BuyFill, SellFill


@dataclass(frozen=True)
class FeeFillModel:
    """
    Deterministic venue for replays: fills at the sample close with a flat
    fee on notional, taken before conversion on buys and from proceeds on
    sells.
    """
    fee_rate: float = 0.01
    invest_fraction: float = 0.95

    def buy(self, cash: float, price: float, seq: int) -> BuyFill:
        spend = cash * self.invest_fraction
        fee = spend * self.fee_rate
        return BuyFill(f"bt-buy-{seq}", price, (spend - fee) / price, spend, fee)

    def sell(self, units: float, price: float, seq: int) -> SellFill:
        gross = units * price
        fee = gross * self.fee_rate
        return SellFill(f"bt-sell-{seq}", price, gross - fee, fee)
