import itertools

from app.config import settings
from app.engine.errors import ExecutionFailure, FeedUnavailable
from app.engine.models import BuyFill, SellFill
from app.utils.logging_config import logger


class PaperExecutionService:
    """
    Simulated venue: fills at the feed's latest close, charging a flat fee
    on notional. Reads prices through `price_of` so replayed feeds are not
    advanced by execution.
    """

    def __init__(self, price_of, fee_rate: float = None):
        # price_of: async callable token -> float
        self.price_of = price_of
        self.fee_rate = settings.PAPER_FEE_RATE if fee_rate is None else fee_rate
        self._seq = itertools.count(1)

    def _signature(self, side: str, token: str) -> str:
        return f"paper-{side}-{token[:8]}-{next(self._seq)}"

    async def _price(self, token: str) -> float:
        try:
            price = await self.price_of(token)
        except FeedUnavailable as e:
            raise ExecutionFailure("No price to fill against", token=token) from e
        if not price or price <= 0:
            raise ExecutionFailure("Invalid fill price", token=token, price=price)
        return price

    async def submit_buy(self, token: str, quote_amount: float) -> BuyFill:
        if quote_amount <= 0:
            raise ExecutionFailure("Buy amount must be positive", token=token, amount=quote_amount)
        price = await self._price(token)

        fee = quote_amount * self.fee_rate
        units = (quote_amount - fee) / price
        fill = BuyFill(self._signature("buy", token), price, units, quote_amount, fee)
        logger.info("Paper BUY filled", token=token, price=price, units=units, fee=round(fee, 6))
        return fill

    async def submit_sell(self, token: str, units: float) -> SellFill:
        if units <= 0:
            raise ExecutionFailure("Sell size must be positive", token=token, units=units)
        price = await self._price(token)

        gross = units * price
        fee = gross * self.fee_rate
        fill = SellFill(self._signature("sell", token), price, gross - fee, fee)
        logger.info("Paper SELL filled", token=token, price=price, out=round(gross - fee, 6))
        return fill
