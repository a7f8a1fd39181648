from typing import Protocol

from app.engine.models import BuyFill, SellFill


class ExecutionService(Protocol):
    """
    Swap venue. Calls are not idempotent: the engine issues at most one call
    per transition attempt and never retries within a tick.
    Failures raise ExecutionFailure.
    """

    async def submit_buy(self, token: str, quote_amount: float) -> BuyFill:
        ...

    async def submit_sell(self, token: str, units: float) -> SellFill:
        ...
