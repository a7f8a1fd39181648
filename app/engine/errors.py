"""
Error taxonomy for the trading engine.

Every failure path has a recovered state:
- FeedUnavailable: skip the token this tick, keep prior state
- InsufficientBalance: entry rejected, no transition
- ExecutionFailure: venue rejected the swap, nothing mutated, retried next tick
- PersistenceFailure: durability degraded, in-memory state stays authoritative
- ConfigurationInvalid: update rejected, previous config stays in effect
"""


class EngineError(Exception):
    """Base exception carrying structured context for log output."""

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self):
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx_str}]"
        return self.message


class FeedUnavailable(EngineError):
    """Price/volume data could not be fetched for a token."""
    pass


class InsufficientBalance(EngineError):
    """Requested debit exceeds the available ledger balance."""
    pass


class ExecutionFailure(EngineError):
    """The execution venue rejected or failed a buy/sell."""
    pass


class PersistenceFailure(EngineError):
    """The trade ledger could not record a write."""
    pass


class ConfigurationInvalid(EngineError):
    """A StrategyConfig failed validation."""
    pass
