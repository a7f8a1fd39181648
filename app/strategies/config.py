from datetime import timedelta
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from app.engine.errors import ConfigurationInvalid


class StrategyKind(str, Enum):
    VOLUME_TRACKER = "volume-tracker"
    TREND_SURFER = "trend-surfer"
    DIP_HUNTER = "dip-hunter"
    NEW_TOKEN_HUNTER = "new-token-hunter"

    @classmethod
    def parse(cls, value: str) -> "StrategyKind":
        key = value.strip().lower()
        return cls(ALIASES.get(key, key))


# Legacy bot ids still seen in stored configs
ALIASES = {
    "vol-tracker": "volume-tracker",
    "momentum-bot": "trend-surfer",
    "arb-finder": "dip-hunter",
}


class StrategyConfig(BaseModel):
    """
    Per-bot-instance parameters. Immutable: reconfiguration builds a new
    validated instance, the engine never edits one in place.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    risk_percentage: float = 15.0
    max_token_age_hours: float = 24.0
    min_market_cap: float = 100_000.0
    min_volume_ratio: float = 0.05
    stop_loss_pct: float = 10.0
    take_profit_pct: float = 20.0
    partial_take_profit_pct: Optional[float] = None # None = no partial exits
    partial_take_profit_fraction: float = 50.0 # % of current size sold on partial
    max_holding: Optional[timedelta] = timedelta(hours=24)
    max_positions: int = 3

    @model_validator(mode="after")
    def _check_ranges(self):
        if not 0 < self.stop_loss_pct < 100:
            raise ValueError(f"stop_loss_pct must be in (0, 100), got {self.stop_loss_pct}")
        if self.take_profit_pct <= 0:
            raise ValueError(f"take_profit_pct must be positive, got {self.take_profit_pct}")
        if not 0 < self.risk_percentage <= 100:
            raise ValueError(f"risk_percentage must be in (0, 100], got {self.risk_percentage}")
        if self.max_positions <= 0:
            raise ValueError(f"max_positions must be positive, got {self.max_positions}")
        if not 0 < self.partial_take_profit_fraction <= 100:
            raise ValueError("partial_take_profit_fraction must be in (0, 100]")
        if self.partial_take_profit_pct is not None:
            if not 0 < self.partial_take_profit_pct < self.take_profit_pct:
                raise ValueError("partial_take_profit_pct must be positive and below take_profit_pct")
        if self.max_holding is not None and self.max_holding <= timedelta(0):
            raise ValueError("max_holding must be positive")
        if self.min_volume_ratio < 0 or self.min_market_cap < 0 or self.max_token_age_hours <= 0:
            raise ValueError("candidate thresholds must be non-negative")
        return self

    @classmethod
    def build(cls, **fields) -> "StrategyConfig":
        try:
            return cls(**fields)
        except ValidationError as e:
            raise ConfigurationInvalid("Invalid strategy config", errors=_summarize(e)) from e

    @classmethod
    def for_kind(cls, kind: StrategyKind, **overrides) -> "StrategyConfig":
        fields = dict(KIND_DEFAULTS[kind])
        fields.update(overrides)
        return cls.build(**fields)

    def updated(self, **changes) -> "StrategyConfig":
        """Validated copy with `changes` applied. Raises ConfigurationInvalid."""
        fields = self.model_dump()
        fields.update(changes)
        return StrategyConfig.build(**fields)


def _summarize(e: ValidationError) -> str:
    return "; ".join(err["msg"] for err in e.errors())


KIND_DEFAULTS: Dict[StrategyKind, Dict[str, Any]] = {
    # 96 x 15min intervals ~ 24h
    StrategyKind.VOLUME_TRACKER: {
        "stop_loss_pct": 10.0,
        "take_profit_pct": 20.0,
        "max_holding": timedelta(hours=24),
    },
    StrategyKind.TREND_SURFER: {
        "stop_loss_pct": 15.0,
        "take_profit_pct": 20.0,
        "max_holding": timedelta(hours=24),
    },
    # 4 x 15min intervals
    StrategyKind.DIP_HUNTER: {
        "stop_loss_pct": 10.0,
        "take_profit_pct": 20.0,
        "max_holding": timedelta(hours=1),
    },
    StrategyKind.NEW_TOKEN_HUNTER: {
        "risk_percentage": 10.0,
        "max_token_age_hours": 24.0,
        "min_market_cap": 100_000.0,
        "min_volume_ratio": 0.05,
        "stop_loss_pct": 40.0,
        "take_profit_pct": 200.0,
        "partial_take_profit_pct": 100.0,
        "partial_take_profit_fraction": 50.0,
        "max_holding": timedelta(days=2),
    },
}
