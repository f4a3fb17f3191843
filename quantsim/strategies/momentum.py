from dataclasses import dataclass, field
from typing import List, Optional

from pydantic import Field

from quantsim.core.models import Bar, Signal
from quantsim.strategies.base import (
    Strategy,
    StrategyContext,
    StrategyMetadata,
    StrategyParams,
)


class MomentumParams(StrategyParams):
    lookback: int = Field(default=14, ge=1, description="Bars in the rate-of-change window")
    threshold: float = Field(default=0.02, ge=0.0, description="Minimum fractional move")


@dataclass
class MomentumState:
    closes: List[float] = field(default_factory=list)


class MomentumStrategy(Strategy):
    """Rate of change over `lookback` bars against a symmetric threshold."""

    name = "momentum"
    params_model = MomentumParams
    metadata = StrategyMetadata(
        name="Momentum",
        description="Breakout strategy triggered by momentum threshold.",
        tags=["momentum"],
    )
    state_class = MomentumState

    def on_bar(self, context: StrategyContext, bar: Bar) -> Optional[Signal]:
        closes = self.state.closes
        closes.append(bar.close)
        if len(closes) <= self.params.lookback:
            return None

        prior = closes[-1 - self.params.lookback]
        if prior == 0:
            return None
        change = (bar.close - prior) / prior

        if change >= self.params.threshold:
            return self.signal("buy", bar, "momentum_positive", strength=change)
        if change <= -self.params.threshold:
            return self.signal("sell", bar, "momentum_negative", strength=abs(change))
        return None
