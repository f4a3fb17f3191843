from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
from pydantic import Field

from quantsim.core.models import Bar, Signal
from quantsim.strategies.base import (
    Strategy,
    StrategyContext,
    StrategyMetadata,
    StrategyParams,
)


class MeanReversionParams(StrategyParams):
    lookback: int = Field(default=20, ge=2, description="Window for the z-score")
    z_score: float = Field(default=2.0, gt=0.0, description="Entry/exit threshold in std devs")


@dataclass
class MeanReversionState:
    closes: List[float] = field(default_factory=list)


class MeanReversionStrategy(Strategy):
    """
    Z-score mean reversion.

    Logic:
    - Buy if close is `z_score` population std devs below the rolling mean
    - Sell if it is `z_score` above
    - Neutral otherwise, or when the window is flat
    """

    name = "mean_reversion"
    params_model = MeanReversionParams
    metadata = StrategyMetadata(
        name="Mean Reversion",
        description="Buys oversold conditions and sells overbought extremes.",
        tags=["mean-reversion", "statistical"],
    )
    state_class = MeanReversionState

    def on_bar(self, context: StrategyContext, bar: Bar) -> Optional[Signal]:
        closes = self.state.closes
        closes.append(bar.close)
        if len(closes) < self.params.lookback:
            return None

        with self.tracer.start_as_current_span("calculate_signal") as span:
            window = np.asarray(closes[-self.params.lookback :], dtype=float)
            std = float(window.std())
            if std == 0:
                return None
            z = (bar.close - float(window.mean())) / std
            span.set_attribute("mr.z", z)

            if z <= -self.params.z_score:
                return self.signal("buy", bar, "price_below_z_threshold", strength=abs(z))
            if z >= self.params.z_score:
                return self.signal("sell", bar, "price_above_z_threshold", strength=abs(z))
            return None
