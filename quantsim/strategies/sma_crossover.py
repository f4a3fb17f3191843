from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
from pydantic import Field, ValidationInfo, field_validator

from quantsim.core.models import Bar, Signal
from quantsim.strategies.base import (
    Strategy,
    StrategyContext,
    StrategyMetadata,
    StrategyParams,
)


class SmaCrossoverParams(StrategyParams):
    fast_length: int = Field(default=5, ge=1, description="Short-term SMA window size")
    slow_length: int = Field(default=15, ge=2, description="Long-term SMA window size")

    @field_validator("slow_length")
    @classmethod
    def check_ordering(cls, v: int, info: ValidationInfo) -> int:
        fast = info.data.get("fast_length")
        if fast is not None and fast >= v:
            raise ValueError("fastLength must be less than slowLength")
        return v


@dataclass
class SmaCrossoverState:
    closes: List[float] = field(default_factory=list)
    prev_fast: Optional[float] = None
    prev_slow: Optional[float] = None


class SmaCrossoverStrategy(Strategy):
    """
    Trend-following crossover.

    Logic:
    - Buy when the fast SMA crosses above the slow SMA
    - Sell when it crosses back below
    - No signal until the slow window is full and one prior reading exists
    """

    name = "sma_crossover"
    params_model = SmaCrossoverParams
    metadata = StrategyMetadata(
        name="SMA Crossover",
        description="Trend-following crossover with fast/slow moving averages.",
        tags=["trend", "moving-average"],
    )
    state_class = SmaCrossoverState

    def on_bar(self, context: StrategyContext, bar: Bar) -> Optional[Signal]:
        state = self.state
        params = self.params
        state.closes.append(bar.close)
        if len(state.closes) > params.slow_length:
            state.closes.pop(0)
        if len(state.closes) < params.slow_length:
            return None

        with self.tracer.start_as_current_span("calculate_signal") as span:
            fast_avg = float(np.mean(state.closes[-params.fast_length :]))
            slow_avg = float(np.mean(state.closes))
            span.set_attribute("sma.fast", fast_avg)
            span.set_attribute("sma.slow", slow_avg)

            signal = None
            if state.prev_fast is not None and state.prev_slow is not None:
                if state.prev_fast <= state.prev_slow and fast_avg > slow_avg:
                    signal = self.signal("buy", bar, "fast_sma_crossed_above_slow")
                elif state.prev_fast >= state.prev_slow and fast_avg < slow_avg:
                    signal = self.signal("sell", bar, "fast_sma_crossed_below_slow")

        state.prev_fast = fast_avg
        state.prev_slow = slow_avg
        return signal
