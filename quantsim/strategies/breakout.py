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


class BreakoutParams(StrategyParams):
    lookback: int = Field(default=20, ge=1, description="Bars forming the prior range")
    confirm: int = Field(default=1, ge=1, description="Consecutive closes outside the range")


@dataclass
class BreakoutState:
    bars: List[Bar] = field(default_factory=list)
    breakout_streak: int = 0
    breakdown_streak: int = 0


class BreakoutStrategy(Strategy):
    """Donchian-style range breakout with a confirmation streak.

    **Best**: Trending markets | **Worst**: Choppy (false breakouts)
    """

    name = "breakout"
    params_model = BreakoutParams
    metadata = StrategyMetadata(
        name="Breakout",
        description="Range breakout with configurable confirmation.",
        tags=["breakout", "trend"],
    )
    state_class = BreakoutState

    def on_bar(self, context: StrategyContext, bar: Bar) -> Optional[Signal]:
        state = self.state
        lookback = self.params.lookback
        state.bars.append(bar)
        if len(state.bars) <= lookback:
            return None
        # only the window plus the current bar is ever read
        del state.bars[: -(lookback + 1)]

        prior = state.bars[:-1]
        highest_high = max(item.high for item in prior)
        lowest_low = min(item.low for item in prior)

        if bar.close > highest_high:
            state.breakout_streak += 1
            state.breakdown_streak = 0
            if state.breakout_streak >= self.params.confirm:
                streak = state.breakout_streak
                state.breakout_streak = 0
                return self.signal("buy", bar, "price_breakout_above_range", strength=streak)
        elif bar.close < lowest_low:
            state.breakdown_streak += 1
            state.breakout_streak = 0
            if state.breakdown_streak >= self.params.confirm:
                streak = state.breakdown_streak
                state.breakdown_streak = 0
                return self.signal("sell", bar, "price_breakdown_below_range", strength=streak)
        else:
            state.breakout_streak = 0
            state.breakdown_streak = 0
        return None
