import math
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

HISTORY = 20
MIN_HISTORY = 5


class ChaosTraderParams(StrategyParams):
    volatility_threshold: float = Field(default=0.005, ge=0.001, le=0.1)
    trade_frequency: int = Field(default=3, ge=1, le=10, description="Min bars between trades")


@dataclass
class ChaosTraderState:
    prices: List[float] = field(default_factory=list)
    bar_count: int = 0
    last_trade_bar: int = 0
    long: bool = False
    last_timestamp: Optional[str] = None


class ChaosTraderStrategy(Strategy):
    """
    Deliberately erratic stress-test strategy.

    Trades on short-term volatility, momentum and a deterministic hash of the
    close price, never more often than every `trade_frequency` bars. Closes
    any open position on stop.
    """

    name = "chaos_trader"
    params_model = ChaosTraderParams
    metadata = StrategyMetadata(
        name="Chaos Trader",
        description="High-frequency erratic trading for stress-testing the engine.",
        tags=["testing", "volatility"],
    )
    state_class = ChaosTraderState

    def on_bar(self, context: StrategyContext, bar: Bar) -> Optional[Signal]:
        state = self.state
        state.bar_count += 1
        state.last_timestamp = bar.timestamp
        state.prices.append(bar.close)
        if len(state.prices) > HISTORY:
            state.prices.pop(0)
        if len(state.prices) < MIN_HISTORY:
            return None

        prices = np.asarray(state.prices, dtype=float)
        returns = np.diff(prices) / prices[:-1]
        volatility = float(returns.std())
        momentum = (bar.close - prices[0]) / prices[0]

        price_hash = math.floor(bar.close * 1000) % 100
        is_volatile = volatility > self.params.volatility_threshold
        if state.bar_count - state.last_trade_bar < self.params.trade_frequency:
            return None

        signal = None
        if not state.long:
            if is_volatile and momentum > 0 and price_hash > 50:
                signal = self.signal("buy", bar, "chaos_entry_long")
            elif price_hash < 20:
                signal = self.signal("buy", bar, "chaos_random_entry")
        elif (is_volatile and momentum < -0.01) or price_hash < 30:
            reason = "chaos_random_exit" if price_hash < 30 else "chaos_volatility_exit"
            signal = self.signal("sell", bar, reason)

        if signal is not None:
            state.long = signal.side == "buy"
            state.last_trade_bar = state.bar_count
        return signal

    def on_stop(self, context: StrategyContext) -> Optional[Signal]:
        if self.state.long and self.state.last_timestamp is not None:
            return Signal(side="sell", timestamp=self.state.last_timestamp, reason="chaos_stop")
        return None
