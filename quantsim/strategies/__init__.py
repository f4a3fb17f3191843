"""
Strategy plugins for the backtest engine.

Built-ins are registered through `default_registry()`; user strategies are
discovered from a directory of modules exporting `STRATEGY`.
"""

from .base import Strategy, StrategyContext, StrategyMetadata, StrategyParams
from .breakout import BreakoutStrategy
from .chaos_trader import ChaosTraderStrategy
from .mean_reversion import MeanReversionStrategy
from .momentum import MomentumStrategy
from .registry import BUILTIN_STRATEGIES, StrategyRegistry, default_registry
from .sma_crossover import SmaCrossoverStrategy

__all__ = [
    "Strategy",
    "StrategyContext",
    "StrategyMetadata",
    "StrategyParams",
    "StrategyRegistry",
    "default_registry",
    "BUILTIN_STRATEGIES",
    "SmaCrossoverStrategy",
    "MomentumStrategy",
    "MeanReversionStrategy",
    "BreakoutStrategy",
    "ChaosTraderStrategy",
]
