import importlib.util
import inspect
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Type

from quantsim.core.exceptions import ConfigurationError
from quantsim.core.models import StrategySpec
from quantsim.strategies.base import Strategy
from quantsim.strategies.breakout import BreakoutStrategy
from quantsim.strategies.chaos_trader import ChaosTraderStrategy
from quantsim.strategies.mean_reversion import MeanReversionStrategy
from quantsim.strategies.momentum import MomentumStrategy
from quantsim.strategies.sma_crossover import SmaCrossoverStrategy

logger = logging.getLogger(__name__)

BUILTIN_STRATEGIES: List[Type[Strategy]] = [
    SmaCrossoverStrategy,
    MomentumStrategy,
    MeanReversionStrategy,
    BreakoutStrategy,
    ChaosTraderStrategy,
]


class StrategyRegistry:
    """
    Name -> Strategy class lookup, built once and handed to the engine.
    """

    def __init__(self, strategies: Iterable[Type[Strategy]] = ()):
        self._strategies: Dict[str, Type[Strategy]] = {}
        for strategy_cls in strategies:
            self.register(strategy_cls)

    def register(self, strategy_cls: Type[Strategy]) -> None:
        if strategy_cls.name in self._strategies:
            logger.info(f"Overriding strategy '{strategy_cls.name}'")
        self._strategies[strategy_cls.name] = strategy_cls

    def get(self, name: str) -> Type[Strategy]:
        try:
            return self._strategies[name]
        except KeyError:
            available = ", ".join(sorted(self._strategies)) or "none"
            raise ConfigurationError(
                f'Unknown strategy "{name}" (available: {available})'
            ) from None

    def create(self, spec: StrategySpec) -> Strategy:
        """Resolve and instantiate with validated params."""
        return self.get(spec.name).from_params(spec.params)

    def names(self) -> List[str]:
        return sorted(self._strategies)

    def __contains__(self, name: str) -> bool:
        return name in self._strategies

    def load_custom(self, directory: Path) -> List[str]:
        """
        Import every ``*.py`` in ``directory`` and register the Strategy
        subclass each module exports as ``STRATEGY``. Broken modules are
        logged and skipped.
        """
        directory = Path(directory)
        if not directory.is_dir():
            logger.debug(f"No custom strategies directory at {directory}")
            return []

        loaded = []
        for path in sorted(directory.glob("*.py")):
            if path.name.startswith("_") or path.name.startswith("test_"):
                continue
            strategy_cls = self._import_strategy(path)
            if strategy_cls is None:
                continue
            self.register(strategy_cls)
            loaded.append(strategy_cls.name)
            logger.info(f"Loaded custom strategy: {strategy_cls.name} ({path.name})")
        return loaded

    @staticmethod
    def _import_strategy(path: Path) -> Optional[Type[Strategy]]:
        module_name = f"quantsim_custom_{path.stem.replace('-', '_')}"
        try:
            spec = importlib.util.spec_from_file_location(module_name, path)
            if spec is None or spec.loader is None:
                logger.warning(f"Skipping {path.name}: not importable")
                return None
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)
        except Exception as e:
            logger.error(f"Failed to load strategy from {path.name}: {e}")
            return None

        strategy_cls = getattr(module, "STRATEGY", None)
        if not (
            inspect.isclass(strategy_cls)
            and issubclass(strategy_cls, Strategy)
            and not inspect.isabstract(strategy_cls)
            and isinstance(getattr(strategy_cls, "name", None), str)
        ):
            logger.warning(f"Skipping {path.name}: missing a concrete STRATEGY export")
            return None
        return strategy_cls


def default_registry(custom_dir: Optional[Path] = None) -> StrategyRegistry:
    """Built-in strategies plus, when given, the custom strategies directory."""
    registry = StrategyRegistry(BUILTIN_STRATEGIES)
    if custom_dir is not None:
        registry.load_custom(custom_dir)
    return registry
