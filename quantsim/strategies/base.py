from abc import ABC, abstractmethod
from typing import Any, ClassVar, List, Mapping, Optional, Type

from opentelemetry import trace
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from quantsim.core.exceptions import StrategyValidationError
from quantsim.core.models import Bar, Signal, Side


class StrategyContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str


class StrategyMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    version: str = "1.0.0"
    tags: List[str] = Field(default_factory=list)


class StrategyParams(BaseModel):
    """
    Base for strategy parameter schemas. Accepts camelCase keys from request
    payloads; unknown keys (e.g. inline ``bars``) are ignored.
    """

    model_config = ConfigDict(
        populate_by_name=True, alias_generator=to_camel, extra="ignore", frozen=True
    )


class EmptyState:
    """State for strategies that keep no history."""


class Strategy(ABC):
    """Abstract base class for all backtest strategies - enforces the bar callback interface.

    The engine drives every strategy through the same lifecycle:
    1. `on_init(context)` once, before the first bar
    2. `on_bar(context, bar)` per bar, returning a Signal or None
    3. `on_stop(context)` once, after the last processed bar

    **Required Class Attributes**:
    - `name`: registry key
    - `params_model`: pydantic schema validating the request params
    - `metadata`: human readable description
    - `state_class`: zero-argument factory for per-run state

    All mutable history lives on `self.state`, which `on_init` replaces with a
    fresh instance. Strategies never hide state anywhere else.

    Example:
        >>> class AlwaysBuy(Strategy):
        ...     name = "always_buy"
        ...     metadata = StrategyMetadata(name="always_buy", description="Buys.")
        ...     def on_bar(self, context, bar):
        ...         return self.signal("buy", bar, "always")
    """

    name: ClassVar[str]
    params_model: ClassVar[Type[StrategyParams]] = StrategyParams
    metadata: ClassVar[StrategyMetadata]
    state_class: ClassVar[Type[Any]] = EmptyState

    def __init__(self, params: Optional[StrategyParams] = None):
        self.params = params if params is not None else self.params_model()
        self.state = self.state_class()
        self.tracer = trace.get_tracer(f"strategy.{self.name}")

    @classmethod
    def validate_params(cls, raw: Optional[Mapping[str, Any]]) -> StrategyParams:
        try:
            return cls.params_model.model_validate(dict(raw or {}))
        except ValidationError as e:
            fields = [".".join(str(part) for part in err["loc"]) for err in e.errors()]
            details = "; ".join(
                f"{'.'.join(str(part) for part in err['loc']) or 'params'}: {err['msg']}"
                for err in e.errors()
            )
            raise StrategyValidationError(
                cls.name, f"Invalid params for strategy '{cls.name}': {details}", fields
            ) from e

    @classmethod
    def from_params(cls, raw: Optional[Mapping[str, Any]] = None) -> "Strategy":
        return cls(cls.validate_params(raw))

    def on_init(self, context: StrategyContext) -> None:
        self.state = self.state_class()

    @abstractmethod
    def on_bar(self, context: StrategyContext, bar: Bar) -> Optional[Signal]:
        pass

    def on_stop(self, context: StrategyContext) -> Optional[Signal]:
        return None

    @staticmethod
    def signal(
        side: Side, bar: Bar, reason: str, strength: Optional[float] = None
    ) -> Signal:
        return Signal(side=side, timestamp=bar.timestamp, reason=reason, strength=strength)
