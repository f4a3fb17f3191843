from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Schema(BaseModel):
    """Accepts both camelCase (wire) and snake_case (Python) field names."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


Side = Literal["buy", "sell"]
SourceName = Literal["auto", "csv", "tiingo", "polygon"]
Timeframe = Literal["1d", "1h", "15m", "1m"]


class Bar(BaseModel):
    """
    One OHLCV observation. Numeric fields must be finite.
    """

    model_config = ConfigDict(frozen=True, allow_inf_nan=False, strict=True)

    timestamp: str = Field(..., description="ISO-8601 timestamp")
    open: float
    high: float
    low: float
    close: float
    volume: float


class DataRequest(_Schema):
    source: SourceName = Field(default="auto", description="Where to load bars from")
    symbol: str = Field(..., min_length=1, description="Ticker Symbol")
    timeframe: Timeframe = Field(..., description="Bar size")
    start: Optional[str] = Field(default=None, description="Inclusive start date")
    end: Optional[str] = Field(default=None, description="Inclusive end date")
    adjusted: bool = Field(default=True, description="Split/dividend adjusted prices")


class RiskProfile(_Schema):
    id: str = "default"
    name: str = "default-guardrails"
    max_daily_loss_pct: float = Field(default=0.03, ge=0.0, le=1.0)
    max_position_pct: float = Field(default=0.2, ge=0.0, le=1.0)
    per_order_cap_pct: float = Field(default=0.1, ge=0.0, le=1.0)
    global_dd_kill_pct: float = Field(
        default=0.05, ge=0.0, le=1.0, alias="globalDDKillPct"
    )
    cooldown_minutes: int = Field(default=15, ge=0)


DEFAULT_RISK_PROFILE = RiskProfile()


class CostModel(_Schema):
    fee_bps: float = Field(default=0.0, ge=0.0)
    slippage_bps: float = Field(default=0.0, ge=0.0)


class StrategySpec(_Schema):
    name: str = Field(..., min_length=1)
    params: Dict[str, Any] = Field(default_factory=dict)


class BacktestRequest(_Schema):
    run_name: str = Field(..., min_length=1)
    data: List[DataRequest] = Field(..., min_length=1)
    strategy: StrategySpec
    costs: CostModel = Field(default_factory=CostModel)
    initial_cash: float = Field(..., gt=0.0, allow_inf_nan=False)
    seed: Optional[int] = None
    metrics: Optional[List[str]] = None


class Signal(BaseModel):
    """
    Strategy output for a single bar.
    """

    side: Side
    timestamp: str
    reason: str
    strength: Optional[float] = None


class TradeFill(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    symbol: str
    side: Side
    quantity: int
    price: float
    timestamp: str
    pnl: float = Field(..., description="0 for opening fills, realized P&L on closes")
    fees: float
    reason: str


class EquityPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: str
    equity: float


class RunArtifacts(_Schema):
    model_config = ConfigDict(frozen=True)

    equity_parquet: str
    trades_parquet: str
    bars_parquet: str
    report_md: str


class EngineDiagnostics(_Schema):
    model_config = ConfigDict(frozen=True)

    seed: int
    processed_bars: int
    equity_curve: List[EquityPoint]
    trades: List[TradeFill]
    requested_metrics: List[str]
    run_name: str
    risk_profile_id: str
    stopped_early: bool = False
    stop_reason: Optional[str] = None
    notes: str = ""


class BacktestResult(_Schema):
    model_config = ConfigDict(frozen=True)

    run_id: str
    summary: Dict[str, float]
    artifacts: RunArtifacts
    diagnostics: EngineDiagnostics
