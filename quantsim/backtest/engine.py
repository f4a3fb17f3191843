import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from opentelemetry import trace
from pydantic import ValidationError

from quantsim.backtest.artifacts import (
    ArtifactWriter,
    artifact_paths,
    bar_rows,
    equity_rows,
    report_payload,
    trade_rows,
)
from quantsim.backtest.portfolio import Portfolio, RiskLimits, resolve_risk_limits
from quantsim.backtest.reporting import PerformanceReporter, normalise_metrics
from quantsim.core.config import settings
from quantsim.core.exceptions import ConfigurationError, DataUnavailableError
from quantsim.core.models import (
    DEFAULT_RISK_PROFILE,
    BacktestRequest,
    BacktestResult,
    Bar,
    EngineDiagnostics,
    EquityPoint,
    RiskProfile,
    TradeFill,
)
from quantsim.data.aggregator import DataAggregator
from quantsim.data.csv_source import CsvSource
from quantsim.data.utils import dedupe_bars, sanitize_bars, slugify
from quantsim.strategies.base import Strategy, StrategyContext
from quantsim.strategies.registry import StrategyRegistry, default_registry

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_SEED = 42
RUN_NOTES = "Deterministic single-symbol run"

BarsBySymbol = Dict[str, List[Bar]]


class EngineState(str, Enum):
    INIT = "init"
    LOADING = "loading"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class RunLifecycle:
    """State of a single run. Created per call so runs never share it."""

    run_id: str
    state: EngineState = EngineState.INIT
    history: List[EngineState] = field(default_factory=lambda: [EngineState.INIT])

    def advance(self, state: EngineState) -> None:
        logger.debug(f"Run {self.run_id}: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)


@dataclass
class SimulationOutcome:
    equity_curve: List[EquityPoint] = field(default_factory=list)
    trades: List[TradeFill] = field(default_factory=list)
    stopped_early: bool = False
    stop_reason: Optional[str] = None

    @property
    def processed_bars(self) -> int:
        return len(self.equity_curve)


def _to_base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if value == 0:
        return "0"
    sign = "-" if value < 0 else ""
    value = abs(value)
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(digits[rem])
    return sign + "".join(reversed(out))


def make_run_id(run_name: str, seed: int, now: datetime) -> str:
    """``<run-name-slug>-<UTC yyyymmddHHMMSS>-<seed in base 36>``."""
    slug = re.sub(r"[^a-z0-9]+", "-", run_name.lower()).strip("-") or "run"
    stamp = now.astimezone(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"{slug}-{stamp}-{_to_base36(seed)}"


def extract_inline_bars(request: BacktestRequest) -> BarsBySymbol:
    """
    Bars embedded in ``strategy.params`` under ``bars`` (or ``__bars``):
    either a list for the primary symbol or a symbol -> list mapping.
    """
    params = request.strategy.params
    raw = params.get("bars", params.get("__bars"))

    if isinstance(raw, Mapping):
        if all(isinstance(bars, list) for bars in raw.values()):
            return {str(symbol): dedupe_bars(sanitize_bars(bars)) for symbol, bars in raw.items()}
        return {}

    if isinstance(raw, list):
        return {request.data[0].symbol: dedupe_bars(sanitize_bars(raw))}

    return {}


class BacktestEngine:
    """
    Deterministic bar-by-bar simulator: INIT -> LOADING -> RUNNING -> STOPPED.

    Collaborators are injected so one engine can serve many runs:
    - registry: strategy name -> class
    - aggregator: local/vendor bar resolution
    - artifact_writer: optional persistence of tables and report
    - clock: UTC now, only used for generated run ids

    Run state lives in a RunLifecycle created per call, not on the engine.

    Risk breaches end the run early and are reported in diagnostics, never
    raised. Once stopped, no later bar is marked to market.

    Example:
        engine = BacktestEngine(registry=default_registry())
        result = engine.run(request, risk_profile=profile)
    """

    def __init__(
        self,
        registry: Optional[StrategyRegistry] = None,
        aggregator: Optional[DataAggregator] = None,
        artifact_writer: Optional[ArtifactWriter] = None,
        runs_dir: Optional[Path] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.registry = registry or default_registry(settings.CUSTOM_STRATEGIES_DIR)
        self.aggregator = aggregator or DataAggregator()
        self.artifact_writer = artifact_writer
        self.runs_dir = Path(runs_dir or settings.RUNS_DIR)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @tracer.start_as_current_span("backtest_run")
    def run(
        self,
        request: Union[BacktestRequest, Mapping[str, Any]],
        risk_profile: Optional[RiskProfile] = None,
        run_id: Optional[str] = None,
    ) -> BacktestResult:
        span = trace.get_current_span()

        request = self._validate(request)
        strategy = self.registry.create(request.strategy)
        profile = risk_profile or DEFAULT_RISK_PROFILE
        limits = resolve_risk_limits(profile)
        seed = request.seed if request.seed is not None else DEFAULT_SEED
        metrics = normalise_metrics(request.metrics)
        run_id = run_id or make_run_id(request.run_name, seed, self.clock())
        lifecycle = RunLifecycle(run_id)

        span.set_attribute("backtest.run_id", run_id)
        span.set_attribute("backtest.strategy", request.strategy.name)

        lifecycle.advance(EngineState.LOADING)
        bars_by_symbol = self._load_bars(request)
        primary = request.data[0]
        primary_bars = bars_by_symbol.get(primary.symbol, [])
        if not primary_bars:
            raise DataUnavailableError(
                f"No bars loaded for {primary.symbol} {primary.timeframe} "
                f"({primary.start} to {primary.end}). Please ensure the data file exists at "
                f"{self._expected_dataset_path(primary.symbol, primary.timeframe)}"
            )

        lifecycle.advance(EngineState.RUNNING)
        logger.info(
            f"Starting backtest {run_id}: {request.strategy.name} on {primary.symbol} "
            f"({len(primary_bars)} bars)"
        )
        start_time = time.time()
        outcome = self._simulate(primary_bars, strategy, request, limits)
        lifecycle.advance(EngineState.STOPPED)

        elapsed = time.time() - start_time
        logger.info(
            f"Backtest {run_id} finished in {elapsed:.2f}s: {outcome.processed_bars} bars, "
            f"{len(outcome.trades)} fills"
            + (f", stopped early ({outcome.stop_reason})" if outcome.stopped_early else "")
        )
        span.set_attribute("backtest.processed_bars", outcome.processed_bars)
        span.set_attribute("backtest.stopped_early", outcome.stopped_early)

        reporter = PerformanceReporter(outcome.equity_curve, outcome.trades, request.initial_cash)
        summary = reporter.calculate_metrics(metrics)

        artifacts = artifact_paths(run_id)
        if self.artifact_writer is not None:
            series = [bar for dr in request.data for bar in bars_by_symbol.get(dr.symbol, [])]
            run_dir = self.runs_dir / run_id
            self.artifact_writer.write_tables(
                run_dir,
                equity_rows(outcome.equity_curve),
                trade_rows(outcome.trades),
                bar_rows(series),
            )
            self.artifact_writer.write_report(
                run_dir, report_payload(request.run_name, summary, outcome.trades, profile)
            )

        diagnostics = EngineDiagnostics(
            seed=seed,
            processed_bars=outcome.processed_bars,
            equity_curve=outcome.equity_curve,
            trades=outcome.trades,
            requested_metrics=metrics,
            run_name=request.run_name,
            risk_profile_id=profile.id,
            stopped_early=outcome.stopped_early,
            stop_reason=outcome.stop_reason,
            notes=RUN_NOTES,
        )
        return BacktestResult(
            run_id=run_id, summary=summary, artifacts=artifacts, diagnostics=diagnostics
        )

    @staticmethod
    def _validate(request: Union[BacktestRequest, Mapping[str, Any]]) -> BacktestRequest:
        if isinstance(request, BacktestRequest):
            return request
        try:
            return BacktestRequest.model_validate(request)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid BacktestRequest: {e}") from e

    @tracer.start_as_current_span("backtest_load_bars")
    def _load_bars(self, request: BacktestRequest) -> BarsBySymbol:
        bars = extract_inline_bars(request)
        for data_request in request.data:
            loaded = self.aggregator.load_bars(data_request)
            if loaded:
                bars[data_request.symbol] = loaded
            else:
                bars.setdefault(data_request.symbol, [])
        return bars

    def _expected_dataset_path(self, symbol: str, timeframe: str) -> Path:
        csv = self.aggregator.csv
        if isinstance(csv, CsvSource):
            return csv.dataset_path(symbol, timeframe)
        return settings.DATASETS_DIR / f"{slugify(symbol)}_{slugify(timeframe)}.csv"

    def _simulate(
        self,
        bars: List[Bar],
        strategy: Strategy,
        request: BacktestRequest,
        limits: RiskLimits,
    ) -> SimulationOutcome:
        symbol = request.data[0].symbol
        context = StrategyContext(symbol=symbol)
        portfolio = Portfolio(symbol, request.initial_cash, limits, request.costs)
        outcome = SimulationOutcome(trades=portfolio.trades)
        peak = request.initial_cash
        loss_floor = request.initial_cash * (1 - limits.max_daily_loss_pct)

        strategy.on_init(context)
        last_bar: Optional[Bar] = None
        for bar in bars:
            last_bar = bar
            signal = strategy.on_bar(context, bar)
            equity_before = portfolio.equity(bar.close)
            if signal is not None:
                portfolio.execute_signal(
                    signal.side, signal.reason, bar.timestamp, bar.close, equity_before
                )

            equity = portfolio.equity(bar.close)
            outcome.equity_curve.append(EquityPoint(timestamp=bar.timestamp, equity=equity))
            peak = max(peak, equity)

            drawdown = (peak - equity) / peak if peak > 0 else 0.0
            if drawdown >= limits.kill_switch_drawdown_pct:
                outcome.stopped_early = True
                outcome.stop_reason = (
                    f"kill_switch: drawdown {drawdown:.2%} at {bar.timestamp} "
                    f">= {limits.kill_switch_drawdown_pct:.2%}"
                )
                break
            if equity < loss_floor:
                outcome.stopped_early = True
                outcome.stop_reason = (
                    f"daily_loss: equity {equity:.2f} at {bar.timestamp} "
                    f"< {loss_floor:.2f}"
                )
                break

        if outcome.stopped_early:
            logger.warning(f"Risk stop for {symbol}: {outcome.stop_reason}")

        closing = strategy.on_stop(context)
        if (
            closing is not None
            and closing.side == "sell"
            and portfolio.position.quantity > 0
            and last_bar is not None
        ):
            portfolio.execute_signal(
                "sell",
                closing.reason or "strategy_stop",
                last_bar.timestamp,
                last_bar.close,
                portfolio.equity(last_bar.close),
            )
        return outcome


def run_backtest(
    request: Union[BacktestRequest, Mapping[str, Any]],
    risk_profile: Optional[RiskProfile] = None,
    run_id: Optional[str] = None,
    **engine_options: Any,
) -> BacktestResult:
    """Convenience wrapper: one engine, one run."""
    return BacktestEngine(**engine_options).run(request, risk_profile=risk_profile, run_id=run_id)
