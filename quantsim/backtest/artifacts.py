"""
Run artifact layout and the rows handed to the persistence collaborator.

The engine never writes files itself: it builds rows and a report payload and
passes them to an injected ``ArtifactWriter`` (columnar tables + markdown
report). Result records only carry the relative artifact paths.
"""

from pathlib import Path
from typing import Any, Dict, List, Protocol, Sequence

from quantsim.core.models import Bar, EquityPoint, RiskProfile, RunArtifacts, TradeFill

RUNS_RELATIVE_ROOT = "storage/runs"

Row = Dict[str, Any]


class ArtifactWriter(Protocol):
    def write_tables(
        self,
        run_dir: Path,
        equity_rows: List[Row],
        trade_rows: List[Row],
        bar_rows: List[Row],
    ) -> None: ...

    def write_report(self, run_dir: Path, payload: Dict[str, Any]) -> None: ...


def artifact_paths(run_id: str) -> RunArtifacts:
    base = f"{RUNS_RELATIVE_ROOT}/{run_id}"
    return RunArtifacts(
        equity_parquet=f"{base}/equity.parquet",
        trades_parquet=f"{base}/trades.parquet",
        bars_parquet=f"{base}/bars.parquet",
        report_md=f"{base}/report.md",
    )


def equity_rows(curve: Sequence[EquityPoint]) -> List[Row]:
    return [{"time": point.timestamp, "equity": point.equity} for point in curve]


def trade_rows(trades: Sequence[TradeFill]) -> List[Row]:
    return [
        {
            "time": trade.timestamp,
            "side": trade.side,
            "qty": trade.quantity,
            "price": trade.price,
            "pnl": trade.pnl,
            "fees": trade.fees,
            "reason": trade.reason,
        }
        for trade in trades
    ]


def bar_rows(bars: Sequence[Bar]) -> List[Row]:
    """One row per distinct timestamp (last wins), ordered by timestamp."""
    by_timestamp = {bar.timestamp: bar for bar in bars}
    return [
        {
            "time": bar.timestamp,
            "open": bar.open,
            "high": bar.high,
            "low": bar.low,
            "close": bar.close,
            "volume": bar.volume,
        }
        for _, bar in sorted(by_timestamp.items())
    ]


def report_payload(
    run_name: str,
    summary: Dict[str, float],
    trades: Sequence[TradeFill],
    risk_profile: RiskProfile,
) -> Dict[str, Any]:
    return {
        "runName": run_name,
        "summary": dict(summary),
        "trades": [trade.model_dump() for trade in trades],
        "riskProfile": risk_profile.model_dump(by_alias=True),
    }
