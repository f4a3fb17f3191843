import math
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from quantsim.core.models import EquityPoint, TradeFill

TRADING_DAYS_PER_YEAR = 252
DAYS_PER_YEAR = 365.25

REQUIRED_METRICS = ["sharpe", "sortino", "max_dd", "cagr", "winrate"]
ALWAYS_INCLUDED = ["total_pnl", "total_return", "num_trades"]


def normalise_metrics(requested: Optional[Iterable[str]] = None) -> List[str]:
    """Required metrics first, then any extra requested names, deduplicated."""
    combined = list(REQUIRED_METRICS)
    for metric in requested or []:
        if metric not in combined:
            combined.append(metric)
    return combined


class PerformanceReporter:
    """
    Calculates summary metrics from an equity curve and a trade log.

    Returns are simple bar-over-bar returns, annualised with 252 periods and
    population standard deviation. Bars following a non-positive equity are
    skipped.
    """

    def __init__(
        self,
        equity_curve: Sequence[EquityPoint],
        trades: Sequence[TradeFill],
        initial_cash: float,
    ):
        self.equity_curve = list(equity_curve)
        self.trades = list(trades)
        self.initial_cash = initial_cash
        self.equity = pd.Series(
            [point.equity for point in self.equity_curve], dtype=float
        )

    def returns(self) -> pd.Series:
        if len(self.equity) < 2:
            return pd.Series(dtype=float)
        prev = self.equity.shift(1)
        returns = (self.equity - prev) / prev
        return returns.iloc[1:][prev.iloc[1:] > 0].reset_index(drop=True)

    def sharpe(self) -> float:
        returns = self.returns()
        if returns.empty:
            return 0.0
        std = float(returns.std(ddof=0))
        if std == 0:
            return 0.0
        return float(returns.mean()) / std * math.sqrt(TRADING_DAYS_PER_YEAR)

    def sortino(self) -> float:
        """Mean return over downside RMS (negative returns only)."""
        returns = self.returns()
        if returns.empty:
            return 0.0
        downside = returns[returns < 0].to_numpy()
        if downside.size == 0:
            return 0.0
        downside_std = float(np.sqrt(np.mean(downside**2)))
        if downside_std == 0:
            return 0.0
        return float(returns.mean()) / downside_std * math.sqrt(TRADING_DAYS_PER_YEAR)

    def max_drawdown(self) -> float:
        """Deepest peak-to-trough decline as a negative fraction (0 when none)."""
        if self.equity.empty:
            return 0.0
        peak = self.equity.cummax()
        drawdown = ((self.equity - peak) / peak).where(peak > 0, 0.0)
        return min(0.0, float(drawdown.min()))

    def cagr(self) -> float:
        if len(self.equity_curve) < 2:
            return 0.0
        start, end = self.equity_curve[0], self.equity_curve[-1]
        if start.equity <= 0 or end.equity <= 0:
            return 0.0
        start_ts = pd.to_datetime(start.timestamp, utc=True, errors="coerce")
        end_ts = pd.to_datetime(end.timestamp, utc=True, errors="coerce")
        if pd.isna(start_ts) or pd.isna(end_ts) or start_ts >= end_ts:
            return 0.0
        years = (end_ts - start_ts).total_seconds() / (DAYS_PER_YEAR * 86400)
        return (end.equity / start.equity) ** (1 / years) - 1

    def total_pnl(self) -> float:
        if self.equity.empty:
            return 0.0
        return float(self.equity.iloc[-1]) - self.initial_cash

    def total_return(self) -> float:
        if self.equity.empty or self.initial_cash <= 0:
            return 0.0
        return float(self.equity.iloc[-1]) / self.initial_cash - 1.0

    def win_rate(self) -> float:
        """Fraction of fills (opening fills included) with positive P&L."""
        if not self.trades:
            return 0.0
        winners = sum(1 for trade in self.trades if trade.pnl > 0)
        return winners / len(self.trades)

    def profit_factor(self) -> float:
        if not self.trades:
            return 0.0
        gross_profit = sum(t.pnl for t in self.trades if t.pnl > 0)
        gross_loss = abs(sum(t.pnl for t in self.trades if t.pnl < 0))
        if gross_loss == 0:
            return math.inf if gross_profit > 0 else 0.0
        return gross_profit / gross_loss

    def calculate_metrics(self, metrics: Iterable[str]) -> Dict[str, float]:
        calculators = {
            "sharpe": self.sharpe,
            "sortino": self.sortino,
            "max_dd": self.max_drawdown,
            "cagr": self.cagr,
            "winrate": self.win_rate,
            "total_pnl": self.total_pnl,
            "total_return": self.total_return,
            "num_trades": lambda: float(len(self.trades)),
            "profit_factor": self.profit_factor,
        }
        summary: Dict[str, float] = {}
        for metric in list(metrics) + ALWAYS_INCLUDED:
            if metric in summary:
                continue
            calculator = calculators.get(metric)
            summary[metric] = float(calculator()) if calculator else 0.0
        return summary
