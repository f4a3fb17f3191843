import math

import numpy as np
import pytest

from quantsim.backtest.reporting import (
    ALWAYS_INCLUDED,
    REQUIRED_METRICS,
    PerformanceReporter,
    normalise_metrics,
)
from quantsim.core.models import EquityPoint, TradeFill


def curve(*values, start_day=1):
    return [
        EquityPoint(timestamp=f"2024-01-{start_day + i:02d}T00:00:00.000Z", equity=value)
        for i, value in enumerate(values)
    ]


def fill(pnl, side="sell"):
    return TradeFill(
        id=f"X-{side}-{pnl}",
        symbol="X",
        side=side,
        quantity=1,
        price=1.0,
        timestamp="2024-01-02",
        pnl=pnl,
        fees=0.0,
        reason="test",
    )


def test_normalise_metrics_keeps_required_first():
    assert normalise_metrics(None) == REQUIRED_METRICS
    assert normalise_metrics(["profit_factor", "sharpe", "profit_factor"]) == REQUIRED_METRICS + [
        "profit_factor"
    ]


class TestPerformanceReporter:
    def test_ratios_use_population_std(self):
        reporter = PerformanceReporter(curve(100, 110, 99, 108.9), [], 100)
        returns = np.array([0.1, -0.1, 0.1])

        assert reporter.returns().tolist() == pytest.approx(returns.tolist())
        assert reporter.sharpe() == pytest.approx(returns.mean() / returns.std() * math.sqrt(252))
        assert reporter.sortino() == pytest.approx(returns.mean() / 0.1 * math.sqrt(252))

    def test_flat_curve_has_zero_ratios(self):
        reporter = PerformanceReporter(curve(100, 100, 100), [], 100)
        assert reporter.sharpe() == 0.0
        assert reporter.sortino() == 0.0
        assert reporter.max_drawdown() == 0.0

    def test_max_drawdown_is_negative_fraction(self):
        reporter = PerformanceReporter(curve(100, 120, 90, 130, 117), [], 100)
        assert reporter.max_drawdown() == pytest.approx(-0.25)

    def test_cagr_uses_calendar_years(self):
        points = [
            EquityPoint(timestamp="2024-01-01T00:00:00.000Z", equity=100),
            EquityPoint(timestamp="2025-01-01T00:00:00.000Z", equity=110),
        ]
        reporter = PerformanceReporter(points, [], 100)
        assert reporter.cagr() == pytest.approx(1.1 ** (365.25 / 366) - 1)

    def test_cagr_needs_two_points(self):
        assert PerformanceReporter(curve(100), [], 100).cagr() == 0.0

    def test_trade_statistics(self):
        trades = [fill(0.0, side="buy"), fill(10.0), fill(-5.0)]
        reporter = PerformanceReporter(curve(100, 105), trades, 100)

        assert reporter.win_rate() == pytest.approx(1 / 3)
        assert reporter.profit_factor() == pytest.approx(2.0)
        assert reporter.total_pnl() == pytest.approx(5.0)
        assert reporter.total_return() == pytest.approx(0.05)

    def test_profit_factor_without_losses(self):
        assert PerformanceReporter([], [fill(3.0)], 100).profit_factor() == math.inf
        assert PerformanceReporter([], [], 100).profit_factor() == 0.0

    def test_empty_run(self):
        summary = PerformanceReporter([], [], 100).calculate_metrics(REQUIRED_METRICS)
        assert all(value == 0.0 for value in summary.values())

    def test_calculate_metrics_adds_totals_and_zeroes_unknown(self):
        reporter = PerformanceReporter(curve(100, 110), [fill(10.0)], 100)

        summary = reporter.calculate_metrics(normalise_metrics(["profit_factor", "bogus"]))

        assert list(summary) == REQUIRED_METRICS + ["profit_factor", "bogus"] + ALWAYS_INCLUDED
        assert summary["bogus"] == 0.0
        assert summary["num_trades"] == 1.0
        assert summary["total_pnl"] == pytest.approx(10.0)
