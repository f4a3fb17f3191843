"""quantsim: deterministic single-strategy backtesting over historical bars."""

__version__ = "0.3.0"
