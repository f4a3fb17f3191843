"""Backtest Engine and Simulation.

Provides the deterministic bar loop, portfolio sizing and execution, and
summary metrics for validating strategies against historical data.
"""
