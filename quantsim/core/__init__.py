"""Core domain models, configuration, errors and telemetry setup."""
