from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from quantsim.core.config import Settings
from quantsim.core.models import Bar, BacktestRequest, RiskProfile
from quantsim.core.telemetry import setup_telemetry


class TestSettings:
    def test_storage_layout_derives_from_root(self):
        config = Settings(_env_file=None, STORAGE_ROOT=Path("/data/qs"))
        assert config.DATASETS_DIR == Path("/data/qs/datasets")
        assert config.CACHE_DIR == Path("/data/qs/datasets/.cache")
        assert config.RUNS_DIR == Path("/data/qs/runs")
        assert config.CUSTOM_STRATEGIES_DIR == Path("/data/qs/strategies/custom")

    def test_vendor_defaults(self):
        config = Settings(_env_file=None)
        assert config.TIINGO_MAX_CHUNK_DAYS == 30
        assert config.TIINGO_REQUEST_DELAY_MS == 1000
        assert config.TIINGO_MAX_RETRIES == 5

    def test_rejects_empty_chunks(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, TIINGO_MAX_CHUNK_DAYS=0)

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("POLYGON_API_KEY", "from-env")
        assert Settings(_env_file=None).POLYGON_API_KEY == "from-env"


class TestModels:
    def test_bar_rejects_non_finite_values(self):
        with pytest.raises(ValidationError):
            Bar(timestamp="2024-01-02", open=1, high=1, low=1, close=float("nan"), volume=1)

    def test_request_accepts_wire_names(self):
        request = BacktestRequest.model_validate(
            {
                "runName": "wire",
                "data": [{"symbol": "AAPL", "timeframe": "1h"}],
                "strategy": {"name": "momentum"},
                "costs": {"feeBps": 2},
                "initialCash": 5000,
            }
        )
        assert request.data[0].source == "auto"
        assert request.data[0].adjusted is True
        assert request.costs.fee_bps == 2
        assert request.seed is None

    @pytest.mark.parametrize(
        "overrides",
        [{"initialCash": 0}, {"data": []}, {"runName": ""}],
    )
    def test_request_validation(self, overrides):
        payload = {
            "runName": "x",
            "data": [{"symbol": "AAPL", "timeframe": "1d"}],
            "strategy": {"name": "momentum"},
            "initialCash": 100,
        }
        payload.update(overrides)
        with pytest.raises(ValidationError):
            BacktestRequest.model_validate(payload)

    def test_risk_profile_bounds(self):
        with pytest.raises(ValidationError):
            RiskProfile(max_position_pct=1.5)


class TestTelemetry:
    def test_skipped_without_endpoint(self, monkeypatch):
        monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
        monkeypatch.setattr("quantsim.core.telemetry.settings.OTEL_EXPORTER_OTLP_ENDPOINT", None)

        with patch("quantsim.core.telemetry.trace.set_tracer_provider") as set_provider:
            assert setup_telemetry("quantsim-test") is False
        set_provider.assert_not_called()

    def test_configures_otlp_exporter(self):
        with patch("quantsim.core.telemetry.OTLPSpanExporter") as exporter, patch(
            "quantsim.core.telemetry.BatchSpanProcessor"
        ), patch("quantsim.core.telemetry.trace.set_tracer_provider") as set_provider:
            assert setup_telemetry("quantsim-test", endpoint="http://collector:4318/") is True

        exporter.assert_called_once_with(endpoint="http://collector:4318/v1/traces")
        set_provider.assert_called_once()
