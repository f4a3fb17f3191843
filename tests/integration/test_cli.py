import orjson
import pytest

import run


@pytest.fixture(autouse=True)
def isolated_cli(monkeypatch, tmp_path):
    # relative storage paths resolve inside the test directory
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(run, "setup_telemetry", lambda *args, **kwargs: False)


def write_json(path, payload):
    path.write_bytes(orjson.dumps(payload))
    return path


def inline_request(closes):
    bars = [
        {
            "timestamp": f"2024-01-{day:02d}T00:00:00.000Z",
            "open": c,
            "high": c + 1.0,
            "low": c - 1.0,
            "close": c,
            "volume": 1000.0,
        }
        for day, c in enumerate(closes, 1)
    ]
    return {
        "runName": "cli smoke",
        "data": [{"source": "csv", "symbol": "TEST", "timeframe": "1d"}],
        "strategy": {"name": "momentum", "params": {"lookback": 2, "threshold": 0.01, "bars": bars}},
        "initialCash": 10_000,
    }


def test_prints_result_json(tmp_path, capsysbinary):
    request = write_json(tmp_path / "request.json", inline_request([100.0, 101.0, 104.0, 103.0, 99.0]))
    profile = write_json(tmp_path / "profile.json", {"id": "cli", "maxPositionPct": 0.5})

    code = run.main([str(request), "--risk-profile", str(profile), "--run-id", "cli-run"])

    assert code == 0
    output = orjson.loads(capsysbinary.readouterr().out)
    assert output["runId"] == "cli-run"
    assert output["diagnostics"]["processedBars"] == 5
    assert output["diagnostics"]["riskProfileId"] == "cli"
    assert output["artifacts"]["reportMd"] == "storage/runs/cli-run/report.md"
    assert "sharpe" in output["summary"]


def test_missing_request_file(tmp_path):
    assert run.main([str(tmp_path / "absent.json")]) == 2


def test_malformed_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    assert run.main([str(path)]) == 2


def test_invalid_risk_profile(tmp_path):
    request = write_json(tmp_path / "request.json", inline_request([100.0, 101.0]))
    profile = write_json(tmp_path / "profile.json", {"maxPositionPct": 5})
    assert run.main([str(request), "--risk-profile", str(profile)]) == 2


def test_backtest_errors_exit_with_one(tmp_path):
    payload = inline_request([100.0, 101.0])
    payload["strategy"]["name"] = "does_not_exist"
    request = write_json(tmp_path / "request.json", payload)

    assert run.main([str(request)]) == 1
