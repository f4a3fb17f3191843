import math
from datetime import date

import pytest

from quantsim.core.exceptions import ConfigurationError, RateLimitError, VendorError
from quantsim.core.models import DataRequest
from quantsim.data.tiingo import TiingoSource

SAMPLE = [
    {"date": "2024-01-02T00:00:00.000Z", "open": 180, "high": 182, "low": 179, "close": 181, "volume": 1000},
    {"date": "2024-01-03T00:00:00.000Z", "open": 181, "high": 183, "low": 180, "close": 182, "volume": 1100},
    {"date": "2024-01-04T00:00:00.000Z", "open": 182, "high": 184, "low": 181, "close": 183, "volume": 1200},
]


def tiingo_request(start, end, **overrides):
    params = {
        "source": "tiingo",
        "symbol": "AAPL",
        "timeframe": "1d",
        "start": start,
        "end": end,
        "adjusted": True,
    }
    params.update(overrides)
    return DataRequest(**params)


@pytest.fixture
def make_source(tmp_path, clock, sleep_recorder):
    def make(http_client, now="2024-02-01T00:00:00Z", **kwargs):
        options = {
            "api_key": "test-key",
            "cache_dir": tmp_path / "tiingo",
            "http_client": http_client,
            "now": clock(now),
            "sleep": sleep_recorder,
            "request_delay_ms": 0,
        }
        options.update(kwargs)
        return TiingoSource(**options)

    return make


class TestTiingoSource:
    def test_fetches_caches_and_filters(self, make_source, fake_http, json_resp):
        http = fake_http(handler=lambda url, params: json_resp(SAMPLE))
        source = make_source(http, cache_ttl_seconds=10**9)
        request = tiingo_request("2024-01-02T00:00:00.000Z", "2024-01-05T00:00:00.000Z")

        first = source.load_bars(request)
        assert len(first) == 3
        assert first[0].timestamp == "2024-01-02T00:00:00.000Z"
        assert len(http.calls) == 1
        call = http.calls[0]
        assert call["url"].endswith("/AAPL/prices")
        assert call["headers"]["Authorization"] == "Token test-key"
        assert call["params"]["resampleFreq"] == "1day"
        assert call["params"]["format"] == "json"

        cached = source.load_bars(request)
        assert cached == first
        assert len(http.calls) == 1

        narrowed = source.load_bars(
            tiingo_request("2024-01-03T00:00:00.000Z", "2024-01-05T00:00:00.000Z")
        )
        assert len(narrowed) == 2

    def test_expired_cache_refetches(self, tmp_path, fake_http, json_resp, clock):
        http = fake_http(handler=lambda url, params: json_resp(SAMPLE))
        request = tiingo_request("2024-01-02", "2024-01-05")
        options = dict(
            api_key="k",
            cache_dir=tmp_path / "tiingo",
            http_client=http,
            request_delay_ms=0,
            sleep=lambda s: None,
            cache_ttl_seconds=60,
        )

        TiingoSource(now=clock("2024-02-01T00:00:00Z"), **options).load_bars(request)
        TiingoSource(now=clock("2024-02-01T00:00:30Z"), **options).load_bars(request)
        assert len(http.calls) == 1

        TiingoSource(now=clock("2024-02-01T00:05:00Z"), **options).load_bars(request)
        assert len(http.calls) == 2

    def test_future_end_is_clamped_to_now(self, make_source, fake_http, json_resp):
        http = fake_http(handler=lambda url, params: json_resp(SAMPLE))
        source = make_source(http, now="2025-01-15T00:00:00Z")

        source.load_bars(tiingo_request("2024-12-25", "2025-12-25"))

        assert len(http.calls) == 1
        assert http.calls[0]["params"]["startDate"] == "2024-12-25"
        assert http.calls[0]["params"]["endDate"] == "2025-01-15"

    def test_range_entirely_in_future_makes_no_calls(self, make_source, fake_http):
        http = fake_http()
        source = make_source(http, now="2024-09-01T00:00:00Z")

        assert source.load_bars(tiingo_request("2024-12-25", "2025-01-31")) == []
        assert http.calls == []

    def test_400_retries_with_earlier_end(self, make_source, fake_http, json_resp, status_resp):
        http = fake_http(responses=[status_resp(400), json_resp(SAMPLE)])
        source = make_source(http, now="2025-01-15T00:00:00Z")

        source.load_bars(tiingo_request("2024-12-25", "2025-12-25"))

        assert len(http.calls) == 2
        first, second = (call["params"] for call in http.calls)
        assert first["endDate"] == "2025-01-15"
        assert second["endDate"] == "2025-01-14"
        assert second["startDate"] == "2024-12-25"

    def test_429_sleeps_once_and_reissues_same_window(
        self, make_source, fake_http, json_resp, status_resp, sleep_recorder
    ):
        http = fake_http(responses=[status_resp(429), json_resp(SAMPLE)])
        source = make_source(http, request_delay_ms=15)

        bars = source.load_bars(tiingo_request("2024-01-02", "2024-01-05"))

        assert len(bars) == 3
        assert len(http.calls) == 2
        assert http.calls[0]["params"] == http.calls[1]["params"]
        assert sleep_recorder.calls == [0.015]

    def test_other_errors_are_fatal(self, make_source, fake_http, status_resp):
        http = fake_http(responses=[status_resp(500)])
        source = make_source(http)

        with pytest.raises(VendorError, match="AAPL") as excinfo:
            source.load_bars(tiingo_request("2024-01-02", "2024-01-05"))
        assert excinfo.value.status_code == 500

    def test_long_ranges_are_chunked_most_recent_first(
        self, make_source, fake_http, json_resp, sleep_recorder
    ):
        http = fake_http(handler=lambda url, params: json_resp(SAMPLE))
        source = make_source(http, max_chunk_days=10, request_delay_ms=5)

        source.load_bars(tiingo_request("2024-01-01", "2024-01-31"))

        span_days = (date(2024, 1, 31) - date(2024, 1, 1)).days + 1
        assert len(http.calls) == math.ceil(span_days / 10)
        windows = [(c["params"]["startDate"], c["params"]["endDate"]) for c in http.calls]
        assert windows == [
            ("2024-01-22", "2024-01-31"),
            ("2024-01-12", "2024-01-21"),
            ("2024-01-02", "2024-01-11"),
            ("2024-01-01", "2024-01-01"),
        ]
        # paced between consecutive requests only
        assert sleep_recorder.calls == [0.005] * 3

    def test_build_windows_covers_range_without_gaps(self, make_source, fake_http):
        source = make_source(fake_http(), max_chunk_days=10)

        windows = source.build_windows(date(2024, 1, 1), date(2024, 2, 15))

        assert len(windows) == 5
        assert windows[0] == (date(2024, 2, 6), date(2024, 2, 15))
        assert windows[-1][0] == date(2024, 1, 1)

    def test_prefers_adjusted_prices(self, make_source, fake_http, json_resp):
        record = {
            "date": "2024-01-02T00:00:00.000Z",
            "open": 100, "high": 110, "low": 90, "close": 105,
            "adjOpen": 50, "adjHigh": 55, "adjLow": 45, "adjClose": 52.5,
            "adjVolume": 2000,
        }
        http = fake_http(handler=lambda url, params: json_resp([record]))

        adjusted = make_source(http).load_bars(tiingo_request("2024-01-02", "2024-01-03"))
        raw = make_source(http).load_bars(
            tiingo_request("2024-01-02", "2024-01-03", adjusted=False)
        )

        assert adjusted[0].close == 52.5
        assert adjusted[0].volume == 2000.0
        assert raw[0].close == 105.0
        assert http.calls[-1]["params"]["adjusted"] == "false"

    def test_missing_api_key_is_a_configuration_error(self, make_source, fake_http, monkeypatch):
        monkeypatch.delenv("TIINGO_API_KEY", raising=False)
        monkeypatch.setattr("quantsim.data.tiingo.settings.TIINGO_API_KEY", "")
        http = fake_http()
        source = make_source(http, api_key=None)

        with pytest.raises(ConfigurationError, match="TIINGO_API_KEY"):
            source.load_bars(tiingo_request("2024-01-02", "2024-01-05"))
        assert http.calls == []

    def test_api_key_falls_back_to_environment(self, make_source, fake_http, json_resp, monkeypatch):
        monkeypatch.setattr("quantsim.data.tiingo.settings.TIINGO_API_KEY", "")
        monkeypatch.setenv("TIINGO_API_KEY", "env-key")
        http = fake_http(handler=lambda url, params: json_resp(SAMPLE))

        make_source(http, api_key=None).load_bars(tiingo_request("2024-01-02", "2024-01-05"))

        assert http.calls[0]["headers"]["Authorization"] == "Token env-key"

    def test_requires_start_and_end(self, make_source, fake_http):
        source = make_source(fake_http())
        with pytest.raises(ConfigurationError, match="AAPL"):
            source.load_bars(tiingo_request(None, "2024-01-05"))

    def test_malformed_json_is_a_vendor_error(self, make_source, fake_http):
        from quantsim.data.http_client import HttpResponse

        http = fake_http(responses=[HttpResponse(status_code=200, body="not json")])
        with pytest.raises(VendorError, match="Tiingo"):
            make_source(http).load_bars(tiingo_request("2024-01-02", "2024-01-05"))

    @pytest.mark.parametrize("payload", [[], {"detail": "nope"}])
    def test_empty_or_non_list_payload_yields_no_bars(
        self, make_source, fake_http, json_resp, payload
    ):
        http = fake_http(responses=[json_resp(payload)])
        assert make_source(http).load_bars(tiingo_request("2024-01-02", "2024-01-05")) == []

    def test_persistent_rate_limiting_gives_up(
        self, make_source, fake_http, status_resp, sleep_recorder
    ):
        http = fake_http(handler=lambda url, params: status_resp(429))
        source = make_source(http, request_delay_ms=10, max_rate_limit_retries=3)

        with pytest.raises(RateLimitError, match="AAPL") as excinfo:
            source.load_bars(tiingo_request("2024-01-02", "2024-01-05"))

        assert "2024-01-02..2024-01-05" in str(excinfo.value)
        assert excinfo.value.status_code == 429
        assert len(http.calls) == 4
        assert sleep_recorder.calls == [0.01] * 3

    def test_rate_limit_retries_default_to_settings(self, make_source, fake_http, monkeypatch):
        monkeypatch.setattr("quantsim.data.tiingo.settings.TIINGO_MAX_RETRIES", 7)
        assert make_source(fake_http()).max_rate_limit_retries == 7

    def test_consecutive_400s_keep_shrinking_until_accepted(
        self, make_source, fake_http, json_resp, status_resp
    ):
        http = fake_http(responses=[status_resp(400), status_resp(400), json_resp(SAMPLE)])

        bars = make_source(http).load_bars(tiingo_request("2024-01-02", "2024-01-05"))

        assert [c["params"]["endDate"] for c in http.calls] == [
            "2024-01-05",
            "2024-01-04",
            "2024-01-03",
        ]
        assert all(c["params"]["startDate"] == "2024-01-02" for c in http.calls)
        assert len(bars) == 3

    def test_window_rejected_down_to_nothing_is_skipped(
        self, make_source, fake_http, status_resp, sleep_recorder
    ):
        http = fake_http(responses=[status_resp(400), status_resp(400)])
        source = make_source(http, request_delay_ms=10)

        assert source.load_bars(tiingo_request("2024-01-02", "2024-01-03")) == []
        assert [c["params"]["endDate"] for c in http.calls] == ["2024-01-03", "2024-01-02"]
        # no pause once the window is empty
        assert sleep_recorder.calls == [0.01]
