import logging
import os
import time
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

import orjson
import pandas as pd
from opentelemetry import trace

from quantsim.core.config import settings
from quantsim.core.exceptions import ConfigurationError, RateLimitError, VendorError
from quantsim.core.models import Bar, DataRequest
from quantsim.data.base import MarketDataSource
from quantsim.data.cache import BarCache
from quantsim.data.http_client import HttpClient, RequestsHttpClient
from quantsim.data.utils import (
    dedupe_bars,
    filter_bars_for_request,
    parse_timestamp,
    slugify,
    to_iso,
    to_number,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

RESAMPLE_FREQ = {"1d": "1day", "1h": "1hour", "15m": "15min", "1m": "1min"}

Window = Tuple[date, date]


class TiingoSource(MarketDataSource):
    """
    Tiingo EOD/intraday prices, fetched in date windows with pacing.

    Long ranges are split into ``max_chunk_days`` windows issued from the most
    recent window backwards, sleeping ``request_delay_ms`` between requests.
    Per window:
    - 429: sleep the delay and reissue the same window, at most
      ``max_rate_limit_retries`` times before raising RateLimitError
    - 400: Tiingo rejects the range (usually "not yet available"); move the
      window end back one day and retry
    - anything else non-2xx is fatal

    ``now`` and ``sleep`` are injectable so tests never touch the clock.
    """

    id = "tiingo"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        cache_dir: Optional[Path] = None,
        cache_ttl_seconds: Optional[float] = None,
        http_client: Optional[HttpClient] = None,
        max_chunk_days: Optional[int] = None,
        request_delay_ms: Optional[int] = None,
        max_rate_limit_retries: Optional[int] = None,
        now: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.api_key_override = api_key
        self.base_url = (base_url or settings.TIINGO_BASE_URL).rstrip("/")
        self.cache = BarCache(cache_dir or settings.CACHE_DIR / "tiingo")
        self.cache_ttl_seconds = (
            cache_ttl_seconds
            if cache_ttl_seconds is not None
            else settings.TIINGO_CACHE_TTL_SECONDS
        )
        self.http_client = http_client or RequestsHttpClient()
        self.max_chunk_days = max(1, max_chunk_days or settings.TIINGO_MAX_CHUNK_DAYS)
        self.request_delay_ms = (
            request_delay_ms
            if request_delay_ms is not None
            else settings.TIINGO_REQUEST_DELAY_MS
        )
        self.max_rate_limit_retries = (
            max_rate_limit_retries
            if max_rate_limit_retries is not None
            else settings.TIINGO_MAX_RETRIES
        )
        self.now = now or (lambda: datetime.now(timezone.utc))
        self.sleep = sleep or time.sleep

    @tracer.start_as_current_span("tiingo_load_bars")
    def load_bars(self, request: DataRequest) -> List[Bar]:
        span = trace.get_current_span()
        span.set_attribute("symbol", request.symbol)
        span.set_attribute("timeframe", request.timeframe)

        start = parse_timestamp(request.start)
        end = parse_timestamp(request.end)
        if start is None or end is None:
            raise ConfigurationError(
                f"Tiingo requests for {request.symbol} require valid start and end dates "
                f"(got start={request.start!r}, end={request.end!r})"
            )
        api_key = self._resolve_api_key()
        if not api_key:
            raise ConfigurationError(
                "Tiingo API key missing. Set TIINGO_API_KEY environment variable."
            )

        now = pd.Timestamp(self.now())
        now = now.tz_localize("UTC") if now.tzinfo is None else now.tz_convert("UTC")
        if end > now:
            logger.info(f"Clamping Tiingo end {request.end} to {now.date()}")
            end = now
        if end < start:
            return []

        start_day, end_day = start.date(), end.date()
        key = self._cache_key(request, start_day, end_day)
        cached = self.cache.read(key)
        if cached is not None:
            payload, bars = cached
            fetched_at = to_number(payload.get("fetchedAt"))
            if fetched_at is not None and now.timestamp() - fetched_at <= self.cache_ttl_seconds:
                return filter_bars_for_request(bars, request)

        fetched = self._fetch_windows(request, api_key, start_day, end_day)
        bars = dedupe_bars(fetched)
        self.cache.write(key, bars, fetchedAt=now.timestamp())
        return filter_bars_for_request(bars, request)

    def build_windows(self, start_day: date, end_day: date) -> List[Window]:
        """Split [start_day, end_day] into chunks, most recent first."""
        windows = []
        chunk_end = end_day
        span = timedelta(days=self.max_chunk_days - 1)
        while chunk_end >= start_day:
            chunk_start = max(start_day, chunk_end - span)
            windows.append((chunk_start, chunk_end))
            chunk_end = chunk_start - timedelta(days=1)
        return windows

    def _fetch_windows(
        self, request: DataRequest, api_key: str, start_day: date, end_day: date
    ) -> List[Bar]:
        windows = self.build_windows(start_day, end_day)
        logger.info(
            f"Fetching {request.symbol} {request.timeframe} from Tiingo "
            f"in {len(windows)} window(s)"
        )

        bars: List[Bar] = []
        issued = 0
        for chunk_start, chunk_end in windows:
            if issued:
                self._pause()
            chunk_bars, attempts = self._fetch_window(request, api_key, chunk_start, chunk_end)
            issued += attempts
            bars.extend(chunk_bars)
        return bars

    @tracer.start_as_current_span("tiingo_fetch_window")
    def _fetch_window(
        self, request: DataRequest, api_key: str, chunk_start: date, chunk_end: date
    ) -> Tuple[List[Bar], int]:
        attempts = 0
        rate_limited = 0
        while chunk_end >= chunk_start:
            response = self.http_client.get(
                f"{self.base_url}/{quote(request.symbol, safe='')}/prices",
                params=self._params(request, chunk_start, chunk_end),
                headers={"Authorization": f"Token {api_key}"},
            )
            attempts += 1

            if response.status_code == 429:
                if rate_limited >= self.max_rate_limit_retries:
                    raise RateLimitError(
                        f"Tiingo kept rate limiting {request.symbol} {request.timeframe} "
                        f"{chunk_start}..{chunk_end} after {rate_limited} retries",
                        status_code=429,
                    )
                rate_limited += 1
                logger.warning(
                    f"Tiingo rate limited {request.symbol} {chunk_start}..{chunk_end}; "
                    f"retrying in {self.request_delay_ms}ms"
                )
                self._pause()
                continue

            if response.status_code == 400:
                logger.warning(
                    f"Tiingo rejected {request.symbol} {chunk_start}..{chunk_end}; "
                    "moving end back one day"
                )
                chunk_end -= timedelta(days=1)
                if chunk_end >= chunk_start:
                    self._pause()
                continue

            if not response.ok:
                raise VendorError(
                    f"Tiingo request for {request.symbol} {request.timeframe} "
                    f"{chunk_start}..{chunk_end} failed with status {response.status_code}",
                    status_code=response.status_code,
                )

            return self._parse(response.body, request), attempts

        logger.warning(
            f"Tiingo has no accepted range for {request.symbol} starting {chunk_start}"
        )
        return [], attempts

    def _params(self, request: DataRequest, chunk_start: date, chunk_end: date) -> Dict[str, str]:
        params = {
            "startDate": chunk_start.isoformat(),
            "endDate": chunk_end.isoformat(),
            "format": "json",
            "adjusted": "true" if request.adjusted else "false",
        }
        freq = RESAMPLE_FREQ.get(request.timeframe)
        if freq:
            params["resampleFreq"] = freq
        return params

    def _parse(self, body: str, request: DataRequest) -> List[Bar]:
        try:
            payload = orjson.loads(body)
        except orjson.JSONDecodeError as e:
            raise VendorError(f"Unable to parse Tiingo response for {request.symbol}: {e}") from e

        if not isinstance(payload, list):
            return []

        bars = []
        for record in payload:
            if isinstance(record, dict):
                bar = self._to_bar(record, request.adjusted)
                if bar is not None:
                    bars.append(bar)
        return bars

    @staticmethod
    def _to_bar(record: Dict[str, Any], use_adjusted: bool) -> Optional[Bar]:
        raw_ts = record.get("date") or record.get("timestamp")
        ts = parse_timestamp(raw_ts) if isinstance(raw_ts, str) else None
        if ts is None:
            return None

        def pick(primary: str, adjusted: str) -> Optional[float]:
            if use_adjusted:
                value = to_number(record.get(adjusted))
                if value is not None:
                    return value
            return to_number(record.get(primary))

        values = (
            pick("open", "adjOpen"),
            pick("high", "adjHigh"),
            pick("low", "adjLow"),
            pick("close", "adjClose"),
            to_number(record.get("volume", record.get("adjVolume"))),
        )
        if any(value is None for value in values):
            return None
        open_, high, low, close, volume = values
        return Bar(
            timestamp=to_iso(ts), open=open_, high=high, low=low, close=close, volume=volume
        )

    def _pause(self) -> None:
        self.sleep(self.request_delay_ms / 1000.0)

    def _cache_key(self, request: DataRequest, start_day: date, end_day: date) -> str:
        return "_".join(
            [
                slugify(request.symbol),
                slugify(request.timeframe),
                slugify(start_day.isoformat()),
                slugify(end_day.isoformat()),
                "adj" if request.adjusted else "raw",
            ]
        )

    def _resolve_api_key(self) -> str:
        if self.api_key_override is not None:
            return self.api_key_override
        return settings.TIINGO_API_KEY or os.getenv("TIINGO_API_KEY", "")
