import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

import orjson
import pandas as pd
from opentelemetry import trace

from quantsim.core.config import settings
from quantsim.core.exceptions import (
    ConfigurationError,
    EmptyResultError,
    InvalidRequestError,
    RateLimitError,
    SymbolNotFoundError,
    VendorAuthError,
    VendorError,
)
from quantsim.core.models import Bar, DataRequest
from quantsim.data.base import MarketDataSource
from quantsim.data.cache import BarCache
from quantsim.data.http_client import HttpClient, RequestsHttpClient
from quantsim.data.utils import (
    filter_bars_for_request,
    slugify,
    sort_bars_chronologically,
    to_iso,
    to_number,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# timeframe -> (multiplier, timespan)
RANGE_CONFIG: Dict[str, Tuple[int, str]] = {
    "1d": (1, "day"),
    "1h": (1, "hour"),
    "15m": (15, "minute"),
    "1m": (1, "minute"),
}


class PolygonSource(MarketDataSource):
    """
    Polygon Aggregates API. One request per load, cached per
    (symbol, timeframe, adjustment) for ``cache_ttl_seconds``.
    """

    id = "polygon"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        cache_dir: Optional[Path] = None,
        cache_ttl_seconds: Optional[float] = None,
        http_client: Optional[HttpClient] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.api_key_override = api_key
        self.base_url = (base_url or settings.POLYGON_BASE_URL).rstrip("/")
        self.cache = BarCache(cache_dir or settings.CACHE_DIR / "polygon")
        self.cache_ttl_seconds = (
            cache_ttl_seconds
            if cache_ttl_seconds is not None
            else settings.POLYGON_CACHE_TTL_SECONDS
        )
        self.http_client = http_client or RequestsHttpClient()
        self.now = now or (lambda: datetime.now(timezone.utc))

    @tracer.start_as_current_span("polygon_load_bars")
    def load_bars(self, request: DataRequest) -> List[Bar]:
        span = trace.get_current_span()
        span.set_attribute("symbol", request.symbol)
        span.set_attribute("timeframe", request.timeframe)

        if not request.start or not request.end:
            raise ConfigurationError(
                f"Polygon data requests require start and end dates ({request.symbol})"
            )
        api_key = self._resolve_api_key()
        if not api_key:
            raise ConfigurationError(
                "Polygon API key missing. Set POLYGON_API_KEY environment variable."
            )

        now = self.now().timestamp()
        key = self._cache_key(request)
        cached = self.cache.read(key)
        if cached is not None:
            payload, bars = cached
            fetched_at = to_number(payload.get("fetchedAt"))
            if fetched_at is not None and now - fetched_at <= self.cache_ttl_seconds:
                logger.debug(f"Polygon cache hit for {key}")
                return filter_bars_for_request(bars, request)

        fetched = self._fetch(request, api_key)
        bars = sort_bars_chronologically(fetched)
        self.cache.write(key, bars, fetchedAt=now)
        return filter_bars_for_request(bars, request)

    def _fetch(self, request: DataRequest, api_key: str) -> List[Bar]:
        multiplier, timespan = RANGE_CONFIG.get(request.timeframe, (1, "minute"))
        symbol = quote(request.symbol.upper(), safe="")
        url = (
            f"{self.base_url}/{symbol}/range/{multiplier}/{timespan}/"
            f"{quote(request.start, safe='')}/{quote(request.end, safe='')}"
        )
        params = {
            "adjusted": "true" if request.adjusted else "false",
            "sort": "asc",
            "limit": "50000",
            "apiKey": api_key,
        }

        logger.info(
            f"Fetching {request.symbol} {request.timeframe} from Polygon "
            f"({request.start} to {request.end})"
        )
        response = self.http_client.get(url, params=params)
        if not response.ok:
            raise self._error_for_status(response.status_code, request)

        try:
            payload = orjson.loads(response.body)
        except orjson.JSONDecodeError as e:
            raise VendorError(f"Unable to parse Polygon response: {e}") from e

        results = payload.get("results") if isinstance(payload, dict) else None
        if not isinstance(results, list) or not results:
            snippet = response.body[:200]
            raise EmptyResultError(
                f"Polygon returned no results for {request.symbol} ({request.timeframe}) "
                f"from {request.start} to {request.end}. Response: {snippet}",
                status_code=response.status_code,
            )

        bars = []
        for record in results:
            if isinstance(record, dict):
                bar = self._to_bar(record)
                if bar is not None:
                    bars.append(bar)
        return bars

    @staticmethod
    def _error_for_status(status: int, request: DataRequest) -> VendorError:
        if status == 404:
            return SymbolNotFoundError(
                f'Ticker symbol "{request.symbol}" not found. Please verify the ticker '
                "is valid and available on Polygon.",
                status_code=status,
            )
        if status in (401, 403):
            return VendorAuthError(
                "Polygon authentication failed. Please verify your POLYGON_API_KEY is valid.",
                status_code=status,
            )
        if status == 400:
            return InvalidRequestError(
                f"Invalid request parameters for {request.symbol}. Check that start date "
                f"({request.start}) and end date ({request.end}) are valid YYYY-MM-DD format "
                f'and that the timeframe "{request.timeframe}" is supported.',
                status_code=status,
            )
        if status == 429:
            return RateLimitError(
                "Polygon rate limit exceeded. Please wait before making more requests.",
                status_code=status,
            )
        return VendorError(f"Polygon request failed with status {status}", status_code=status)

    @staticmethod
    def _to_bar(record: Dict[str, Any]) -> Optional[Bar]:
        millis = to_number(record.get("t"))
        volume = record.get("v")
        values = (
            to_number(record.get("o")),
            to_number(record.get("h")),
            to_number(record.get("l")),
            to_number(record.get("c")),
            to_number(volume if volume is not None else record.get("av")),
        )
        if millis is None or any(value is None for value in values):
            return None
        open_, high, low, close, volume = values
        ts = pd.Timestamp(int(millis), unit="ms", tz="UTC")
        return Bar(
            timestamp=to_iso(ts), open=open_, high=high, low=low, close=close, volume=volume
        )

    @staticmethod
    def _cache_key(request: DataRequest) -> str:
        return "_".join(
            [
                slugify(request.symbol),
                slugify(request.timeframe),
                "adj" if request.adjusted else "raw",
            ]
        )

    def _resolve_api_key(self) -> str:
        if self.api_key_override is not None:
            return self.api_key_override
        return settings.POLYGON_API_KEY or os.getenv("POLYGON_API_KEY", "")
