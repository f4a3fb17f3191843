"""
Shared helpers used across data sources to enforce consistent behaviour:
cache-key slugs, bar validation, chronological ordering and range filtering.
"""

import math
import re
from typing import Any, Iterable, List, Optional

import pandas as pd
from pydantic import ValidationError

from quantsim.core.models import Bar, DataRequest

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(value: str) -> str:
    """Lowercase, collapse non-alphanumerics to ``_`` and trim the ends."""
    return _NON_ALNUM.sub("_", value.lower()).strip("_")


def to_number(value: Any) -> Optional[float]:
    """Accept finite numbers or numeric strings; everything else is None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def parse_timestamp(value: Optional[str]) -> Optional[pd.Timestamp]:
    """Parse an ISO date/datetime into a UTC Timestamp. Naive values are UTC."""
    if not value:
        return None
    try:
        ts = pd.Timestamp(value)
    except (ValueError, TypeError):
        return None
    if pd.isna(ts):
        return None
    if ts.tzinfo is None:
        return ts.tz_localize("UTC")
    return ts.tz_convert("UTC")


def to_iso(ts: pd.Timestamp) -> str:
    """Millisecond-precision UTC ISO string, e.g. ``2024-01-02T00:00:00.000Z``."""
    ts = ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")
    return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"


def sanitize_bar(candidate: Any) -> Optional[Bar]:
    """
    Normalises bars that may come from caches or remote APIs.
    Returns None for anything that is not a complete, finite OHLCV record.
    """
    if candidate is None:
        return None
    if isinstance(candidate, Bar):
        return candidate
    if not isinstance(candidate, dict):
        return None
    try:
        return Bar.model_validate(
            {key: candidate.get(key) for key in Bar.model_fields}
        )
    except ValidationError:
        return None


def sanitize_bars(candidates: Iterable[Any]) -> List[Bar]:
    bars = []
    for candidate in candidates:
        bar = sanitize_bar(candidate)
        if bar is not None:
            bars.append(bar)
    return bars


def _sort_key(bar: Bar) -> int:
    ts = parse_timestamp(bar.timestamp)
    return ts.value if ts is not None else 0


def sort_bars_chronologically(bars: Iterable[Bar]) -> List[Bar]:
    """Stable ascending sort; unparseable timestamps sort first."""
    return sorted(bars, key=_sort_key)


def dedupe_bars(bars: Iterable[Bar]) -> List[Bar]:
    """
    One bar per timestamp, the last occurrence winning, sorted ascending.
    """
    by_timestamp = {}
    for bar in bars:
        by_timestamp[bar.timestamp] = bar
    return sort_bars_chronologically(by_timestamp.values())


def filter_bars_for_request(bars: Iterable[Bar], request: DataRequest) -> List[Bar]:
    """Keep bars within the request's inclusive [start, end] window."""
    start = parse_timestamp(request.start)
    end = parse_timestamp(request.end)

    kept = []
    for bar in bars:
        ts = parse_timestamp(bar.timestamp)
        if ts is None:
            continue
        if start is not None and ts < start:
            continue
        if end is not None and ts > end:
            continue
        kept.append(bar)
    return kept
