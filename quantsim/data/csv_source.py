import logging
from pathlib import Path
from typing import List, Optional

from opentelemetry import trace

from quantsim.core.config import settings
from quantsim.core.exceptions import DatasetReadError
from quantsim.core.models import Bar, DataRequest
from quantsim.data.base import MarketDataSource
from quantsim.data.cache import BarCache
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


def dataset_slug(symbol: str, timeframe: str) -> str:
    return f"{slugify(symbol)}_{slugify(timeframe)}"


class CsvSource(MarketDataSource):
    """
    Local CSV datasets under ``<datasets_dir>/<symbol>_<timeframe>.csv``.

    Parsed series are cached as JSON keyed by the dataset's modification
    time, so an unchanged file is never parsed twice. ``parse_count`` counts
    actual parses.

    A missing dataset yields an empty series. A dataset that exists but cannot
    be read raises DatasetReadError instead of masquerading as missing.
    """

    id = "csv"

    def __init__(self, datasets_dir: Optional[Path] = None, cache_dir: Optional[Path] = None):
        self.datasets_dir = Path(datasets_dir or settings.DATASETS_DIR)
        self.cache = BarCache(cache_dir or self.datasets_dir / ".cache" / "csv")
        self.parse_count = 0

    def dataset_path(self, symbol: str, timeframe: str) -> Path:
        return self.datasets_dir / f"{dataset_slug(symbol, timeframe)}.csv"

    @tracer.start_as_current_span("csv_load_bars")
    def load_bars(self, request: DataRequest) -> List[Bar]:
        path = self.dataset_path(request.symbol, request.timeframe)
        key = dataset_slug(request.symbol, request.timeframe)

        try:
            mtime_ns = path.stat().st_mtime_ns
        except FileNotFoundError:
            logger.debug(f"No local dataset at {path}")
            return []
        except OSError as e:
            raise DatasetReadError(f"Unable to stat dataset {path}: {e}") from e

        cached = self.cache.read(key)
        if cached is not None:
            payload, bars = cached
            if payload.get("mtimeNs") == mtime_ns:
                return filter_bars_for_request(bars, request)

        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except (OSError, UnicodeDecodeError) as e:
            raise DatasetReadError(f"Unable to read dataset {path}: {e}") from e

        bars = self._parse(text)
        self.parse_count += 1
        logger.info(f"Parsed {len(bars)} bars from {path}")

        self.cache.write(key, bars, mtimeNs=mtime_ns)
        return filter_bars_for_request(bars, request)

    def _parse(self, text: str) -> List[Bar]:
        rows = text.splitlines()[1:]  # header
        parsed = []
        for line in rows:
            bar = self._parse_line(line)
            if bar is not None:
                parsed.append(bar)
        return dedupe_bars(parsed)

    @staticmethod
    def _parse_line(line: str) -> Optional[Bar]:
        parts = [part.strip() for part in line.split(",")]
        if len(parts) < 6:
            return None
        ts = parse_timestamp(parts[0])
        if ts is None:
            return None
        values = [to_number(part) for part in parts[1:6]]
        if any(value is None for value in values):
            return None
        open_, high, low, close, volume = values
        return Bar(
            timestamp=to_iso(ts), open=open_, high=high, low=low, close=close, volume=volume
        )
