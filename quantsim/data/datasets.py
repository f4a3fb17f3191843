"""
Dataset materialisation: download remote series once and keep them as local
CSV files the CsvSource can replay offline.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Sequence

from pydantic import BaseModel, Field

from quantsim.core.config import settings
from quantsim.core.exceptions import (
    ConfigurationError,
    DataUnavailableError,
    DatasetFetchError,
)
from quantsim.core.models import BacktestRequest, Bar, DataRequest
from quantsim.data.base import MarketDataSource
from quantsim.data.utils import slugify, sort_bars_chronologically

logger = logging.getLogger(__name__)

CSV_HEADER = "timestamp,open,high,low,close,volume"
REMOTE_SOURCES = ("tiingo", "polygon")


class DatasetSummary(BaseModel):
    rows: int
    start: Optional[str] = None
    end: Optional[str] = None


class FetchedDataset(DatasetSummary):
    source: str


class DatasetRecord(BaseModel):
    """Registry entry handed to ``save_dataset`` after a download."""

    source: str
    symbol: str
    timeframe: str
    start: Optional[str] = None
    end: Optional[str] = None
    adjusted: bool = True
    path: str
    checksum: Optional[str] = None
    rows: int
    created_at: str = Field(..., description="UTC ISO timestamp")


def build_dataset_filename(symbol: str, timeframe: str) -> str:
    return f"{slugify(symbol)}_{slugify(timeframe)}.csv"


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.6f}".rstrip("0").rstrip(".")


def serialize_bars_to_csv(bars: Sequence[Bar]) -> str:
    lines = [CSV_HEADER]
    for bar in bars:
        lines.append(
            ",".join(
                [
                    bar.timestamp,
                    _format_number(bar.open),
                    _format_number(bar.high),
                    _format_number(bar.low),
                    _format_number(bar.close),
                    _format_number(bar.volume),
                ]
            )
        )
    return "\n".join(lines) + "\n"


def _date_part(timestamp: Optional[str]) -> Optional[str]:
    if not timestamp:
        return None
    if "T" in timestamp:
        return timestamp.split("T")[0]
    return timestamp[:10]


def extract_csv_metadata(content: str) -> DatasetSummary:
    """Row count and first/last dates of a dataset CSV (header excluded)."""
    lines = [line.strip() for line in content.splitlines()]
    lines = [line for line in lines if line]
    if len(lines) <= 1:
        return DatasetSummary(rows=0)

    rows = lines[1:]
    first = rows[0].split(",")[0].strip()
    last = rows[-1].split(",")[0].strip()
    return DatasetSummary(rows=len(rows), start=_date_part(first), end=_date_part(last))


def fetch_remote_dataset(
    source: MarketDataSource, request: DataRequest, dataset_path: Path
) -> DatasetSummary:
    """Download bars from ``source`` and write them as CSV to ``dataset_path``."""
    bars = source.load_bars(request)
    if not bars:
        raise DataUnavailableError(
            f"No data returned for {request.symbol} ({request.timeframe}) via {source.id}"
        )

    ordered = sort_bars_chronologically(bars)
    dataset_path = Path(dataset_path)
    dataset_path.parent.mkdir(parents=True, exist_ok=True)
    dataset_path.write_text(serialize_bars_to_csv(ordered), encoding="utf-8")
    logger.info(f"Wrote {len(ordered)} bars from {source.id} to {dataset_path}")

    return DatasetSummary(
        rows=len(ordered),
        start=_date_part(ordered[0].timestamp),
        end=_date_part(ordered[-1].timestamp),
    )


def fetch_dataset_with_fallback(
    sources: Sequence[MarketDataSource], request: DataRequest, dataset_path: Path
) -> FetchedDataset:
    """Try each source in order; the first successful download wins."""
    if not sources:
        raise DatasetFetchError("no remote sources configured")

    failures: List[str] = []
    for source in sources:
        try:
            summary = fetch_remote_dataset(source, request, dataset_path)
        except Exception as e:
            logger.warning(f"{source.id} could not materialise {request.symbol}: {e}")
            failures.append(f"{source.id}: {e}")
            continue
        return FetchedDataset(source=source.id, **summary.model_dump())

    raise DatasetFetchError(f"all remote sources failed: {' | '.join(failures)}")


def derive_preferred_sources(source: str) -> List[str]:
    if source in REMOTE_SOURCES:
        return [source]
    return list(REMOTE_SOURCES)


def ensure_datasets_for_request(
    request: BacktestRequest,
    remote_sources: Mapping[str, MarketDataSource],
    save_dataset: Callable[[DatasetRecord], None],
    datasets_dir: Optional[Path] = None,
    now: Optional[Callable[[], datetime]] = None,
) -> None:
    """
    Make sure every series of ``request`` has a local CSV dataset, downloading
    the missing ones and reporting each download through ``save_dataset``.
    """
    datasets_dir = Path(datasets_dir or settings.DATASETS_DIR)
    now = now or (lambda: datetime.now(timezone.utc))
    for data_request in request.data:
        _ensure_dataset(data_request, remote_sources, save_dataset, datasets_dir, now)


def _ensure_dataset(
    request: DataRequest,
    remote_sources: Mapping[str, MarketDataSource],
    save_dataset: Callable[[DatasetRecord], None],
    datasets_dir: Path,
    now: Callable[[], datetime],
) -> None:
    filename = build_dataset_filename(request.symbol, request.timeframe)
    dataset_path = datasets_dir / filename

    if dataset_path.exists():
        return

    if not request.start or not request.end:
        raise ConfigurationError(
            f"Data request for {request.symbol} {request.timeframe} must include start and end dates."
        )

    if request.source == "csv":
        raise DataUnavailableError(
            f"Dataset missing for {request.symbol} {request.timeframe}. "
            f"Place {filename} in {datasets_dir}."
        )

    preferred = derive_preferred_sources(request.source)
    sources = [remote_sources[name] for name in preferred if name in remote_sources]
    try:
        result = fetch_dataset_with_fallback(sources, request, dataset_path)
    except DatasetFetchError as e:
        raise DatasetFetchError(
            f"Failed to fetch {request.symbol} {request.timeframe} "
            f"({' -> '.join(preferred)}): {e}"
        ) from e

    save_dataset(
        DatasetRecord(
            source=result.source,
            symbol=request.symbol,
            timeframe=request.timeframe,
            start=result.start,
            end=result.end,
            adjusted=request.adjusted,
            path=str(dataset_path),
            rows=result.rows,
            created_at=now().isoformat(),
        )
    )
