import logging
from typing import List, Optional

from opentelemetry import trace

from quantsim.core.models import Bar, DataRequest
from quantsim.data.base import MarketDataSource
from quantsim.data.csv_source import CsvSource
from quantsim.data.polygon import PolygonSource
from quantsim.data.tiingo import TiingoSource

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class DataAggregator:
    """
    Facade for all historical bars.
    Local datasets first, then the vendor the request names.
    With source="auto", failover from Tiingo to Polygon.
    """

    def __init__(
        self,
        csv: Optional[MarketDataSource] = None,
        tiingo: Optional[MarketDataSource] = None,
        polygon: Optional[MarketDataSource] = None,
    ):
        self.csv = csv or CsvSource()
        self.tiingo = tiingo or TiingoSource()
        self.polygon = polygon or PolygonSource()

    @tracer.start_as_current_span("aggregator_load_bars")
    def load_bars(self, request: DataRequest) -> List[Bar]:
        """
        Resolve one series. Returns [] when nothing could be loaded;
        explicit vendor sources propagate their errors.
        """
        bars = self.csv.load_bars(request)
        if bars:
            return bars

        if request.source == "tiingo":
            return self.tiingo.load_bars(request)

        if request.source == "polygon":
            return self.polygon.load_bars(request)

        if request.source == "auto":
            try:
                return self.tiingo.load_bars(request)
            except Exception as e:
                logger.warning(
                    f"Tiingo failed for {request.symbol} {request.timeframe} ({e}). "
                    "Switching to Polygon."
                )
            try:
                return self.polygon.load_bars(request)
            except Exception as e:
                logger.warning(
                    f"Polygon failed for {request.symbol} {request.timeframe} ({e}). "
                    "No data available."
                )

        return []
