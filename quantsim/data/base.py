from abc import ABC, abstractmethod
from typing import List

from quantsim.core.models import Bar, DataRequest


class MarketDataSource(ABC):
    """
    Capability contract shared by every bar source.

    Implementations differ entirely in caching and retry policy; the
    DataAggregator chains them without knowing which is which.
    """

    id: str

    @abstractmethod
    def load_bars(self, request: DataRequest) -> List[Bar]:
        """
        Return bars for (symbol, timeframe, [start, end], adjusted),
        sorted ascending by timestamp with no duplicate timestamps.
        """
        pass
