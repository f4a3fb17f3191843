"""Market data ingestion.

Three sources share the `MarketDataSource` contract:
- `CsvSource`: local datasets, cached by file modification time
- `TiingoSource`: chunked, paced EOD vendor with TTL cache
- `PolygonSource`: single-request aggregates vendor with TTL cache

`DataAggregator` chains them per request.
"""
