"""Error taxonomy for data loading and simulation.

Three families matter to callers:
- **Configuration**: missing credentials, unknown strategies, invalid params.
  Fatal, never retried.
- **Data availability**: empty primary series, unreadable datasets,
  vendor-reported unknown symbols. Fatal to the run.
- **Vendor**: non-2xx responses. Rate limits and range rejections are
  retried inside the Tiingo source and only escape when not recoverable.

Cache failures are never raised; they are treated as misses.
"""

from typing import Optional, Sequence


class QuantSimError(Exception):
    """Base class for every error raised by quantsim."""


class ConfigurationError(QuantSimError):
    """Missing credentials, unknown strategy, or malformed request."""


class StrategyValidationError(ConfigurationError):
    """Strategy parameters failed schema validation."""

    def __init__(self, strategy: str, message: str, fields: Sequence[str] = ()):
        self.strategy = strategy
        self.fields = list(fields)
        super().__init__(message)


class DataUnavailableError(QuantSimError):
    """No usable bars for a series the run depends on."""


class DatasetReadError(DataUnavailableError):
    """A dataset file exists on disk but could not be read."""


class VendorError(QuantSimError):
    """A remote data vendor answered with an unusable response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class SymbolNotFoundError(VendorError):
    pass


class VendorAuthError(VendorError):
    pass


class InvalidRequestError(VendorError):
    pass


class RateLimitError(VendorError):
    pass


class EmptyResultError(VendorError):
    """Vendor returned a well-formed response with no bars in it."""


class DatasetFetchError(QuantSimError):
    """Every remote source failed while materialising a dataset."""
