"""
Minimal HTTP layer so data sources can be tested without real network calls.

Sources depend on the ``HttpClient`` protocol; tests substitute a fake that
records calls. The client never retries: retry policy belongs to the source.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol

import requests

from quantsim.core.config import settings
from quantsim.core.exceptions import VendorError


@dataclass(frozen=True)
class HttpResponse:
    status_code: int
    body: str
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class HttpClient(Protocol):
    def get(
        self,
        url: str,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> HttpResponse: ...


class RequestsHttpClient:
    """
    ``HttpClient`` backed by a ``requests.Session``.
    """

    def __init__(self, timeout: Optional[float] = None, session: Optional[requests.Session] = None):
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def get(
        self,
        url: str,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> HttpResponse:
        try:
            resp = self.session.get(
                url, params=params, headers=dict(headers or {}), timeout=self.timeout
            )
        except requests.RequestException as e:
            # Query params are left out of the message: they may carry API keys.
            raise VendorError(f"GET {url} failed: {e}") from e

        return HttpResponse(
            status_code=resp.status_code,
            body=resp.text,
            headers=dict(resp.headers),
        )
