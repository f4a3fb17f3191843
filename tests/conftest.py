from datetime import datetime, timezone
from typing import Callable, List, Optional

import orjson
import pytest

from quantsim.core.models import Bar
from quantsim.data.http_client import HttpResponse


class FakeHttpClient:
    """
    Records every GET and answers from a queue of responses, or from a
    handler(url, params) when one is given.
    """

    def __init__(
        self,
        responses: Optional[List[HttpResponse]] = None,
        handler: Optional[Callable[[str, dict], HttpResponse]] = None,
    ):
        self.responses = list(responses or [])
        self.handler = handler
        self.calls: List[dict] = []

    def get(self, url, params=None, headers=None):
        self.calls.append(
            {"url": url, "params": dict(params or {}), "headers": dict(headers or {})}
        )
        if self.handler is not None:
            return self.handler(url, dict(params or {}))
        if not self.responses:
            raise AssertionError(f"Unexpected request to {url}")
        return self.responses.pop(0)


def json_response(payload, status_code: int = 200) -> HttpResponse:
    return HttpResponse(status_code=status_code, body=orjson.dumps(payload).decode())


def status_response(status_code: int, body: str = "{}") -> HttpResponse:
    return HttpResponse(status_code=status_code, body=body)


def make_bar(timestamp: str, close: float, volume: float = 1000.0) -> Bar:
    return Bar(
        timestamp=timestamp,
        open=close,
        high=close + 1.0,
        low=close - 1.0,
        close=close,
        volume=volume,
    )


@pytest.fixture
def fake_http():
    """Factory for FakeHttpClient instances."""
    return FakeHttpClient


@pytest.fixture
def bar_factory():
    return make_bar


@pytest.fixture
def json_resp():
    return json_response


@pytest.fixture
def status_resp():
    return status_response


@pytest.fixture
def sleep_recorder():
    calls: List[float] = []

    def sleep(seconds: float) -> None:
        calls.append(seconds)

    sleep.calls = calls
    return sleep


@pytest.fixture
def clock():
    """Returns a fixed-time `now` callable factory."""

    def make(iso: str):
        moment = datetime.fromisoformat(iso.replace("Z", "+00:00"))
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return lambda: moment

    return make
