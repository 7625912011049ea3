from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import pytest
import requests

from adsdesk.config import Settings
from adsdesk.infrastructure.error_handling import BackoffPolicy
from adsdesk.infrastructure.executor import ResilientExecutor, StaticCredentialProvider
from adsdesk.infrastructure.pacer import RequestPacer
from adsdesk.integrations.meta_client import MetaClient


def make_response(status: int = 200, body: Any = None, text: Optional[str] = None) -> requests.Response:
    r = requests.Response()
    r.status_code = status
    if text is not None:
        r._content = text.encode("utf-8")
    else:
        r._content = json.dumps(body if body is not None else {}).encode("utf-8")
    r.encoding = "utf-8"
    return r


class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSession:
    """
    Stand-in for requests.Session. Each call pops the next scripted outcome:
    a Response is returned, an exception is raised. The last outcome repeats.
    """

    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes)
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def _next(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        self.calls.append({"method": method, "url": url, **kwargs})
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if callable(outcome) and not isinstance(outcome, requests.Response):
            outcome = outcome(method, url, **kwargs)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def get(self, url: str, **kwargs: Any) -> requests.Response:
        return self._next("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> requests.Response:
        return self._next("POST", url, **kwargs)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def pacer(clock: FakeClock) -> RequestPacer:
    return RequestPacer(0.2, clock=clock, sleep=clock.sleep)


def build_executor(session: FakeSession, clock: FakeClock, token: str = "tok") -> ResilientExecutor:
    return ResilientExecutor(
        StaticCredentialProvider(token),
        RequestPacer(0.2, clock=clock, sleep=clock.sleep),
        session=session,
        backoff=BackoffPolicy(),
        sleep=clock.sleep,
    )


def build_client(session: FakeSession, clock: FakeClock, **settings: Any) -> MetaClient:
    cfg = Settings(**{"enrichment_workers": 1, **settings})
    return MetaClient(build_executor(session, clock), cfg)
