import asyncio
import random

import pytest

from naver_fetch.client import UpstreamClient
from naver_fetch.identity import IdentitySelector
from naver_fetch.policy import RetryPolicy
from naver_fetch.settings import FetchConfig


class FakeClock:
    """Manually advanced stand-in for time.monotonic()."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeResponse:
    def __init__(self, status: int = 200, body: str | bytes = '{"items": [1, 2]}', content_type: str = "application/json"):
        self.status = status
        self.headers = {"Content-Type": content_type}
        self._body = body.encode("utf-8") if isinstance(body, str) else body

    async def read(self) -> bytes:
        return self._body

    def get_encoding(self) -> str:
        _, _, charset = self.headers["Content-Type"].partition("charset=")
        return charset.strip() or "utf-8"


class _RequestCtx:
    def __init__(self, session, url, outcome):
        self.session = session
        self.url = url
        self.outcome = outcome

    async def __aenter__(self):
        self.session.events.append(("start", self.url))
        if self.session.latency:
            await asyncio.sleep(self.session.latency)
        if isinstance(self.outcome, BaseException):
            self.session.events.append(("end", self.url))
            raise self.outcome
        return self.outcome

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.session.events.append(("end", self.url))
        return False


class FakeSession:
    """
    Duck-typed aiohttp.ClientSession.

    Each get() consumes the next outcome (a FakeResponse or an exception to
    raise); the last outcome repeats forever.
    """

    def __init__(self, outcomes=None, latency: float = 0.0):
        self.outcomes = list(outcomes or [FakeResponse()])
        self.latency = latency
        self.calls = []
        self.events = []

    def get(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        return _RequestCtx(self, url, outcome)


class SleepRecorder:
    """Records requested delays and yields to the loop without waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def make_client(sleeper):
    """Factory: UpstreamClient wired to a FakeSession with deterministic randomness."""

    def factory(session=None, sleep=None, selector=None, **overrides):
        defaults = dict(
            naver_cookie="NID_AUT=abc; NID_SES=def",
            rand_delay_min_ms=0,
            rand_delay_max_ms=0,
            retry_base_ms=100,
            upstream_max_retries=2,
        )
        defaults.update(overrides)
        config = FetchConfig(**defaults)
        rng = random.Random(7)
        return UpstreamClient(
            config=config,
            session=session or FakeSession(),
            selector=selector or IdentitySelector.from_config(config, rng=rng),
            policy=RetryPolicy.from_config(config, rng=rng),
            sleep=sleep or sleeper,
        )

    return factory
