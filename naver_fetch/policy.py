"""
Policy module: decides whether an upstream attempt succeeded, whether to
retry it, and how long to wait first.

The logic is:
- explicit
- configurable
- easily auditable

There is a single failure class for retry purposes: any status outside
[200, 400) or any transport error is retried until the budget is spent.
"""

import asyncio
import random
from dataclasses import dataclass, field

import aiohttp

from naver_fetch.metrics import AttemptResult
from naver_fetch.settings import FetchConfig


# Exceptions treated as transport-level failures of one attempt.
RETRYABLE_ERRORS = (
    aiohttp.ClientError,  # connect, proxy, payload, disconnect
    asyncio.TimeoutError,
)


def is_success_status(status: int) -> bool:
    return 200 <= status < 400


@dataclass
class RetryPolicy:
    """
    Bounded retries with jittered exponential backoff.

    Attempts are numbered 1..max_retries + 1. The wait before attempt n > 1
    is base_ms * 2**(n - 2) plus uniform(0, jitter_ms). A separate
    pre-request delay, uniform in [delay_min_ms, delay_max_ms], runs once
    per call before attempt 1.
    """
    max_retries: int = 2
    base_ms: float = 300
    jitter_ms: float = 200
    delay_min_ms: float = 100
    delay_max_ms: float = 400
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")

    @classmethod
    def from_config(cls, config: FetchConfig, rng: random.Random | None = None) -> "RetryPolicy":
        return cls(
            max_retries=config.upstream_max_retries,
            base_ms=config.retry_base_ms,
            jitter_ms=config.retry_jitter_ms,
            delay_min_ms=config.rand_delay_min_ms,
            delay_max_ms=config.rand_delay_max_ms,
            rng=rng or random.Random(),
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def attempts(self) -> range:
        return range(1, self.max_attempts + 1)

    def backoff_s(self, attempt: int) -> float:
        """Seconds to sleep before `attempt` (attempt 1 never waits)."""
        if attempt <= 1:
            return 0.0
        base = self.base_ms * (2 ** (attempt - 2))
        jitter = self.rng.uniform(0, self.jitter_ms)
        return (base + jitter) / 1000.0

    def pre_request_delay_s(self) -> float:
        lo, hi = sorted((self.delay_min_ms, self.delay_max_ms))
        return self.rng.uniform(lo, hi) / 1000.0

    def should_retry(self, result: AttemptResult) -> bool:
        if result.ok:
            return False
        # the final allowed attempt is never retried
        return result.attempt < self.max_attempts
