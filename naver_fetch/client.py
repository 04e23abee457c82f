import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable

import aiohttp

from .breaker import CircuitBreaker
from .bulkhead import Bulkhead
from .cache import TTLCache
from .errors import UpstreamError, UpstreamUnavailable
from .identity import Identity, IdentitySelector
from .metrics import AttemptResult
from .policy import RETRYABLE_ERRORS, RetryPolicy, is_success_status
from .settings import FetchConfig, ProxySettings, load_fetch_config

logger = logging.getLogger(__name__)


DEFAULT_HTTP_HEADERS = {
    "accept": "application/json, text/plain, */*",
    "accept-language": "en-US,en;q=0.9,id;q=0.8",
    "sec-ch-ua": '"Chromium";v="120", "Not=A?Brand";v="24"',
    "sec-ch-ua-mobile": "?0",
    "sec-ch-ua-platform": '"Windows"',
    "connection": "keep-alive",
}


def build_headers(identity: Identity) -> dict[str, str]:
    return {
        **DEFAULT_HTTP_HEADERS,
        "cookie": identity.cookie,
        "referer": identity.referer,
        "user-agent": identity.user_agent,
    }


class UpstreamClient:
    """
    Resilient GET client for the rate-limited, bot-sensitive upstream.

    Owns the shared result cache, circuit breaker and bulkhead, so one
    instance should be built per process and passed to every caller.

    fetch(url):
        cache hit      -> return immediately
        breaker open   -> UpstreamUnavailable
        bulkhead slot  -> held until all attempts finish
        random delay   -> once per call
        attempts       -> fresh proxy/UA/referer each, cookie resolved once,
                          jittered exponential backoff between them
        success        -> cache + breaker success
        exhausted      -> breaker failure + UpstreamError

    Use as an async context manager when no session is injected; the
    client then owns an aiohttp.ClientSession sized to the bulkhead.
    """

    def __init__(
        self,
        config: FetchConfig | None = None,
        session: aiohttp.ClientSession | None = None,
        selector: IdentitySelector | None = None,
        cache: TTLCache | None = None,
        breaker: CircuitBreaker | None = None,
        bulkhead: Bulkhead | None = None,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        # an injected TTLCache may be empty, hence falsy
        self.config = config if config is not None else FetchConfig()
        self.selector = selector if selector is not None else IdentitySelector.from_config(self.config)
        self.cache = cache if cache is not None else TTLCache(self.config.cache_ttl_ms, self.config.cache_max_entries)
        self.breaker = (
            breaker if breaker is not None
            else CircuitBreaker(self.config.cb_fail_threshold, self.config.cb_open_ms)
        )
        self.bulkhead = bulkhead if bulkhead is not None else Bulkhead(self.config.conc_upstream)
        self.policy = policy if policy is not None else RetryPolicy.from_config(self.config)
        self.timeout = aiohttp.ClientTimeout(total=self.config.upstream_timeout_ms / 1000.0)
        self._sleep = sleep

        self.session = session
        self._owns_session = False

    @classmethod
    def from_env(cls, **kwargs) -> "UpstreamClient":
        return cls(config=load_fetch_config(), **kwargs)

    async def __aenter__(self):
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self.session is None:
            connector = aiohttp.TCPConnector(limit=self.bulkhead.capacity, keepalive_timeout=30)
            self.session = aiohttp.ClientSession(connector=connector)
            self._owns_session = True
        return self.session

    async def close(self) -> None:
        if self._owns_session and self.session is not None:
            await self.session.close()
            self.session = None
            self._owns_session = False

    async def fetch(self, target_url: str) -> Any:
        """
        Fetch `target_url` through cache, breaker, bulkhead and retries.

        Returns:
            The decoded payload (JSON when the upstream says so, else text).

        Raises:
            UpstreamUnavailable : breaker is open.
            CredentialMissing   : no session cookie available.
            UpstreamError       : retries exhausted.
        """
        cached = self.cache.get(target_url)
        if cached is not None:
            logger.debug("Cache hit: %s", target_url)
            return cached

        if not self.breaker.can_attempt():
            raise UpstreamUnavailable(self.breaker.retry_after())

        async with self.bulkhead.slot():
            await self._sleep(self.policy.pre_request_delay_s())
            cookie = await self.selector.load_cookie()
            return await self._attempt_loop(target_url, cookie)

    async def _attempt_loop(self, url: str, cookie: str) -> Any:
        result = None
        last_exc = None

        for attempt in self.policy.attempts():
            if attempt > 1:
                delay = self.policy.backoff_s(attempt)
                logger.warning(
                    "Retry %d/%d for %s in %.2fs (last: %s)",
                    attempt - 1, self.policy.max_retries, url, delay, result.describe(),
                )
                await self._sleep(delay)

            identity = self.selector.identity_for(cookie)
            result, payload, exc = await self._attempt(url, attempt, identity)
            last_exc = exc

            if result.ok:
                self.cache.set(url, payload)
                self.breaker.on_success()
                logger.debug(
                    "OK %s | attempt=%d proxy=%s %.0fms",
                    result.status, attempt, result.proxy_hint, result.elapsed_s * 1000,
                )
                return payload

            if not self.policy.should_retry(result):
                break

        self.breaker.on_failure()
        logger.error("Upstream failed after %d attempts: %s (%s)", result.attempt, url, result.describe())
        raise UpstreamError(
            f"Upstream failed after {result.attempt} attempts: {result.describe()}",
            status=result.status,
            attempts=result.attempt,
            url=url,
        ) from last_exc

    async def _attempt(self, url: str, attempt: int, identity: Identity):
        """
        One GET through the chosen proxy.

        Returns (AttemptResult, payload or None, transport exception or None).
        """
        session = self._ensure_session()
        t0 = time.perf_counter()
        result = AttemptResult(url=url, attempt=attempt, proxy_hint=identity.proxy_hint)
        proxy = identity.proxy

        try:
            async with session.get(
                url, headers=build_headers(identity),
                proxy=proxy.server if proxy else None, proxy_auth=proxy_auth_for(proxy),
                timeout=self.timeout, allow_redirects=False,
            ) as resp:
                result.status = resp.status
                payload = None
                if is_success_status(resp.status):
                    body = decode_body(await resp.read(), resp.get_encoding())
                    payload = decode_payload(body, resp.headers.get("Content-Type", ""))
                result.elapsed_s = time.perf_counter() - t0
                return result, payload, None
        except RETRYABLE_ERRORS as e:
            result.elapsed_s = time.perf_counter() - t0
            result.error_type = type(e).__name__
            result.error = proxy.redact(str(e)) if proxy else str(e)
            return result, None, e


def proxy_auth_for(proxy: ProxySettings | None) -> aiohttp.BasicAuth | None:
    if proxy is None or not proxy.username:
        return None
    return aiohttp.BasicAuth(proxy.username, proxy.password or "")


def decode_body(raw: bytes, encoding: str | None) -> str:
    """Bytes to text with the declared charset; undecodable bytes become U+FFFD."""
    try:
        return raw.decode(encoding or "utf-8", errors="replace")
    except LookupError:
        # unknown charset label
        return raw.decode("utf-8", errors="replace")


def decode_payload(body: str, content_type: str) -> Any:
    """JSON when the upstream labels it so and it parses, else the raw text."""
    if "json" not in content_type.lower():
        return body
    try:
        return json.loads(body)
    except ValueError:
        return body
