"""
Error taxonomy for the upstream fetch client.

Only three failure kinds ever cross the client boundary. Everything else
(bad status, timeouts, proxy errors) is absorbed by the retry loop until
the budget runs out and then surfaces as UpstreamError.
"""


class FetchError(Exception):
    """Base class for errors raised by UpstreamClient.fetch()."""
    kind = "fetch_error"


class CredentialMissing(FetchError):
    """No session cookie from NAVER_COOKIE or the persisted session file."""
    kind = "credential_missing"

    def __init__(self, path=None):
        self.path = path
        where = f" and {path} is missing or empty" if path else ""
        super().__init__(
            f"Cookie missing: NAVER_COOKIE is not set{where}. "
            "Run the cookie harvester to create it."
        )


class UpstreamUnavailable(FetchError):
    """Circuit breaker is open; callers should back off entirely."""
    kind = "upstream_unavailable"

    def __init__(self, retry_after: float = 0.0):
        self.retry_after = max(0.0, retry_after)
        super().__init__(
            f"Circuit open: upstream unstable, retry after {self.retry_after:.1f}s"
        )


class UpstreamError(FetchError):
    """
    Retries exhausted.

    Fields:
        status   : last HTTP status seen, or None for a transport failure.
        attempts : number of attempts made for this call.
        url      : the target URL.
    The last underlying exception, if any, is chained as __cause__.
    """
    kind = "upstream_error"

    def __init__(self, message: str, status: int | None = None, attempts: int = 0, url: str | None = None):
        self.status = status
        self.attempts = attempts
        self.url = url
        super().__init__(message)
