from dataclasses import dataclass


@dataclass
class AttemptResult:
    """
    Normalized outcome of a single upstream attempt.

    Fields:
        url         : The URL that was requested.
        attempt     : 1-based attempt number within the call.
        status      : HTTP status code if a response arrived (e.g. 200, 429).
        error_type  : Exception class name for transport failures
                      (e.g. "ServerTimeoutError", "ClientHttpProxyError").
        error       : Exception message for transport failures.
        elapsed_s   : Time from request start to full body read (seconds).
        proxy_hint  : "host:port" of the proxy used, or "direct".
    """
    url: str
    attempt: int
    status: int | None = None
    error_type: str | None = None
    error: str | None = None
    elapsed_s: float = 0.0
    proxy_hint: str = "direct"

    @property
    def ok(self) -> bool:
        return self.error_type is None and self.status is not None and 200 <= self.status < 400

    def describe(self) -> str:
        if self.error_type is not None:
            return f"{self.error_type}: {self.error}" if self.error else self.error_type
        return f"Bad status {self.status}"
