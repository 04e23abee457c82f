"""
Per-attempt request identity: proxy, user-agent, referer and session cookie.

Proxy, user-agent and referer are re-picked on every attempt so retries
present a different fingerprint. The cookie belongs to the authenticated
session and is resolved once per call.
"""

import asyncio
import random
import re
from dataclasses import dataclass
from pathlib import Path

from .errors import CredentialMissing
from .settings import FetchConfig, ProxySettings


USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/114.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/15.1 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Edge/91.0.864.67 Chrome/91.0.4472.124",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/118.0.0.0 Safari/537.36",
]

REFERERS = [
    "https://search.shopping.naver.com/ns/search?query=iphone",
    "https://search.shopping.naver.com/ns/search?query=samsung",
    "https://search.shopping.naver.com/ns/search?query=macbook",
    "https://search.shopping.naver.com/ns/search?query=ps5",
]


@dataclass(frozen=True)
class Identity:
    """
    What one attempt looks like to the upstream.

    Fields:
        proxy      : forward proxy for this attempt, or None for direct.
        user_agent : User-Agent header value.
        referer    : Referer header value.
        cookie     : Cookie header value (same for all attempts of a call).
    """
    proxy: ProxySettings | None
    user_agent: str
    referer: str
    cookie: str

    @property
    def proxy_hint(self) -> str:
        return self.proxy.hint if self.proxy else "direct"


def sanitize_cookie_line(s: str) -> str:
    """
    Normalize a pasted or harvested Cookie header into a single line.

    Strips a leading "Cookie:" label, surrounding quotes and newlines, and
    tidies the "; " separators.
    """
    s = s.strip()
    s = re.sub(r"^cookie\s*:", "", s, flags=re.IGNORECASE).strip()
    s = re.sub(r"^['\"]|['\"]$", "", s)
    s = re.sub(r"\r?\n", " ", s)
    s = re.sub(r"\s*;\s*", "; ", s)
    return s.strip().rstrip(";").strip()


class IdentitySelector:
    """
    Picks proxy / UA / referer uniformly at random (with replacement) and
    resolves the session cookie.

    Pass a seeded `random.Random` (or any object with `choice`) as `rng`
    to get deterministic selection.
    """

    def __init__(
        self,
        proxies: list[ProxySettings] | None = None,
        user_agent: str | None = None,
        referer: str | None = None,
        cookie: str | None = None,
        cookie_path: str | Path = "session.cookie",
        rng: random.Random | None = None,
    ):
        self.proxies = list(proxies or [])
        self.user_agent = (user_agent or "").strip() or None
        self.referer = (referer or "").strip() or None
        self.cookie = (cookie or "").strip() or None
        self.cookie_path = Path(cookie_path)
        self.rng = rng or random.Random()

    @classmethod
    def from_config(cls, config: FetchConfig, rng: random.Random | None = None) -> "IdentitySelector":
        return cls(
            proxies=config.proxy_pool,
            user_agent=config.naver_user_agent,
            referer=config.naver_referer,
            cookie=config.naver_cookie,
            cookie_path=config.cookie_path,
            rng=rng,
        )

    def select_proxy(self) -> ProxySettings | None:
        if not self.proxies:
            return None
        return self.rng.choice(self.proxies)

    def select_user_agent(self) -> str:
        return self.user_agent or self.rng.choice(USER_AGENTS)

    def select_referer(self) -> str:
        return self.referer or self.rng.choice(REFERERS)

    def resolve_cookie(self) -> str:
        """
        NAVER_COOKIE wins; otherwise read and trim the session file.

        Raises:
            CredentialMissing: neither source yields a non-empty cookie.
        """
        if self.cookie:
            return self.cookie
        try:
            cookie = self.cookie_path.read_text(encoding="utf-8").strip()
        except OSError:
            raise CredentialMissing(self.cookie_path) from None
        if not cookie:
            # the harvester truncates the file when it fails
            raise CredentialMissing(self.cookie_path)
        return cookie

    async def load_cookie(self) -> str:
        """resolve_cookie() with the session file read off the event loop."""
        if self.cookie:
            return self.cookie
        return await asyncio.to_thread(self.resolve_cookie)

    def identity_for(self, cookie: str) -> Identity:
        """Fresh proxy / UA / referer around an already-resolved cookie."""
        return Identity(
            proxy=self.select_proxy(),
            user_agent=self.select_user_agent(),
            referer=self.select_referer(),
            cookie=cookie,
        )
