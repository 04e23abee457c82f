import argparse
import asyncio
import logging
import random
from pathlib import Path
from urllib.parse import parse_qs, quote, urlparse

from dotenv import load_dotenv
from playwright.async_api import async_playwright, Error as PlaywrightError

from .identity import sanitize_cookie_line
from .settings import FetchConfig, ProxySettings, configure_logging, load_fetch_config
from .storage import invalidate_cookie, save_cookie_artifacts

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_URL = "https://search.shopping.naver.com/ns/search?query=iphone"
COOKIE_DOMAIN = "naver.com"


def cookie_header_from(cookies: list[dict], domain: str = COOKIE_DOMAIN) -> str:
    """Join browser cookies for `domain` into one Cookie header line."""
    pairs = [
        f"{c['name']}={c['value']}"
        for c in cookies
        if domain in (c.get("domain") or "") and c.get("name") and isinstance(c.get("value"), str)
    ]
    return sanitize_cookie_line("; ".join(pairs))


def priming_api_url(search_url: str) -> str:
    """API call made from inside the page so the upstream sets its API cookies."""
    q = parse_qs(urlparse(search_url).query).get("query", ["iphone"])[0] or "iphone"
    return (
        "https://search.shopping.naver.com/ns/v1/search/paged-composite-cards"
        f"?cursor=1&pageSize=10&query={quote(q)}&searchMethod=all.basic"
    )


class CookieHarvester:
    """
    Real-browser session harvester using Playwright.

    - Single browser per context manager (__aenter__/__aexit__)
    - Routes through the first configured proxy, with authentication
    - Visits the search page, acts a little human, primes the API
    - Collects upstream cookies (HttpOnly included) as a Cookie header
    """

    def __init__(self, config: FetchConfig, proxy: ProxySettings | None = None, search_url: str | None = None):
        self.config = config
        self.proxy = proxy
        self.search_url = search_url or config.naver_referer or DEFAULT_SEARCH_URL

        self._playwright = None
        self._browser = None
        self._context = None

    async def __aenter__(self):
        self._playwright = await async_playwright().start()

        proxy_dict = None
        if self.proxy and self.proxy.server:
            proxy_dict = {"server": self.proxy.server}
            if self.proxy.username:
                proxy_dict["username"] = self.proxy.username
                proxy_dict["password"] = self.proxy.password or ""

        self._browser = await self._playwright.chromium.launch(
            headless=self.config.headless,
            proxy=proxy_dict,
            args=["--no-sandbox", "--disable-dev-shm-usage"],
        )

        context_args = {
            "ignore_https_errors": True,
            "extra_http_headers": {"referer": "https://search.shopping.naver.com/"},
        }
        if self.config.naver_user_agent:
            context_args["user_agent"] = self.config.naver_user_agent
        self._context = await self._browser.new_context(**context_args)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if self._context:
            await self._context.close()
        if self._browser:
            await self._browser.close()
        if self._playwright:
            await self._playwright.stop()

    async def _pause(self, page, lo_ms: int, spread_ms: int) -> None:
        await page.wait_for_timeout(lo_ms + random.random() * spread_ms)

    async def harvest(self) -> tuple[str, list[dict]]:
        """Returns (cookie header line, raw cookie dicts for the upstream domain)."""
        page = await self._context.new_page()
        try:
            logger.info("Opening %s", self.search_url)
            try:
                await page.goto(self.search_url, wait_until="networkidle", timeout=60_000)
            except PlaywrightError:
                logger.warning("Initial navigation failed, retrying with domcontentloaded")
                await page.goto(self.search_url, wait_until="domcontentloaded", timeout=30_000)

            await self._pause(page, 1200, 800)
            await page.evaluate("window.scrollTo(0, document.body.scrollHeight * 0.5)")
            await self._pause(page, 600, 600)

            if not self.config.headless:
                await asyncio.to_thread(input, "If a login prompt appears, log in, then press ENTER here. ")

            try:
                await page.evaluate(
                    "async (api) => { try { await fetch(api, { credentials: 'include' }); } catch (e) {} }",
                    priming_api_url(self.search_url),
                )
                await self._pause(page, 800, 600)
                await page.reload(wait_until="networkidle")
            except PlaywrightError as e:
                logger.warning("Cookie priming failed, continuing with what we have: %s", e)

            cookies = [c for c in await self._context.cookies() if COOKIE_DOMAIN in (c.get("domain") or "")]
            return cookie_header_from(cookies), cookies
        finally:
            await page.close()


async def run(config: FetchConfig, search_url: str | None = None, dump_path: Path | None = None) -> str:
    pool = config.proxy_pool
    proxy = pool[0] if pool else None
    try:
        async with CookieHarvester(config, proxy=proxy, search_url=search_url) as harvester:
            header, cookies = await harvester.harvest()
    except Exception:
        invalidate_cookie(config.cookie_path)
        raise
    save_cookie_artifacts(header, cookies, config.cookie_path, dump_path)
    return header


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Harvest an upstream session cookie with a real browser.")
    parser.add_argument("--url", help="search page to open (default: NAVER_REFERER or an iphone search)")
    parser.add_argument("--dump", default="cookies.json", help="where to write the raw cookie JSON")
    args = parser.parse_args(argv)

    load_dotenv()
    config = load_fetch_config()
    configure_logging(config.log_level)

    try:
        header = asyncio.run(run(config, search_url=args.url, dump_path=Path(args.dump)))
    except Exception as e:
        logger.error("Harvester failed: %s", e)
        raise SystemExit(1)

    preview = header[:220] + ("..." if len(header) > 220 else "")
    print(f"Cookie captured and saved to {config.cookie_path}")
    print(f"Preview: {preview}")


if __name__ == "__main__":
    main()
