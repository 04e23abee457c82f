"""
HTTP front door: turns end-user requests into upstream URLs, calls
UpstreamClient.fetch() and forwards the payload.

Failures never leak stack traces; they map to a non-2xx JSON body
{"error": <kind>, "details": <message>}.
"""

import json
import logging
import math
import re
import time
from urllib.parse import parse_qsl, quote, unquote, urlencode, urlparse, urlunparse

from aiohttp import web
from dotenv import load_dotenv

from .client import UpstreamClient
from .errors import CredentialMissing, FetchError, UpstreamError, UpstreamUnavailable
from .settings import FetchConfig, configure_logging, load_fetch_config

logger = logging.getLogger(__name__)

NAVER_BASE = "https://search.shopping.naver.com/ns/v1/search/paged-composite-cards"

DEFAULT_PARAMS = {
    "searchMethod": "all.basic",
    "listPage": "1",
    "isFreshCategory": "false",
    "isOriginalQuerySearch": "false",
    "isCatalogDiversifyOff": "false",
    "hiddenNonProductCard": "true",
    "hasMore": "true",
    "hasMoreAd": "true",
}

STATUS_BY_ERROR = {
    UpstreamUnavailable: 503,
    CredentialMissing: 503,
    UpstreamError: 502,
}

CLIENT_KEY = web.AppKey("client", UpstreamClient)

_INT_PREFIX = re.compile(r"^\s*([-+]?\d+)")


def _clamp(x: int, lo: int, hi: int) -> int:
    return min(hi, max(lo, x))


def _leading_int(raw: str | None, default: int) -> int:
    """Leading integer of `raw`; `default` when missing, unparsable or zero."""
    m = _INT_PREFIX.match(raw or "")
    if not m:
        return default
    return int(m.group(1)) or default


def normalize_query(s: str) -> str:
    return re.sub(r"\s+", " ", s.strip().lower())


def build_from_query(q_raw: str, page_size_raw: str | None = None, cursor_raw: str | None = None) -> tuple[str, str]:
    """Build the upstream URL for a search term. Returns (target_url, query)."""
    query = normalize_query(q_raw)
    page_size = _clamp(_leading_int(page_size_raw, 50), 1, 80)
    cursor = _clamp(_leading_int(cursor_raw, 1), 1, 1_000_000)
    params = {"query": query, "pageSize": str(page_size), "cursor": str(cursor), **DEFAULT_PARAMS}
    return f"{NAVER_BASE}?{urlencode(params)}", query


def build_from_url(url_raw: str) -> tuple[str, str]:
    """
    Accept a full upstream URL (optionally percent-encoded), fill in missing
    default params. Returns (target_url, query).

    Raises:
        ValueError: not a URL, or not the paged-composite-cards endpoint.
    """
    raw = url_raw.strip()
    try:
        raw = unquote(raw, errors="strict")
    except UnicodeDecodeError:
        pass

    parsed = urlparse(raw)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"Invalid URL: {url_raw}")
    if not raw.startswith(NAVER_BASE):
        raise ValueError(
            f"Unsupported upstream URL. Allowed: {NAVER_BASE}; "
            f"got: {parsed.scheme}://{parsed.netloc}{parsed.path}"
        )

    params = parse_qsl(parsed.query, keep_blank_values=True)
    present = {k for k, _ in params}
    params += [(k, v) for k, v in DEFAULT_PARAMS.items() if k not in present]
    query = next((v for k, v in params if k == "query"), "")
    return urlunparse(parsed._replace(query=urlencode(params))), query


def resolve_target(request: web.Request) -> tuple[str, str]:
    url_raw = request.query.get("url", "")
    q_raw = request.query.get("query", "")
    if not url_raw and not q_raw:
        raise ValueError("Provide either 'query' or 'url'.")
    if url_raw:
        return build_from_url(url_raw)
    return build_from_query(q_raw, request.query.get("pageSize"), request.query.get("cursor"))


def error_response(exc: FetchError) -> web.Response:
    status = STATUS_BY_ERROR.get(type(exc), 502)
    headers = {}
    if isinstance(exc, UpstreamUnavailable):
        headers["Retry-After"] = str(max(1, math.ceil(exc.retry_after)))
    return web.json_response({"error": exc.kind, "details": str(exc)}, status=status, headers=headers)


async def naver_search(request: web.Request) -> web.Response:
    start = time.perf_counter()
    try:
        target_url, query = resolve_target(request)
    except ValueError as e:
        return web.json_response(
            {
                "error": "invalid_request",
                "details": str(e),
                "examples": [
                    "/naver?query=iphone",
                    "/naver?url=" + quote(f"{NAVER_BASE}?cursor=1&pageSize=50&query=iphone", safe=""),
                ],
            },
            status=400,
        )

    client = request.app[CLIENT_KEY]
    try:
        data = await client.fetch(target_url)
    except FetchError as e:
        took = (time.perf_counter() - start) * 1000
        logger.error("%s | q=%r | %s | %.0fms", e.kind, query, e, took)
        return error_response(e)

    took = (time.perf_counter() - start) * 1000
    logger.info("200 | q=%r | %.0fms", query, took)
    if isinstance(data, str):
        return web.Response(text=data)
    return web.json_response(data)


async def debug_resolve(request: web.Request) -> web.Response:
    """Show the upstream URL a request would hit, without calling it."""
    try:
        target_url, query = resolve_target(request)
    except ValueError as e:
        return web.json_response({"ok": False, "error": str(e)}, status=400)
    return web.json_response({"ok": True, "targetUrl": target_url, "query": query})


async def debug_upstream(request: web.Request) -> web.Response:
    """Run one request through the full fetch path and preview the payload."""
    start = time.perf_counter()
    target_url, _ = build_from_query(
        request.query.get("query", "iphone"),
        request.query.get("pageSize", "5"),
        request.query.get("cursor", "1"),
    )

    try:
        data = await request.app[CLIENT_KEY].fetch(target_url)
    except FetchError as e:
        return error_response(e)

    text = data if isinstance(data, str) else json.dumps(data, ensure_ascii=False)
    return web.json_response(
        {
            "status": 200,
            "tookMs": round((time.perf_counter() - start) * 1000),
            "url": target_url,
            "dataPreview": text[:200] + ("..." if len(text) > 200 else ""),
        }
    )


async def debug_cookie(request: web.Request) -> web.Response:
    selector = request.app[CLIENT_KEY].selector
    try:
        line = await selector.load_cookie()
    except CredentialMissing:
        line = ""
    return web.json_response({"length": len(line), "preview": line[:160]})


async def health(request: web.Request) -> web.Response:
    return web.json_response({"ok": True})


async def index(request: web.Request) -> web.Response:
    return web.Response(text="Naver Scraper API is running. Try /naver?query=iphone")


@web.middleware
async def log_requests(request: web.Request, handler):
    logger.debug("[REQ] %s %s", request.method, request.path_qs)
    try:
        return await handler(request)
    except web.HTTPNotFound:
        return web.json_response({"error": "not_found", "path": request.path_qs}, status=404)
    except web.HTTPException:
        raise
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.path_qs)
        return web.json_response({"error": "internal_error"}, status=500)


def create_app(client: UpstreamClient | None = None, config: FetchConfig | None = None) -> web.Application:
    """
    Build the aiohttp application.

    If `client` is given the caller owns its lifecycle; otherwise one is
    built from `config` and opened/closed with the app.
    """
    app = web.Application(middlewares=[log_requests])

    if client is not None:
        app[CLIENT_KEY] = client
    else:
        app[CLIENT_KEY] = UpstreamClient(config or load_fetch_config())

        async def client_ctx(app: web.Application):
            async with app[CLIENT_KEY]:
                yield

        app.cleanup_ctx.append(client_ctx)

    app.router.add_get("/", index)
    app.router.add_get("/health", health)
    app.router.add_get("/naver", naver_search)
    app.router.add_get("/naver/_debug/resolve", debug_resolve)
    app.router.add_get("/_debug/cookie", debug_cookie)
    app.router.add_get("/_debug/upstream", debug_upstream)
    return app


def main() -> None:
    load_dotenv()
    config = load_fetch_config()
    configure_logging(config.log_level)
    web.run_app(create_app(config=config), port=config.port)


if __name__ == "__main__":
    main()
