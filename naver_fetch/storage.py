import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def save_cookie_artifacts(cookie_line: str, cookies: list[dict], cookie_path: Path, dump_path: Path | None = None) -> None:
    """
    Persist the harvested session: the Cookie header line the client reads,
    plus an optional JSON dump of the raw browser cookies for debugging.

    This intentionally keeps the storage layer minimal, but centralizes
    the filesystem layout so it can be replaced later.
    """
    cookie_path = Path(cookie_path)
    cookie_path.parent.mkdir(parents=True, exist_ok=True)
    cookie_path.write_text(cookie_line, encoding="utf-8")
    logger.info("Saved %s", cookie_path)

    if dump_path is not None:
        dump_path = Path(dump_path)
        dump_path.write_text(json.dumps(cookies, ensure_ascii=False, indent=2), encoding="utf-8")
        logger.info("Saved %s", dump_path)


def invalidate_cookie(cookie_path: Path) -> None:
    """Truncate the session file so the client reports CredentialMissing."""
    try:
        Path(cookie_path).write_text("", encoding="utf-8")
    except OSError as e:
        logger.warning("Could not truncate %s: %s", cookie_path, e)
