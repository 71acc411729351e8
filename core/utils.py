import logging
import urllib.parse
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> datetime:
    """Return value as an aware UTC datetime (naive values are assumed UTC)."""
    if value is None:
        return utc_now()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def mask_url(url: Optional[str]) -> str:
    """
    Strip path and query from a webhook URL for safe logging.

    Chat webhook URLs carry their credentials in the query string, so only
    scheme and host are ever logged.
    """
    if not url:
        return "<none>"
    try:
        parsed = urllib.parse.urlparse(url)
        if not parsed.hostname:
            return "<invalid-url>"
        return f"{parsed.scheme}://{parsed.hostname}/..."
    except Exception:
        return "<invalid-url>"


def to_number(value: Any, default: float = 0.0) -> float:
    """
    Coerce a CRM field to a float.

    CRM payloads send numbers as ints, floats, numeric strings or null.
    """
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.debug(f"Non-numeric CRM value {value!r}, using {default}")
        return default
