"""Helpers for keeping connection strings and download tokens out of logs."""

from __future__ import annotations

from urllib.parse import urlparse


def redact_database_url(url: str) -> str:
    """Return DATABASE_URL with the password masked."""
    raw = (url or "").strip()
    if not raw:
        return "EMPTY_DATABASE_URL"
    try:
        parsed = urlparse(raw)
        scheme = parsed.scheme or "postgresql"
        host = parsed.hostname or "unknown-host"
        port = f":{parsed.port}" if parsed.port else ""
        db_name = parsed.path.lstrip("/") or "unknown-db"
        if parsed.username:
            return f"{scheme}://{parsed.username}:****@{host}{port}/{db_name}"
        return f"{scheme}://{host}{port}/{db_name}"
    except ValueError:
        return "INVALID_DATABASE_URL"


def redact_download_url(url: str) -> str:
    """
    Mask the token query parameter of a download URL.

    Anyone holding the full URL can fetch the asset until it expires, so only
    the path is safe to log.
    """
    if not url:
        return ""
    path, sep, _query = url.partition("?")
    if not sep:
        return path
    return f"{path}?token=****"
