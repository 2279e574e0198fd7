"""
Centralized storage configuration for the archive.

Intent:
    Provide a single source of truth for the bucket name, storage path
    layout, signed URL lifetime and database DSN used by the worker and the
    web layer.

Behavior:
    - ARCHIVE_BUCKET_DEFAULT defines the canonical bucket ("archive").
    - get_archive_bucket() reads the ARCHIVE_STORAGE_BUCKET override.
    - resolve_database_dsn() picks the first configured DSN.

Permissions:
    Pure configuration; no external calls or privileges required.
"""
from __future__ import annotations

import os
import re


ARCHIVE_BUCKET_DEFAULT = "archive"
REPORTS_PREFIX = "reports"
IMAGES_PREFIX = "images"

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def get_archive_bucket() -> str:
    """Return the configured archive bucket name.

    Env:
        ARCHIVE_STORAGE_BUCKET – optional override; otherwise defaults to
        ARCHIVE_BUCKET_DEFAULT.
    """
    return (os.getenv("ARCHIVE_STORAGE_BUCKET") or ARCHIVE_BUCKET_DEFAULT).strip()


def _parse_int_env(name: str, default: int, *, contract_max: int | None = None) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if value <= 0:
        return default
    if isinstance(contract_max, int) and contract_max > 0:
        value = min(value, contract_max)
    return value


def get_signed_url_ttl_seconds() -> int:
    """Lifetime of signed report URLs (default 7 days, clamped to 1 year)."""
    return _parse_int_env("ARCHIVE_SIGNED_URL_TTL", 7 * 24 * 3600, contract_max=365 * 24 * 3600)


def get_storage_timeout_seconds() -> int:
    """HTTP timeout for storage calls (default 30 seconds, clamped to 300)."""
    return _parse_int_env("ARCHIVE_STORAGE_TIMEOUT", 30, contract_max=300)


def report_blob_path(report_id: str) -> str:
    """Deterministic blob path for externally stored reports."""
    return f"{REPORTS_PREFIX}/{report_id}.txt"


def image_blob_path(owner_id: str, file_name: str, *, epoch_ms: int) -> str:
    """Blob path for an uploaded image, namespaced by owner."""
    safe_name = _UNSAFE_NAME_CHARS.sub("_", file_name).strip("._") or "image"
    return f"{IMAGES_PREFIX}/{owner_id}/{epoch_ms}_{safe_name}"


def resolve_database_dsn() -> str:
    """Resolve the Postgres DSN for the document store.

    Order of precedence (first non-empty wins):
      1) ARCHIVE_DATABASE_URL
      2) DATABASE_URL
    """
    for candidate in (os.getenv("ARCHIVE_DATABASE_URL"), os.getenv("DATABASE_URL")):
        if candidate and candidate.strip():
            return candidate.strip()
    raise RuntimeError("Database DSN unavailable: set ARCHIVE_DATABASE_URL or DATABASE_URL")


__all__ = [
    "ARCHIVE_BUCKET_DEFAULT",
    "REPORTS_PREFIX",
    "IMAGES_PREFIX",
    "get_archive_bucket",
    "get_signed_url_ttl_seconds",
    "get_storage_timeout_seconds",
    "report_blob_path",
    "image_blob_path",
    "resolve_database_dsn",
]
