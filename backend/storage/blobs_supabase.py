"""
Supabase Storage blob store on top of a supabase client.

Intent:
    Implement `BlobStoreProtocol` with the bucket proxy of a provided client.
    The client is duck-typed: anything exposing `.storage.from_(bucket)` (the
    object returned by `supabase.create_client`) or `.from_(bucket)` (a bare
    storage3 client) works, which keeps tests free of network access. The
    bucket proxy is expected to offer:

    - upload(path, data, file_options)
    - create_signed_url(path, expires_in) -> { signedURL | signedUrl | signed_url }
    - download(path) -> bytes
    - remove([path]) -> list of removed objects

    The client is synchronous; every call runs through `asyncio.to_thread`
    so the event loop never blocks on storage I/O.

Behavior:
    - upload overwrites (`upsert`) and passes the content type.
    - Not-found answers from the client map to BlobNotFoundError; any other
      client error propagates unchanged.
    - path_from_url accepts public, signed, authenticated and plain object URLs.

Security:
    - The client must be built with the service role key; URLs handed to
      callers are signed and expire.
"""
from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Dict, Optional
from urllib.parse import unquote, urlparse

from backend.storage.config import get_archive_bucket, get_signed_url_ttl_seconds, get_storage_timeout_seconds
from backend.storage.ports import BlobNotFoundError

LOG = logging.getLogger(__name__)

_URL_KINDS = ("public", "sign", "authenticated")
_NOT_FOUND_CODES = {"400", "404"}


def _is_not_found(exc: Exception) -> bool:
    """Recognize storage3 `StorageException` payloads for missing objects."""
    detail = exc.args[0] if exc.args else None
    if isinstance(detail, dict):
        code = str(detail.get("statusCode") or detail.get("status") or "")
        error = str(detail.get("error") or "").lower()
        return code in _NOT_FOUND_CODES or error in {"not_found", "not found"}
    return "not found" in str(exc).lower()


class SupabaseBlobStore:
    """Blob store backed by a Supabase Storage bucket."""

    def __init__(
        self,
        client: Any,
        *,
        bucket: Optional[str] = None,
        signed_url_ttl: Optional[int] = None,
    ) -> None:
        # Duck-typed supabase client, e.g. from `supabase.create_client(...)`.
        self._client = client
        self.bucket = bucket or get_archive_bucket()
        self._ttl = signed_url_ttl or get_signed_url_ttl_seconds()

    def _bucket(self) -> Any:
        storage = getattr(self._client, "storage", None)
        if storage is not None and hasattr(storage, "from_"):
            return storage.from_(self.bucket)
        if hasattr(self._client, "from_"):
            return self._client.from_(self.bucket)
        raise RuntimeError("invalid_supabase_client")

    def _norm(self, path: str) -> str:
        norm = path.lstrip("/")
        prefix = f"{self.bucket}/"
        if norm.startswith(prefix):
            norm = norm[len(prefix):]
        return norm

    @staticmethod
    def _first_key(d: Dict[str, Any], *keys: str) -> Any:
        for k in keys:
            if k in d and d[k] is not None:
                return d[k]
        return None

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        key = self._norm(path)
        opts = {"content-type": content_type, "upsert": "true"}
        await asyncio.to_thread(self._bucket().upload, key, data, opts)
        LOG.info("archive.storage.blob action=uploaded size=%s content_type=%s", len(data), content_type)

    async def make_retrievable(self, path: str) -> str:
        key = self._norm(path)
        try:
            res = await asyncio.to_thread(self._bucket().create_signed_url, key, self._ttl)
        except Exception as exc:
            if _is_not_found(exc):
                raise BlobNotFoundError(key) from exc
            raise
        signed = None
        if isinstance(res, dict):
            signed = self._first_key(res, "signedURL", "signedUrl", "signed_url")
            data = res.get("data")
            if signed is None and isinstance(data, dict):
                signed = self._first_key(data, "signedURL", "signedUrl", "signed_url")
        if not signed:
            raise RuntimeError("failed_to_sign_url")
        return str(signed)

    async def download(self, path: str) -> bytes:
        key = self._norm(path)
        try:
            return await asyncio.to_thread(self._bucket().download, key)
        except Exception as exc:
            if _is_not_found(exc):
                raise BlobNotFoundError(key) from exc
            raise

    async def delete(self, path: str) -> None:
        key = self._norm(path)
        removed = await asyncio.to_thread(self._bucket().remove, [key])
        if isinstance(removed, list) and not removed:
            raise BlobNotFoundError(key)

    def path_from_url(self, url: str) -> str:
        path = urlparse(url).path
        for kind in _URL_KINDS:
            marker = f"/storage/v1/object/{kind}/{self.bucket}/"
            if marker in path:
                return unquote(path.split(marker, 1)[1])
        marker = f"/storage/v1/object/{self.bucket}/"
        if marker in path:
            return unquote(path.split(marker, 1)[1])
        raise ValueError("url does not reference the archive bucket")


def build_from_env() -> SupabaseBlobStore:
    """Create the blob store from SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY."""
    url = (os.getenv("SUPABASE_URL") or "").strip()
    key = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        raise ValueError("SUPABASE_URL must start with http:// or https://")
    if not key:
        raise ValueError("SUPABASE_SERVICE_ROLE_KEY is required for the blob store")
    from supabase import ClientOptions, create_client

    client = create_client(url, key, options=ClientOptions(storage_client_timeout=get_storage_timeout_seconds()))
    return SupabaseBlobStore(client)


__all__ = ["SupabaseBlobStore", "build_from_env"]
