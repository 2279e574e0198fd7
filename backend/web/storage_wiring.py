"""
Shared helper for wiring the archive storage adapters into the web layer.

Why:
    Routes need a document store and a blob store. Deployments configure
    Postgres and Supabase Storage; local development and tests run on the
    in-memory stores. This module keeps one process-wide pair and lets tests
    swap it with `set_stores`.

Security:
    Requires SUPABASE_SERVICE_ROLE_KEY and SUPABASE_URL for the Supabase
    blob store. The key is only used server-side.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from typing import Optional

from backend.storage.memory import InMemoryBlobStore, InMemoryDocumentStore
from backend.storage.ports import BlobStoreProtocol, DocumentStoreProtocol

LOG = logging.getLogger(__name__)


@dataclass
class ArchiveStores:
    documents: DocumentStoreProtocol
    blobs: BlobStoreProtocol


_STORES: Optional[ArchiveStores] = None


def _build_default_stores() -> ArchiveStores:
    """Postgres + Supabase when configured, otherwise in-memory stores."""
    documents: DocumentStoreProtocol
    blobs: BlobStoreProtocol
    dsn = (os.getenv("ARCHIVE_DATABASE_URL") or os.getenv("DATABASE_URL") or "").strip()
    if dsn:
        from backend.storage.documents_db import DBDocumentStore

        documents = DBDocumentStore(dsn)
        LOG.info("archive.web.wiring documents=postgres")
    else:
        documents = InMemoryDocumentStore()
        LOG.warning("archive.web.wiring documents=memory reason=no_dsn")
    url = (os.getenv("SUPABASE_URL") or "").strip()
    key = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()
    if url and key:
        from backend.storage.blobs_supabase import build_from_env

        blobs = build_from_env()
        LOG.info("archive.web.wiring blobs=supabase")
    else:
        blobs = InMemoryBlobStore()
        LOG.warning("archive.web.wiring blobs=memory reason=not_configured")
    return ArchiveStores(documents=documents, blobs=blobs)


def get_stores() -> ArchiveStores:
    global _STORES
    if _STORES is None:
        _STORES = _build_default_stores()
    return _STORES


def set_stores(documents: DocumentStoreProtocol, blobs: BlobStoreProtocol) -> ArchiveStores:
    """Replace the process-wide stores (tests, custom deployments)."""
    global _STORES
    _STORES = ArchiveStores(documents=documents, blobs=blobs)
    return _STORES


def reset_stores() -> None:
    global _STORES
    _STORES = None


__all__ = ["ArchiveStores", "get_stores", "set_stores", "reset_stores"]
