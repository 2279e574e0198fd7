"""
Postgres document store: patch splitting, id guards and a live round trip.

The live test runs only when ARCHIVE_TEST_DSN points at a reachable database.
"""
from __future__ import annotations

import os

import pytest

from backend.storage.documents_db import _split_patch, _valid_uuid
from backend.storage.ports import DELETE_FIELD, Filter, Query

psycopg = pytest.importorskip("psycopg")


def test_split_patch_separates_deletions() -> None:
    merged, removed = _split_patch({"a": 1, "b": DELETE_FIELD, "id": "x", "c": None})
    assert merged == {"a": 1, "c": None}
    assert removed == ["b"]


def test_valid_uuid() -> None:
    assert _valid_uuid("7d9f1b4e-3c2a-4f5e-9b1d-2a3c4e5f6a7b")
    assert not _valid_uuid("does-not-exist")


def _live_dsn() -> str:
    dsn = (os.getenv("ARCHIVE_TEST_DSN") or "").strip()
    if not dsn:
        pytest.skip("ARCHIVE_TEST_DSN not set")
    try:
        with psycopg.connect(dsn, connect_timeout=3):
            pass
    except Exception:
        pytest.skip("database not reachable")
    return dsn


@pytest.mark.anyio("asyncio")
async def test_live_roundtrip() -> None:
    from backend.storage.documents_db import DBDocumentStore

    store = DBDocumentStore(_live_dsn(), poll_interval=0.05)
    await store.ensure_schema()
    doc_id = await store.create("test_reports", {"status": "pending", "n": 1, "gone": "x"})
    await store.update("test_reports", doc_id, {"status": "completed", "gone": DELETE_FIELD})
    doc = await store.get("test_reports", doc_id)
    assert doc == {"id": doc_id, "status": "completed", "n": 1}
    rows = await store.query(Query(collection="test_reports", where=(Filter("id", "==", doc_id),)))
    assert [r["id"] for r in rows] == [doc_id]
    assert await store.get("test_reports", "not-a-uuid") is None
    other = await store.create("test_reports", {"n": 2})
    many = await store.get_many("test_reports", [other, "not-a-uuid", doc_id, other])
    assert set(many) == {doc_id, other}
    assert many[other]["n"] == 2
    await store.delete("test_reports", other)
    await store.delete("test_reports", doc_id)
    assert await store.get("test_reports", doc_id) is None
