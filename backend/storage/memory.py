"""
In-memory document and blob stores.

Intent:
    Provide dependency-free implementations of the storage ports for tests
    and local development. Semantics mirror the Postgres and Supabase adapters:
    documents are deep-copied on the way in and out, partial updates honour
    `DELETE_FIELD`, and subscribers are woken on every write.
"""
from __future__ import annotations

import asyncio
import copy
import operator
from typing import Any, AsyncIterator, Callable, Dict, Optional, Sequence
from urllib.parse import quote, unquote, urlparse
from uuid import uuid4

from backend.storage.ports import DELETE_FIELD, BlobNotFoundError, Filter, Query

_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def _matches(doc: dict, flt: Filter) -> bool:
    if flt.field not in doc:
        return False
    value = doc[flt.field]
    if flt.op != "==" and (value is None or flt.value is None):
        return False
    try:
        return bool(_OPERATORS[flt.op](value, flt.value))
    except TypeError:
        return False


class InMemoryDocumentStore:
    """Dict-backed document store with change notifications."""

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, dict]] = {}
        self._version = 0
        self._changed = asyncio.Condition()

    async def _bump(self) -> None:
        async with self._changed:
            self._version += 1
            self._changed.notify_all()

    async def create(self, collection: str, fields: dict) -> str:
        doc_id = str(uuid4())
        stored = {k: copy.deepcopy(v) for k, v in fields.items() if v is not DELETE_FIELD and k != "id"}
        self._collections.setdefault(collection, {})[doc_id] = stored
        await self._bump()
        return doc_id

    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        stored = self._collections.get(collection, {}).get(doc_id)
        if stored is None:
            return None
        return {**copy.deepcopy(stored), "id": doc_id}

    async def get_many(self, collection: str, doc_ids: Sequence[str]) -> dict[str, dict]:
        stored = self._collections.get(collection, {})
        return {i: {**copy.deepcopy(stored[i]), "id": i} for i in dict.fromkeys(doc_ids) if i in stored}

    async def update(self, collection: str, doc_id: str, fields: dict) -> None:
        stored = self._collections.get(collection, {}).get(doc_id)
        if stored is None:
            raise LookupError(f"{collection}/{doc_id} not found")
        for key, value in fields.items():
            if key == "id":
                continue
            if value is DELETE_FIELD:
                stored.pop(key, None)
            else:
                stored[key] = copy.deepcopy(value)
        await self._bump()

    async def delete(self, collection: str, doc_id: str) -> None:
        docs = self._collections.get(collection, {})
        if docs.pop(doc_id, None) is not None:
            await self._bump()

    async def query(self, query: Query) -> list[dict]:
        docs = [
            {**copy.deepcopy(stored), "id": doc_id}
            for doc_id, stored in self._collections.get(query.collection, {}).items()
        ]
        docs = [d for d in docs if all(_matches(d, flt) for flt in query.where)]
        if query.order_by:
            key = query.order_by
            present = [d for d in docs if d.get(key) is not None]
            missing = [d for d in docs if d.get(key) is None]
            present.sort(key=lambda d: d[key], reverse=query.descending)
            docs = present + missing
        if query.limit is not None:
            docs = docs[: max(0, query.limit)]
        return docs

    async def subscribe(self, query: Query) -> AsyncIterator[list[dict]]:
        """Yield the query result now and after every change that alters it."""
        last: Optional[list[dict]] = None
        while True:
            async with self._changed:
                seen = self._version
            snapshot = await self.query(query)
            if snapshot != last:
                last = snapshot
                yield snapshot
            async with self._changed:
                await self._changed.wait_for(lambda: self._version != seen)


class InMemoryBlobStore:
    """Dict-backed blob store issuing `memory://<bucket>/<path>` URLs."""

    def __init__(self, bucket: str = "archive") -> None:
        self.bucket = bucket
        self._objects: Dict[str, tuple[bytes, str]] = {}
        self._retrievable: set[str] = set()

    def _norm(self, path: str) -> str:
        norm = path.lstrip("/")
        prefix = f"{self.bucket}/"
        if norm.startswith(prefix):
            norm = norm[len(prefix):]
        return norm

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        self._objects[self._norm(path)] = (bytes(data), content_type)

    async def make_retrievable(self, path: str) -> str:
        norm = self._norm(path)
        if norm not in self._objects:
            raise BlobNotFoundError(norm)
        self._retrievable.add(norm)
        return f"memory://{self.bucket}/{quote(norm)}"

    async def download(self, path: str) -> bytes:
        norm = self._norm(path)
        try:
            return self._objects[norm][0]
        except KeyError:
            raise BlobNotFoundError(norm) from None

    async def delete(self, path: str) -> None:
        norm = self._norm(path)
        if self._objects.pop(norm, None) is None:
            raise BlobNotFoundError(norm)
        self._retrievable.discard(norm)

    def path_from_url(self, url: str) -> str:
        parsed = urlparse(url)
        if parsed.scheme != "memory" or parsed.netloc != self.bucket:
            raise ValueError("url was not issued by this blob store")
        return self._norm(unquote(parsed.path))

    def content_type(self, path: str) -> str:
        """Return the stored content type (test helper)."""
        return self._objects[self._norm(path)][1]

    def is_retrievable(self, path: str) -> bool:
        return self._norm(path) in self._retrievable


__all__ = ["InMemoryDocumentStore", "InMemoryBlobStore"]
