"""
Storage ports used by the archive pipelines.

Intent:
    Keep the document database and the object storage behind two small async
    interfaces so the report pipeline, the extraction worker and the web layer
    can run against in-memory fakes in tests and against Postgres/Supabase in
    deployments.

Design:
    - Documents are plain dicts addressed by (collection, id). Returned
      documents always carry their id under the "id" key.
    - Partial updates merge keys; the `DELETE_FIELD` sentinel removes a key.
    - Queries support equality and range filters, a single ordering key and a
      limit. The document id can be filtered under the "id" key.
      `subscribe` yields the query result whenever it changes.
    - Blob stores issue retrievable URLs and can map those URLs back to the
      storage path they were created for.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional, Protocol, Sequence


class _DeleteField:
    """Sentinel marking a field for removal in partial updates."""

    _instance: Optional["_DeleteField"] = None

    def __new__(cls) -> "_DeleteField":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DELETE_FIELD"


DELETE_FIELD = _DeleteField()

FILTER_OPERATORS = frozenset({"==", "<", "<=", ">", ">="})


@dataclass(frozen=True)
class Filter:
    """Single field predicate used by `query` and `subscribe`."""

    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in FILTER_OPERATORS:
            raise ValueError(f"unsupported filter operator: {self.op!r}")


@dataclass(frozen=True)
class Query:
    collection: str
    where: Sequence[Filter] = ()
    order_by: Optional[str] = None
    descending: bool = False
    limit: Optional[int] = None


class DocumentStoreProtocol(Protocol):
    """Minimal document database used for image, report and template records."""

    async def create(self, collection: str, fields: dict) -> str: ...

    async def get(self, collection: str, doc_id: str) -> Optional[dict]: ...

    async def get_many(self, collection: str, doc_ids: Sequence[str]) -> dict[str, dict]:
        """Fetch several documents in one round trip; missing ids are absent from the result."""
        ...

    async def update(self, collection: str, doc_id: str, fields: dict) -> None: ...

    async def delete(self, collection: str, doc_id: str) -> None: ...

    async def query(self, query: Query) -> list[dict]: ...

    def subscribe(self, query: Query) -> AsyncIterator[list[dict]]: ...


class BlobStoreProtocol(Protocol):
    """Minimal object storage for uploaded images and large reports.

    Permissions:
        Implementations authenticate with a service identity; callers pass
        bucket-relative paths only.
    """

    async def upload(self, path: str, data: bytes, content_type: str) -> None: ...

    async def make_retrievable(self, path: str) -> str: ...

    async def download(self, path: str) -> bytes: ...

    async def delete(self, path: str) -> None: ...

    def path_from_url(self, url: str) -> str: ...


class BlobNotFoundError(LookupError):
    """Raised when a blob does not exist at the requested path."""


__all__ = [
    "DELETE_FIELD",
    "FILTER_OPERATORS",
    "Filter",
    "Query",
    "DocumentStoreProtocol",
    "BlobStoreProtocol",
    "BlobNotFoundError",
]
