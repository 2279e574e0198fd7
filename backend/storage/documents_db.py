"""
Postgres-backed document store.

Intent:
    Persist archive records (images, reports, templates) as `jsonb` documents
    in a single table keyed by (collection, id). This keeps the storage
    contract identical to the in-memory store while giving deployments a
    durable, queryable backend.

Design:
    - `archive_documents(collection text, id uuid, fields jsonb, created_at,
      updated_at)`; `ensure_schema()` creates it when missing.
    - Partial updates merge with `fields || patch` and drop deleted keys with
      `fields - text[]` inside one statement.
    - Filters compare `fields -> key` against a `jsonb` literal so numbers,
      strings and booleans keep their natural ordering.
    - `subscribe` polls the query and yields when the result changes.

Permissions:
    The DSN must reference a role with SELECT/INSERT/UPDATE/DELETE on the
    table; `ensure_schema()` additionally needs CREATE on the schema.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Sequence
from uuid import UUID

try:  # pragma: no cover -- optional dependency in some environments
    import psycopg
    from psycopg import sql
    from psycopg.rows import dict_row
    from psycopg.types.json import Jsonb

    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover
    psycopg = None  # type: ignore
    HAVE_PSYCOPG = False

from backend.storage.ports import DELETE_FIELD, FILTER_OPERATORS, Query

LOG = logging.getLogger(__name__)

TABLE_NAME = "archive_documents"

_SCHEMA_SQL = """
create table if not exists public.archive_documents (
    collection text not null,
    id uuid not null default gen_random_uuid(),
    fields jsonb not null default '{}'::jsonb,
    created_at timestamptz not null default now(),
    updated_at timestamptz not null default now(),
    primary key (collection, id)
);
create index if not exists archive_documents_fields_gin
    on public.archive_documents using gin (fields jsonb_path_ops);
"""


def _valid_uuid(value: str) -> bool:
    try:
        UUID(str(value))
    except (TypeError, ValueError):
        return False
    return True


def _split_patch(fields: dict) -> tuple[dict, list[str]]:
    merged: dict[str, Any] = {}
    removed: list[str] = []
    for key, value in fields.items():
        if key == "id":
            continue
        if value is DELETE_FIELD:
            removed.append(key)
        else:
            merged[key] = value
    return merged, removed


def _row_to_doc(row: dict) -> dict:
    doc = dict(row["fields"] or {})
    doc["id"] = str(row["id"])
    return doc


class DBDocumentStore:
    """Document store backed by a Postgres `jsonb` table."""

    def __init__(self, dsn: str, *, poll_interval: float = 1.0) -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBDocumentStore")
        self._dsn = dsn
        self._poll_interval = poll_interval

    async def _connect(self):
        return await psycopg.AsyncConnection.connect(self._dsn, row_factory=dict_row, autocommit=True)

    async def ensure_schema(self) -> None:
        async with await self._connect() as conn:
            await conn.execute(_SCHEMA_SQL)
        LOG.info("archive.storage.schema action=ensured table=%s", TABLE_NAME)

    async def create(self, collection: str, fields: dict) -> str:
        payload, _ = _split_patch(fields)
        async with await self._connect() as conn:
            cur = await conn.execute(
                f"insert into public.{TABLE_NAME} (collection, fields) values (%s, %s) returning id::text",
                (collection, Jsonb(payload)),
            )
            row = await cur.fetchone()
        return row["id"]

    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        if not _valid_uuid(doc_id):
            return None
        async with await self._connect() as conn:
            cur = await conn.execute(
                f"select id, fields from public.{TABLE_NAME} where collection = %s and id = %s::uuid",
                (collection, doc_id),
            )
            row = await cur.fetchone()
        return _row_to_doc(row) if row else None

    async def get_many(self, collection: str, doc_ids: Sequence[str]) -> dict[str, dict]:
        """One `= any(uuid[])` query on a single connection for all ids."""
        wanted = [i for i in dict.fromkeys(doc_ids) if _valid_uuid(i)]
        if not wanted:
            return {}
        async with await self._connect() as conn:
            cur = await conn.execute(
                f"select id, fields from public.{TABLE_NAME} where collection = %s and id = any(%s::uuid[])",
                (collection, wanted),
            )
            rows = await cur.fetchall()
        requested = {UUID(i): i for i in wanted}
        found: dict[str, dict] = {}
        for row in rows:
            doc = _row_to_doc(row)
            found[requested.get(UUID(doc["id"]), doc["id"])] = doc
        return found

    async def update(self, collection: str, doc_id: str, fields: dict) -> None:
        if not _valid_uuid(doc_id):
            raise LookupError(f"{collection}/{doc_id} not found")
        merged, removed = _split_patch(fields)
        async with await self._connect() as conn:
            cur = await conn.execute(
                f"""
                update public.{TABLE_NAME}
                   set fields = (fields || %s::jsonb) - %s::text[],
                       updated_at = now()
                 where collection = %s and id = %s::uuid
                """,
                (Jsonb(merged), removed, collection, doc_id),
            )
            if cur.rowcount == 0:
                raise LookupError(f"{collection}/{doc_id} not found")

    async def delete(self, collection: str, doc_id: str) -> None:
        if not _valid_uuid(doc_id):
            return
        async with await self._connect() as conn:
            await conn.execute(
                f"delete from public.{TABLE_NAME} where collection = %s and id = %s::uuid",
                (collection, doc_id),
            )

    def _compile(self, query: Query) -> tuple[Any, list[Any]]:
        clauses = [sql.SQL("collection = %s")]
        params: list[Any] = [query.collection]
        for flt in query.where:
            if flt.op not in FILTER_OPERATORS:
                raise ValueError(f"unsupported filter operator: {flt.op!r}")
            if flt.field == "id":
                clauses.append(sql.SQL("id::text {} %s").format(sql.SQL(flt.op)))
                params.append(str(flt.value))
                continue
            clauses.append(sql.SQL("fields -> %s::text {} %s::jsonb").format(sql.SQL(flt.op)))
            params.extend([flt.field, Jsonb(flt.value)])
        stmt = sql.SQL("select id, fields from public.{} where {}").format(
            sql.Identifier(TABLE_NAME), sql.SQL(" and ").join(clauses)
        )
        if query.order_by:
            direction = sql.SQL("desc nulls last" if query.descending else "asc nulls last")
            stmt = sql.SQL("{} order by fields -> %s::text {}").format(stmt, direction)
            params.append(query.order_by)
        if query.limit is not None:
            stmt = sql.SQL("{} limit %s").format(stmt)
            params.append(max(0, int(query.limit)))
        return stmt, params

    async def query(self, query: Query) -> list[dict]:
        stmt, params = self._compile(query)
        async with await self._connect() as conn:
            cur = await conn.execute(stmt, params)
            rows = await cur.fetchall()
        return [_row_to_doc(r) for r in rows]

    async def subscribe(self, query: Query) -> AsyncIterator[list[dict]]:
        """Poll the query and yield whenever its result changes."""
        last: Optional[list[dict]] = None
        while True:
            snapshot = await self.query(query)
            if snapshot != last:
                last = snapshot
                yield snapshot
            await asyncio.sleep(self._poll_interval)


__all__ = ["DBDocumentStore", "TABLE_NAME", "HAVE_PSYCOPG"]
