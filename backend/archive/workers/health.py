"""
Health probe utilities for the archive worker.

Intent:
    Verify the worker's prerequisites (database reachable, document table
    present, generation adapter importable) without leaking implementation
    details into the FastAPI layer. The service is async-friendly so the web
    adapter can await it without blocking the event loop.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from importlib import import_module
from typing import Callable, List, Optional

try:  # pragma: no cover - optional dependency
    import psycopg
    from psycopg.rows import dict_row
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover
    psycopg = None  # type: ignore
    HAVE_PSYCOPG = False

from backend.archive.config import load_ai_config
from backend.storage.config import resolve_database_dsn
from backend.storage.documents_db import TABLE_NAME


@dataclass(frozen=True)
class HealthCheckResult:
    check: str
    status: str
    detail: Optional[str] = None


@dataclass(frozen=True)
class HealthProbeResult:
    status: str
    current_role: Optional[str]
    checks: List[HealthCheckResult]


def _adapter_check() -> HealthCheckResult:
    try:
        path = load_ai_config().generation_adapter_path
        module = import_module(path)
    except Exception as exc:
        return HealthCheckResult(check="generation_adapter", status="failed", detail=type(exc).__name__)
    if not hasattr(module, "build"):
        return HealthCheckResult(check="generation_adapter", status="failed", detail="missing build()")
    return HealthCheckResult(check="generation_adapter", status="ok", detail=path)


class ArchiveWorkerHealthService:
    """Evaluate the readiness of the archive worker pipeline."""

    def __init__(self, dsn_resolver: Callable[[], str] | None = None):
        self._dsn_resolver = dsn_resolver or resolve_database_dsn

    async def probe(self) -> HealthProbeResult:
        """Run the health probe in a thread to avoid blocking the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._probe_sync)

    def _probe_sync(self) -> HealthProbeResult:
        checks: List[HealthCheckResult] = [_adapter_check()]
        if not HAVE_PSYCOPG:
            checks.append(
                HealthCheckResult(check="db_role", status="failed", detail="psycopg3 not installed on web worker")
            )
            return HealthProbeResult(status="degraded", current_role=None, checks=checks)

        current_role: Optional[str] = None
        try:
            dsn = self._dsn_resolver()
            with psycopg.connect(dsn, row_factory=dict_row, connect_timeout=5) as conn:  # type: ignore[arg-type]
                with conn.cursor() as cur:
                    cur.execute("select current_user")
                    row = cur.fetchone()
                    if row:
                        current_role = row.get("current_user")
                    cur.execute("select to_regclass(%s) as table_name", (f"public.{TABLE_NAME}",))
                    table_row = cur.fetchone() or {}
        except Exception as exc:
            checks.append(HealthCheckResult(check="db_role", status="failed", detail=f"probe_error: {exc}"))
            return HealthProbeResult(status="degraded", current_role=current_role, checks=checks)

        checks.append(HealthCheckResult(check="db_role", status="ok", detail=current_role))
        if table_row.get("table_name"):
            checks.append(HealthCheckResult(check="documents_table", status="ok"))
        else:
            checks.append(HealthCheckResult(check="documents_table", status="failed", detail="table missing"))

        overall = "healthy" if all(check.status == "ok" for check in checks) else "degraded"
        return HealthProbeResult(status=overall, current_role=current_role, checks=checks)


ARCHIVE_WORKER_HEALTH_SERVICE = ArchiveWorkerHealthService()

__all__ = [
    "HealthCheckResult",
    "HealthProbeResult",
    "ArchiveWorkerHealthService",
    "ARCHIVE_WORKER_HEALTH_SERVICE",
]
