"""Operations endpoints (internal tooling for operators)."""

from __future__ import annotations

from fastapi import APIRouter, Request

from backend.archive.workers import health as worker_health
from backend.web.routes.security import private_response, require_owner

operations_router = APIRouter(tags=["Operations"])


@operations_router.get("/internal/health/archive-worker")
async def archive_worker_health(request: Request):
    """
    Return diagnostics for the archive worker pipeline.

    Permissions:
        Caller must carry the identity header forwarded by the proxy.
    """
    _, error = require_owner(request)
    if error:
        return error

    probe = await worker_health.ARCHIVE_WORKER_HEALTH_SERVICE.probe()
    body = {
        "status": probe.status,
        "currentRole": probe.current_role,
        "checks": [
            {"check": check.check, "status": check.status, "detail": check.detail}
            for check in probe.checks
        ],
    }
    status_code = 200 if probe.status == "healthy" else 503
    return private_response(body, status_code=status_code)
