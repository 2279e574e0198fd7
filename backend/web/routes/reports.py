"""
Report endpoints: create requests, list and read reports, stream progress.

Permissions:
    Every route requires the identity header; reports are owner-scoped.
    Foreign reports answer 403, unknown ids 404.
"""
from __future__ import annotations

import json
import logging
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from backend.archive.domain import REPORTS, TERMINAL_STATUSES, ReportValidationError, Status
from backend.archive.usecases.requests import CreateReportInput, create_report_request, get_report, list_reports
from backend.storage.ports import Filter, Query
from backend.web.routes.security import cache_headers, error_response, private_response, require_owner, require_same_origin
from backend.web.storage_wiring import get_stores

LOG = logging.getLogger(__name__)

reports_router = APIRouter(tags=["Reports"])


class TemplateSectionPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    kind: str = Field(default="multi")
    subheadings: list[str] = Field(default_factory=list)


class TemplatePayload(BaseModel):
    name: str = Field(default="Custom", max_length=200)
    sections: list[TemplateSectionPayload] = Field(default_factory=list)


class ReportCreatePayload(BaseModel):
    imageIds: list[str] = Field(default_factory=list)
    prompt: str = Field(default="", max_length=20000)
    reportDepth: Optional[str] = None
    reportStyle: Optional[str] = None
    templateId: Optional[str] = None
    template: Optional[TemplatePayload] = None


@reports_router.post("/api/reports")
async def create_report(request: Request, payload: ReportCreatePayload):
    """Create a `pending` report request for the caller.

    Behavior:
        - 201 with `{id, status}` on success.
        - 400 when images, prompt, depth, style or template are invalid.
        - 401 without identity, 403 on cross-origin writes.
    """
    owner_id, error = require_owner(request)
    if error:
        return error
    csrf = require_same_origin(request)
    if csrf:
        return csrf
    try:
        doc = await create_report_request(
            get_stores().documents,
            CreateReportInput(
                owner_id=owner_id,
                image_ids=payload.imageIds,
                prompt=payload.prompt,
                depth=payload.reportDepth,
                style=payload.reportStyle,
                template_id=payload.templateId,
                template=payload.template.model_dump() if payload.template else None,
            ),
        )
    except ReportValidationError as exc:
        return error_response("bad_request", status_code=400, detail=str(exc))
    return private_response({"id": doc["id"], "status": doc["status"]}, status_code=201)


@reports_router.get("/api/reports")
async def get_reports(request: Request, status: Optional[str] = None, limit: int = 50):
    """List the caller's reports, newest first; optional `status` filter."""
    owner_id, error = require_owner(request)
    if error:
        return error
    try:
        items = await list_reports(get_stores().documents, owner_id, status=status, limit=limit)
    except ValueError:
        return error_response("bad_request", status_code=400, detail="invalid_status")
    return private_response(items)


@reports_router.get("/api/reports/{report_id}")
async def get_report_detail(request: Request, report_id: str):
    owner_id, error = require_owner(request)
    if error:
        return error
    try:
        doc = await get_report(get_stores().documents, report_id, owner_id)
    except LookupError:
        return error_response("not_found", status_code=404)
    except PermissionError:
        return error_response("forbidden", status_code=403)
    return private_response(doc)


def _sse_frame(doc: dict) -> str:
    return f"event: report\ndata: {json.dumps(doc, separators=(',', ':'))}\n\n"


@reports_router.get("/api/reports/{report_id}/events")
async def report_events(request: Request, report_id: str):
    """Stream report snapshots as server-sent events until a terminal status.

    Behavior:
        - One `report` event per change of the record (progress, status).
        - The stream closes after the first `completed`/`failed` snapshot or
          when the record disappears.
    """
    owner_id, error = require_owner(request)
    if error:
        return error
    documents = get_stores().documents
    try:
        await get_report(documents, report_id, owner_id)
    except LookupError:
        return error_response("not_found", status_code=404)
    except PermissionError:
        return error_response("forbidden", status_code=403)

    async def _events() -> AsyncIterator[str]:
        query = Query(collection=REPORTS, where=(Filter("id", "==", report_id),), limit=1)
        stream = documents.subscribe(query)
        try:
            async for snapshot in stream:
                if not snapshot:
                    yield "event: gone\ndata: {}\n\n"
                    return
                doc = snapshot[0]
                yield _sse_frame(doc)
                try:
                    status = Status(doc.get("status"))
                except ValueError:
                    LOG.warning("archive.web.events action=bad_status report_id=%s", report_id)
                    return
                if status in TERMINAL_STATUSES:
                    return
        finally:
            await stream.aclose()

    return StreamingResponse(_events(), media_type="text/event-stream", headers=cache_headers())


__all__ = ["reports_router"]
