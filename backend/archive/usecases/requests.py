from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional, Sequence

from backend.archive.domain import (
    REPORTS,
    TEMPLATES,
    Depth,
    ReportValidationError,
    Status,
    Style,
    isoformat,
    parse_status,
    utcnow,
)
from backend.archive.usecases.intake import parse_report_request
from backend.storage.ports import DocumentStoreProtocol, Filter, Query

LOG = logging.getLogger(__name__)

MAX_IMAGES_PER_REPORT = 1000


@dataclass
class CreateReportInput:
    owner_id: str
    image_ids: Sequence[str]
    prompt: str
    depth: Optional[str] = None
    style: Optional[str] = None
    template_id: Optional[str] = None
    template: Optional[dict] = None


async def create_report_request(documents: DocumentStoreProtocol, req: CreateReportInput) -> dict:
    """Validate a report request and store it as `pending`.

    Intent:
        Reject incomplete requests before any write so a bad request never
        reaches the worker. The worker picks up the stored record later.

    Behavior:
        - Owner, non-empty image list, non-empty prompt and known depth/style
          are required (ReportValidationError otherwise).
        - A referenced template must exist and belong to the caller.
        - Returns the stored document including its id.

    Permissions:
        The caller is the authenticated owner; images are checked for
        ownership when the worker resolves them.
    """
    image_ids = list(req.image_ids or [])
    if len(image_ids) > MAX_IMAGES_PER_REPORT:
        raise ReportValidationError(f"At most {MAX_IMAGES_PER_REPORT} images per report")
    doc: dict = {
        "userId": (req.owner_id or "").strip(),
        "imageIds": image_ids,
        "prompt": (req.prompt or "").strip(),
        "reportDepth": req.depth or Depth.STANDARD.value,
        "reportStyle": req.style or Style.PROFESSIONAL.value,
    }
    if req.template:
        doc["template"] = req.template
    if req.template_id:
        doc["templateId"] = req.template_id
    parsed = parse_report_request("new", doc)
    doc["reportDepth"] = parsed.depth.value
    doc["reportStyle"] = parsed.style.value
    doc["imageIds"] = list(parsed.image_ids)
    if parsed.template is not None:
        doc["template"] = parsed.template.to_document()
    if req.template_id:
        stored = await documents.get(TEMPLATES, req.template_id)
        if stored is None or stored.get("userId") != parsed.owner_id:
            raise ReportValidationError("Template not found")
    doc["status"] = Status.PENDING.value
    doc["createdAt"] = isoformat(utcnow())
    report_id = await documents.create(REPORTS, doc)
    LOG.info("archive.requests action=created report_id=%s images=%s", report_id, len(image_ids))
    return {"id": report_id, **doc}


async def list_reports(
    documents: DocumentStoreProtocol,
    owner_id: str,
    *,
    status: Optional[str] = None,
    limit: int = 50,
) -> list[dict]:
    """Return the owner's reports, newest first (limit clamped to 1..200)."""
    where = [Filter("userId", "==", owner_id)]
    if status:
        where.append(Filter("status", "==", parse_status(status).value))
    return await documents.query(
        Query(
            collection=REPORTS,
            where=tuple(where),
            order_by="createdAt",
            descending=True,
            limit=max(1, min(limit, 200)),
        )
    )


async def get_report(documents: DocumentStoreProtocol, report_id: str, owner_id: str) -> dict:
    """Raises LookupError when missing and PermissionError for foreign owners."""
    doc = await documents.get(REPORTS, report_id)
    if doc is None:
        raise LookupError("report not found")
    if doc.get("userId") != owner_id:
        raise PermissionError("report belongs to another user")
    return doc


__all__ = [
    "MAX_IMAGES_PER_REPORT",
    "CreateReportInput",
    "create_report_request",
    "list_reports",
    "get_report",
]
