"""
Report request intake: validate, announce processing, resolve images, pick a mode.

Intent:
    Turn a stored `pending` report document into a `ResolvedReport` the
    pipeline can run, writing the `processing` status before any expensive
    work so observers get immediate feedback.

Behavior:
    - Validation errors raise `ReportValidationError` (the caller records it
      as the request's error).
    - Image ids resolve with one batched store read; results keep the
      requested order.
      Missing ids and images owned by someone else are dropped with a
      warning each.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Optional

from backend.archive.config import ReportConfig
from backend.archive.domain import (
    IMAGES,
    REPORTS,
    TEMPLATES,
    Depth,
    ExhibitImage,
    Progress,
    ReportRequest,
    ReportTemplate,
    ReportValidationError,
    Status,
    Style,
    ensure_transition,
    parse_status,
)
from backend.storage.ports import DocumentStoreProtocol

LOG = logging.getLogger(__name__)

NO_EXTRACTED_TEXT = "No text extracted"


class ExecutionMode(str, Enum):
    SINGLE_SHOT = "single_shot"
    BATCH = "batch"


@dataclass(frozen=True)
class ResolvedReport:
    request: ReportRequest
    images: list[ExhibitImage]
    unresolved: int
    mode: ExecutionMode
    template: Optional[ReportTemplate] = None


def _parse_enum(enum_cls, raw: object, default, label: str):
    if raw is None or raw == "":
        return default
    try:
        return enum_cls(str(raw).strip().lower())
    except ValueError:
        raise ReportValidationError(f"Unknown report {label}: {raw}") from None


def parse_report_request(report_id: str, doc: dict) -> ReportRequest:
    """Validate stored request fields; raises ReportValidationError."""
    owner_id = str(doc.get("userId") or "").strip()
    if not owner_id:
        raise ReportValidationError("Report request has no owner")
    image_ids = doc.get("imageIds")
    if not isinstance(image_ids, (list, tuple)) or not image_ids:
        raise ReportValidationError("No images selected")
    if not all(isinstance(i, str) and i.strip() for i in image_ids):
        raise ReportValidationError("Image ids must be non-empty strings")
    prompt = str(doc.get("prompt") or "").strip()
    if not prompt:
        raise ReportValidationError("Prompt must not be empty")
    depth = _parse_enum(Depth, doc.get("reportDepth"), Depth.STANDARD, "depth")
    style = _parse_enum(Style, doc.get("reportStyle"), Style.PROFESSIONAL, "style")
    template = None
    raw_template = doc.get("template")
    if isinstance(raw_template, dict) and raw_template.get("sections"):
        try:
            template = ReportTemplate.from_document(raw_template)
        except (TypeError, ValueError) as exc:
            raise ReportValidationError(f"Invalid template: {exc}") from None
    return ReportRequest(
        id=report_id,
        owner_id=owner_id,
        image_ids=tuple(i.strip() for i in image_ids),
        prompt=prompt,
        depth=depth,
        style=style,
        template=template,
        template_id=(doc.get("templateId") or None),
    )


def select_mode(image_count: int, config: ReportConfig) -> ExecutionMode:
    if image_count <= config.batch_threshold:
        return ExecutionMode.SINGLE_SHOT
    return ExecutionMode.BATCH


async def begin_processing(report_id: str, doc: dict, *, documents: DocumentStoreProtocol, total: int) -> None:
    """Move the report to `processing` with an initial progress snapshot."""
    ensure_transition(parse_status(doc.get("status", Status.PENDING.value)), Status.PROCESSING)
    progress = Progress(
        images_processed=0,
        total_images=total,
        message=f"Preparing to process {total} images...",
    )
    await documents.update(
        REPORTS,
        report_id,
        {"status": Status.PROCESSING.value, "progress": progress.to_document()},
    )


async def resolve_images(
    request: ReportRequest, *, documents: DocumentStoreProtocol
) -> tuple[list[ExhibitImage], int]:
    """Fetch all image records in one store call; returns (resolved, dropped count).

    Caller order is kept; the store answers by id, not by position.
    """
    found = await documents.get_many(IMAGES, request.image_ids)
    resolved: list[ExhibitImage] = []
    dropped = 0
    for image_id in request.image_ids:
        doc = found.get(image_id)
        if doc is None:
            dropped += 1
            LOG.warning("archive.report.intake action=image_missing report_id=%s image_id=%s", request.id, image_id)
            continue
        if str(doc.get("userId") or "") != request.owner_id:
            dropped += 1
            LOG.warning("archive.report.intake action=image_foreign report_id=%s image_id=%s", request.id, image_id)
            continue
        resolved.append(
            ExhibitImage(
                position=len(resolved),
                image_id=image_id,
                file_name=str(doc.get("fileName") or image_id),
                image_url=str(doc.get("imageUrl") or ""),
                extracted_text=str(doc.get("extractedText") or NO_EXTRACTED_TEXT),
            )
        )
    return resolved, dropped


async def resolve_template(
    request: ReportRequest, *, documents: DocumentStoreProtocol
) -> Optional[ReportTemplate]:
    """Embedded template first, then a stored template owned by the requester."""
    if request.template is not None:
        return request.template
    if not request.template_id:
        return None
    doc = await documents.get(TEMPLATES, request.template_id)
    if doc is None or str(doc.get("userId") or "") != request.owner_id:
        LOG.warning(
            "archive.report.intake action=template_unavailable report_id=%s template_id=%s",
            request.id,
            request.template_id,
        )
        return None
    return ReportTemplate.from_document(doc)


async def intake_report(
    report_id: str,
    doc: dict,
    *,
    documents: DocumentStoreProtocol,
    config: ReportConfig,
) -> ResolvedReport:
    """Validate, mark processing, resolve images and choose the execution mode.

    Raises:
        ReportValidationError: invalid request, or no image could be resolved.
    """
    request = parse_report_request(report_id, doc)
    await begin_processing(report_id, doc, documents=documents, total=len(request.image_ids))
    images, dropped = await resolve_images(request, documents=documents)
    if not images:
        raise ReportValidationError("No valid images found")
    template = await resolve_template(request, documents=documents)
    mode = select_mode(len(images), config)
    LOG.info(
        "archive.report.intake action=resolved report_id=%s images=%s dropped=%s mode=%s",
        report_id,
        len(images),
        dropped,
        mode.value,
    )
    return ResolvedReport(request=request, images=images, unresolved=dropped, mode=mode, template=template)


__all__ = [
    "NO_EXTRACTED_TEXT",
    "ExecutionMode",
    "ResolvedReport",
    "parse_report_request",
    "select_mode",
    "begin_processing",
    "resolve_images",
    "resolve_template",
    "intake_report",
]
