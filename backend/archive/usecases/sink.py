"""
Report sink: choose where the final text lives and write the terminal status.

Behavior:
    - UTF-8 size above `max_inline_bytes` -> upload `reports/{id}.txt`, make it
      retrievable and store only `reportUrl`.
    - Otherwise store the text inline under `report`.
    - The field that is not chosen is deleted, so a record never carries both.
"""
from __future__ import annotations

import logging
from typing import Optional

from backend.archive.config import ReportConfig
from backend.archive.domain import (
    REPORTS,
    BatchMetrics,
    ExternalReport,
    InlineReport,
    ReportLocation,
    Status,
    isoformat,
    utcnow,
)
from backend.storage.config import report_blob_path
from backend.storage.ports import DELETE_FIELD, BlobStoreProtocol, DocumentStoreProtocol

LOG = logging.getLogger(__name__)

REPORT_CONTENT_TYPE = "text/plain; charset=utf-8"


async def store_report_text(
    report_id: str, text: str, *, blobs: BlobStoreProtocol, config: ReportConfig
) -> ReportLocation:
    size = len(text.encode("utf-8"))
    if size <= config.max_inline_bytes:
        LOG.info("archive.report.sink action=inline report_id=%s bytes=%s", report_id, size)
        return InlineReport(text=text)
    path = report_blob_path(report_id)
    await blobs.upload(path, text.encode("utf-8"), REPORT_CONTENT_TYPE)
    url = await blobs.make_retrievable(path)
    LOG.info("archive.report.sink action=external report_id=%s bytes=%s", report_id, size)
    return ExternalReport(url=url)


def location_fields(location: ReportLocation) -> dict:
    """Document fields for a location; the other variant's field is removed."""
    if isinstance(location, ExternalReport):
        return {"reportUrl": location.url, "report": DELETE_FIELD}
    return {"report": location.text, "reportUrl": DELETE_FIELD}


async def complete_report(
    report_id: str,
    text: str,
    *,
    documents: DocumentStoreProtocol,
    blobs: BlobStoreProtocol,
    config: ReportConfig,
    metrics: Optional[BatchMetrics] = None,
    omitted_images: int = 0,
) -> ReportLocation:
    """Store the text and mark the report completed in one update."""
    location = await store_report_text(report_id, text, blobs=blobs, config=config)
    fields = {
        "status": Status.COMPLETED.value,
        "completedAt": isoformat(utcnow()),
        "error": DELETE_FIELD,
        "progress": DELETE_FIELD,
        **location_fields(location),
    }
    if metrics is not None:
        fields["batchMetrics"] = metrics.to_document()
    if omitted_images:
        fields["omittedImages"] = omitted_images
    await documents.update(REPORTS, report_id, fields)
    return location


__all__ = ["REPORT_CONTENT_TYPE", "store_report_text", "location_fields", "complete_report"]
