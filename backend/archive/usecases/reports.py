"""
Report generation pipeline: intake -> partition -> execute -> normalize -> sink.

Intent:
    Own one `pending` report document from `processing` to a terminal status.
    Per-image and per-batch failures are absorbed by the executor and the
    controller; anything that escapes (e.g. the document store is down) is
    logged and recorded as `failed` with the exception message.

Permissions:
    Callers are trusted workers; ownership of images is enforced at intake.
"""
from __future__ import annotations

import asyncio
from functools import partial
import logging
from typing import Awaitable, Callable, Optional

from backend.archive.adapters.ports import GenerationAdapterProtocol
from backend.archive.config import ReportConfig
from backend.archive.domain import (
    REPORTS,
    Progress,
    ReportLocation,
    ReportValidationError,
    Status,
    isoformat,
    parse_status,
    utcnow,
)
from backend.archive.usecases.batches import GenerationContext, execute_batch, execute_single_shot
from backend.archive.usecases.controller import assemble_report, run_batches
from backend.archive.usecases.intake import ExecutionMode, ResolvedReport, intake_report
from backend.archive.usecases.normalize import normalize_report
from backend.archive.usecases.partition import partition_for_report
from backend.archive.usecases.sink import complete_report
from backend.archive.workers import telemetry
from backend.storage.ports import DELETE_FIELD, BlobStoreProtocol, DocumentStoreProtocol

LOG = logging.getLogger(__name__)

ERROR_MESSAGE_LIMIT = 1024


def truncate_error_message(message: str, limit: int = ERROR_MESSAGE_LIMIT) -> str:
    text = (message or "").strip() or "Unknown error occurred"
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def omission_note(count: int) -> str:
    noun = "image" if count == 1 else "images"
    return f"\n\n---\n\n_Note: {count} {noun} could not be included in this report._"


async def _publish_progress(documents: DocumentStoreProtocol, report_id: str, progress: Progress) -> None:
    await documents.update(REPORTS, report_id, {"progress": progress.to_document()})


async def mark_report_failed(documents: DocumentStoreProtocol, report_id: str, message: str) -> None:
    await documents.update(
        REPORTS,
        report_id,
        {
            "status": Status.FAILED.value,
            "error": truncate_error_message(message),
            "completedAt": isoformat(utcnow()),
            "progress": DELETE_FIELD,
        },
    )


async def _run_single_shot(
    resolved: ResolvedReport,
    context: GenerationContext,
    *,
    documents: DocumentStoreProtocol,
    blobs: BlobStoreProtocol,
    generator: GenerationAdapterProtocol,
    config: ReportConfig,
) -> ReportLocation:
    total = len(resolved.images)
    await _publish_progress(
        documents,
        context.report_id,
        Progress(images_processed=0, total_images=total, message=f"Processing {total} images..."),
    )
    raw, omitted = await execute_single_shot(
        resolved.images, context=context, blobs=blobs, generator=generator, config=config
    )
    text = normalize_report(raw, resolved.template)
    omitted_total = omitted + resolved.unresolved
    if omitted_total:
        text += omission_note(omitted_total)
    return await complete_report(
        context.report_id,
        text,
        documents=documents,
        blobs=blobs,
        config=config,
        omitted_images=omitted_total,
    )


async def _run_batched(
    resolved: ResolvedReport,
    context: GenerationContext,
    *,
    documents: DocumentStoreProtocol,
    blobs: BlobStoreProtocol,
    generator: GenerationAdapterProtocol,
    config: ReportConfig,
    sleep: Callable[[float], Awaitable[None]],
) -> ReportLocation:
    batches, size = partition_for_report(resolved.images, config)
    total = len(resolved.images)
    LOG.info(
        "archive.report.partition action=created report_id=%s batches=%s size=%s",
        context.report_id,
        len(batches),
        size,
    )
    await _publish_progress(
        documents,
        context.report_id,
        Progress(images_processed=0, total_images=total, message=f"Starting to process {total} images..."),
    )
    result = await run_batches(
        batches,
        run_batch=partial(execute_batch, context=context, blobs=blobs, generator=generator, config=config),
        config=config,
        on_progress=partial(_publish_progress, documents, context.report_id),
        sleep=sleep,
        report_id=context.report_id,
    )
    await _publish_progress(
        documents,
        context.report_id,
        Progress(images_processed=total, total_images=total, message="Finalizing your report..."),
    )
    omitted_total = result.omitted_images + resolved.unresolved
    raw = assemble_report(
        result.outcomes,
        total_exhibits=total,
        style=context.style,
        depth=context.depth,
        omitted_images=omitted_total,
    )
    text = normalize_report(raw, resolved.template)
    LOG.info(
        "archive.report.batches action=completed report_id=%s total=%s ok=%s failed=%s retried=%s",
        context.report_id,
        result.metrics.total_batches,
        result.metrics.successful_batches,
        result.metrics.failed_batches,
        result.metrics.retried_batches,
    )
    return await complete_report(
        context.report_id,
        text,
        documents=documents,
        blobs=blobs,
        config=config,
        metrics=result.metrics,
        omitted_images=omitted_total,
    )


async def generate_report(
    report_id: str,
    *,
    documents: DocumentStoreProtocol,
    blobs: BlobStoreProtocol,
    generator: GenerationAdapterProtocol,
    config: ReportConfig,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Optional[ReportLocation]:
    """Run the whole pipeline for one report.

    Returns:
        The stored location on success; None when the report was skipped or
        ended in `failed`. Never raises for pipeline failures.
    """
    doc = await documents.get(REPORTS, report_id)
    if doc is None:
        LOG.warning("archive.report action=missing report_id=%s", report_id)
        return None
    try:
        status = parse_status(doc.get("status", Status.PENDING.value))
    except ValueError as exc:
        LOG.warning("archive.report action=skipped report_id=%s reason=%s", report_id, exc)
        return None
    if status is not Status.PENDING:
        LOG.info("archive.report action=skipped report_id=%s status=%s", report_id, status.value)
        return None

    telemetry.adjust_gauge("archive_reports_in_flight", 1)
    try:
        try:
            resolved = await intake_report(report_id, doc, documents=documents, config=config)
        except ReportValidationError as exc:
            LOG.warning("archive.report action=rejected report_id=%s reason=%s", report_id, exc)
            await mark_report_failed(documents, report_id, str(exc))
            telemetry.increment_counter("archive_reports_total", status="rejected")
            return None

        request = resolved.request
        context = GenerationContext(
            report_id=report_id,
            prompt=request.prompt,
            style=request.style,
            depth=request.depth,
            template=resolved.template,
        )
        if resolved.mode is ExecutionMode.SINGLE_SHOT:
            location = await _run_single_shot(
                resolved, context, documents=documents, blobs=blobs, generator=generator, config=config
            )
        else:
            location = await _run_batched(
                resolved,
                context,
                documents=documents,
                blobs=blobs,
                generator=generator,
                config=config,
                sleep=sleep,
            )
        telemetry.increment_counter("archive_reports_total", status="completed", mode=resolved.mode.value)
        LOG.info("archive.report action=completed report_id=%s", report_id)
        return location
    except Exception as exc:
        LOG.exception("archive.report action=failed report_id=%s error=%s", report_id, type(exc).__name__)
        telemetry.increment_counter("archive_reports_total", status="failed")
        try:
            await mark_report_failed(documents, report_id, str(exc) or type(exc).__name__)
        except Exception:
            LOG.exception("archive.report action=mark_failed_error report_id=%s", report_id)
        return None
    finally:
        telemetry.adjust_gauge("archive_reports_in_flight", -1)


__all__ = [
    "ERROR_MESSAGE_LIMIT",
    "truncate_error_message",
    "omission_note",
    "mark_report_failed",
    "generate_report",
]
