"""
Image text extraction and its explicit retry.

Intent:
    `extract_image_text` processes one `pending` image record through the
    generation service with a fixed transcription prompt.
    `reset_image_extraction` is the only path back to `pending`; the worker
    picks the record up again on its next poll.
"""
from __future__ import annotations

import asyncio
import base64
import logging
from typing import Optional

from backend.archive.adapters.ports import GenerationAdapterProtocol, GenerationRequest, ImagePart
from backend.archive.config import ReportConfig
from backend.archive.domain import IMAGES, InvalidTransitionError, Status, ensure_transition, isoformat, parse_status, utcnow
from backend.archive.usecases.batches import mime_type_for
from backend.archive.usecases.prompts import EXTRACTION_PROMPT, EXTRACTION_SYSTEM_PROMPT
from backend.archive.usecases.reports import truncate_error_message
from backend.archive.workers import telemetry
from backend.storage.ports import DELETE_FIELD, BlobStoreProtocol, DocumentStoreProtocol

LOG = logging.getLogger(__name__)

NO_TEXT_DETECTED = "No text detected"


async def extract_image_text(
    image_id: str,
    *,
    documents: DocumentStoreProtocol,
    blobs: BlobStoreProtocol,
    generator: GenerationAdapterProtocol,
    config: ReportConfig,
    timeout_seconds: Optional[float] = None,
) -> Optional[Status]:
    """Extract text for one image; returns the terminal status or None if skipped."""
    doc = await documents.get(IMAGES, image_id)
    if doc is None:
        LOG.warning("archive.extraction action=missing image_id=%s", image_id)
        return None
    current = parse_status(doc.get("status", Status.PENDING.value))
    if current is not Status.PENDING:
        return None

    if not doc.get("imageUrl") or not doc.get("userId"):
        ensure_transition(current, Status.FAILED)
        await documents.update(
            IMAGES,
            image_id,
            {"status": Status.FAILED.value, "error": "Missing required fields"},
        )
        telemetry.increment_counter("archive_extractions_total", status="failed")
        return Status.FAILED

    ensure_transition(current, Status.PROCESSING)
    await documents.update(IMAGES, image_id, {"status": Status.PROCESSING.value})
    try:
        data = await blobs.download(blobs.path_from_url(str(doc["imageUrl"])))
        request = GenerationRequest(
            system_prompt=EXTRACTION_SYSTEM_PROMPT,
            images=(
                ImagePart(
                    data_b64=base64.b64encode(data).decode("ascii"),
                    mime_type=mime_type_for(str(doc.get("fileName") or "")),
                ),
            ),
            text=EXTRACTION_PROMPT,
            max_tokens=config.extraction_max_tokens,
        )
        text = await asyncio.wait_for(
            generator.generate(request),
            timeout=timeout_seconds or config.call_timeout_seconds,
        )
    except Exception as exc:
        message = "text extraction timed out" if isinstance(exc, asyncio.TimeoutError) else str(exc)
        LOG.warning("archive.extraction action=failed image_id=%s error=%s", image_id, type(exc).__name__)
        await documents.update(
            IMAGES,
            image_id,
            {
                "status": Status.FAILED.value,
                "error": truncate_error_message(message or type(exc).__name__),
            },
        )
        telemetry.increment_counter("archive_extractions_total", status="failed")
        return Status.FAILED

    await documents.update(
        IMAGES,
        image_id,
        {
            "status": Status.COMPLETED.value,
            "extractedText": (text or "").strip() or NO_TEXT_DETECTED,
            "processedAt": isoformat(utcnow()),
            "error": DELETE_FIELD,
        },
    )
    telemetry.increment_counter("archive_extractions_total", status="completed")
    LOG.info("archive.extraction action=completed image_id=%s chars=%s", image_id, len(text or ""))
    return Status.COMPLETED


async def reset_image_extraction(image_id: str, owner_id: str, *, documents: DocumentStoreProtocol) -> None:
    """Put one image back to `pending` so extraction runs again.

    Raises:
        LookupError: the image does not exist.
        PermissionError: the image belongs to another user.
        InvalidTransitionError: extraction is currently running.
    """
    doc = await documents.get(IMAGES, image_id)
    if doc is None:
        raise LookupError("image not found")
    if str(doc.get("userId") or "") != owner_id:
        raise PermissionError("image belongs to another user")
    current = parse_status(doc.get("status", Status.PENDING.value))
    if current is Status.PROCESSING:
        raise InvalidTransitionError("processing -> pending")
    ensure_transition(current, Status.PENDING, reset=True)
    await documents.update(IMAGES, image_id, {"status": Status.PENDING.value, "error": DELETE_FIELD})
    LOG.info("archive.extraction action=reset image_id=%s", image_id)


__all__ = ["NO_TEXT_DETECTED", "extract_image_text", "reset_image_extraction"]
