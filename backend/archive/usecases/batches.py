"""
Batch executor: one generation call per contiguous slice of exhibits.

Intent:
    Download the images of a batch, build a single `GenerationRequest` and
    return a `BatchResult`. Failures never escape; they are reported as
    `success=False` so the controller can decide whether to retry.

Behavior:
    - Per-image download failures are logged and the image is left out of
      the call (counted in `omitted`).
    - If no image could be downloaded the batch fails without calling the
      model.
    - Every call is bounded by `call_timeout_seconds`.
"""
from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass
import logging
import os
from typing import Optional, Sequence

from backend.archive.adapters.ports import GenerationAdapterProtocol, GenerationRequest, ImagePart
from backend.archive.config import ReportConfig
from backend.archive.domain import Batch, BatchResult, Depth, ExhibitImage, ReportTemplate, Style
from backend.archive.usecases import prompts
from backend.storage.ports import BlobStoreProtocol

LOG = logging.getLogger(__name__)

_MIME_BY_EXTENSION = {
    ".png": "image/png",
    ".webp": "image/webp",
}


def mime_type_for(file_name: str) -> str:
    """Guess the MIME type from the file extension; JPEG is the fallback."""
    _, ext = os.path.splitext(file_name or "")
    return _MIME_BY_EXTENSION.get(ext.lower(), "image/jpeg")


@dataclass(frozen=True)
class GenerationContext:
    """Inputs shared by every batch of one report (read-only)."""

    report_id: str
    prompt: str
    style: Style
    depth: Depth
    template: Optional[ReportTemplate] = None

    @property
    def system_prompt(self) -> str:
        return prompts.build_system_prompt(self.style, self.depth, self.template)


async def load_image_parts(
    images: Sequence[ExhibitImage], *, blobs: BlobStoreProtocol, report_id: str
) -> tuple[list[ImagePart], int]:
    """Download and encode images in order; returns the parts and the omitted count."""
    parts: list[ImagePart] = []
    omitted = 0
    for image in images:
        try:
            path = blobs.path_from_url(image.image_url)
            data = await blobs.download(path)
        except Exception as exc:
            omitted += 1
            LOG.warning(
                "archive.report.image action=omitted report_id=%s image_id=%s error=%s",
                report_id,
                image.image_id,
                type(exc).__name__,
            )
            continue
        parts.append(
            ImagePart(
                data_b64=base64.b64encode(data).decode("ascii"),
                mime_type=mime_type_for(image.file_name),
            )
        )
    return parts, omitted


async def execute_batch(
    batch: Batch,
    *,
    context: GenerationContext,
    blobs: BlobStoreProtocol,
    generator: GenerationAdapterProtocol,
    config: ReportConfig,
) -> BatchResult:
    """Run one batch call and report success or failure without raising."""
    omitted = 0
    try:
        parts, omitted = await load_image_parts(batch.images, blobs=blobs, report_id=context.report_id)
        if not parts:
            return BatchResult(
                batch_index=batch.index,
                success=False,
                error="no images could be downloaded",
                image_count=len(batch),
                omitted=omitted,
            )
        request = GenerationRequest(
            system_prompt=context.system_prompt,
            images=tuple(parts),
            text=prompts.build_batch_text(context.prompt, batch.images),
            max_tokens=config.batch_max_tokens,
            first_exhibit=batch.first_exhibit,
            last_exhibit=batch.last_exhibit,
        )
        text = await asyncio.wait_for(generator.generate(request), timeout=config.call_timeout_seconds)
    except asyncio.TimeoutError:
        LOG.warning(
            "archive.report.batch action=timeout report_id=%s batch=%s",
            context.report_id,
            batch.index,
        )
        return BatchResult(
            batch_index=batch.index,
            success=False,
            error=f"generation timed out after {config.call_timeout_seconds:g}s",
            image_count=len(batch),
            omitted=omitted,
        )
    except Exception as exc:
        LOG.warning(
            "archive.report.batch action=failed report_id=%s batch=%s error=%s",
            context.report_id,
            batch.index,
            type(exc).__name__,
        )
        return BatchResult(
            batch_index=batch.index,
            success=False,
            error=str(exc) or type(exc).__name__,
            image_count=len(batch),
            omitted=omitted,
        )
    return BatchResult(
        batch_index=batch.index,
        success=True,
        text=text,
        image_count=len(batch),
        omitted=omitted,
    )


async def execute_single_shot(
    images: Sequence[ExhibitImage],
    *,
    context: GenerationContext,
    blobs: BlobStoreProtocol,
    generator: GenerationAdapterProtocol,
    config: ReportConfig,
) -> tuple[str, int]:
    """Run one call over all exhibits; errors propagate to the caller.

    Returns the generated text and the number of omitted images.
    """
    parts, omitted = await load_image_parts(images, blobs=blobs, report_id=context.report_id)
    if not parts:
        raise RuntimeError("No images could be downloaded")
    request = GenerationRequest(
        system_prompt=context.system_prompt,
        images=tuple(parts),
        text=prompts.build_single_shot_text(context.prompt, images),
        max_tokens=config.single_shot_max_tokens,
        first_exhibit=images[0].exhibit_number,
        last_exhibit=images[-1].exhibit_number,
    )
    try:
        text = await asyncio.wait_for(generator.generate(request), timeout=config.call_timeout_seconds)
    except asyncio.TimeoutError:
        raise RuntimeError(f"generation timed out after {config.call_timeout_seconds:g}s") from None
    return text, omitted


__all__ = [
    "GenerationContext",
    "mime_type_for",
    "load_image_parts",
    "execute_batch",
    "execute_single_shot",
]
