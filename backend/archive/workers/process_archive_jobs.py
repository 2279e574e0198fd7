"""
Archive worker: extracts text from pending images and generates pending reports.

Intent:
    Provide a minimal, framework-free worker that:
      1. Picks the oldest `pending` image and runs text extraction.
      2. Picks the oldest `pending` report and runs the report pipeline.
      3. Sleeps for `WORKER_POLL_INTERVAL` when its queue is empty.

    Images and reports are polled by two loops under one `asyncio.gather`,
    so extraction of new uploads keeps going while a report runs.

    The worker is invoked from docker-compose via:
        python -m backend.archive.workers.process_archive_jobs
"""

from __future__ import annotations

import asyncio
from functools import partial
from importlib import import_module
import logging
import os
import sys
from typing import Awaitable, Callable, Optional

from . import telemetry
from backend.archive.adapters.ports import GenerationAdapterProtocol
from backend.archive.config import ReportConfig, load_ai_config, load_report_config
from backend.archive.domain import IMAGES, REPORTS, Status
from backend.archive.usecases.extraction import extract_image_text
from backend.archive.usecases.reports import generate_report
from backend.storage.ports import BlobStoreProtocol, DocumentStoreProtocol, Filter, Query

LOG = logging.getLogger(__name__)


def _oldest_pending(collection: str, order_by: str) -> Query:
    return Query(
        collection=collection,
        where=(Filter("status", "==", Status.PENDING.value),),
        order_by=order_by,
        limit=1,
    )


async def run_image_once(
    *,
    documents: DocumentStoreProtocol,
    blobs: BlobStoreProtocol,
    generator: GenerationAdapterProtocol,
    config: ReportConfig,
    timeout_seconds: Optional[float] = None,
) -> bool:
    """Extract text for the oldest pending image; False when none is waiting."""
    images = await documents.query(_oldest_pending(IMAGES, "uploadedAt"))
    if not images:
        return False
    status = await extract_image_text(
        images[0]["id"],
        documents=documents,
        blobs=blobs,
        generator=generator,
        config=config,
        timeout_seconds=timeout_seconds,
    )
    telemetry.increment_counter(
        "archive_worker_jobs_total", kind="image", status=status.value if status else "skipped"
    )
    return True


async def run_report_once(
    *,
    documents: DocumentStoreProtocol,
    blobs: BlobStoreProtocol,
    generator: GenerationAdapterProtocol,
    config: ReportConfig,
) -> bool:
    """Run the pipeline for the oldest pending report; False when none is waiting."""
    reports = await documents.query(_oldest_pending(REPORTS, "createdAt"))
    if not reports:
        return False
    location = await generate_report(
        reports[0]["id"],
        documents=documents,
        blobs=blobs,
        generator=generator,
        config=config,
    )
    telemetry.increment_counter(
        "archive_worker_jobs_total", kind="report", status="completed" if location is not None else "failed"
    )
    return True


async def run_once(
    *,
    documents: DocumentStoreProtocol,
    blobs: BlobStoreProtocol,
    generator: GenerationAdapterProtocol,
    config: ReportConfig,
    vision_generator: Optional[GenerationAdapterProtocol] = None,
    vision_timeout_seconds: Optional[float] = None,
) -> bool:
    """
    Process at most one pending image and one pending report, one after the other.

    Parameters:
        documents/blobs: Storage adapters shared with the web layer.
        generator: Adapter used for report generation.
        vision_generator: Adapter used for text extraction (defaults to `generator`).

    Returns:
        True when any record was picked up.
    """
    image_worked = await run_image_once(
        documents=documents,
        blobs=blobs,
        generator=vision_generator or generator,
        config=config,
        timeout_seconds=vision_timeout_seconds,
    )
    report_worked = await run_report_once(documents=documents, blobs=blobs, generator=generator, config=config)
    return image_worked or report_worked


async def _poll(kind: str, step: Callable[[], Awaitable[bool]], poll_interval: float) -> None:
    LOG.info("archive.worker action=loop_started kind=%s", kind)
    while True:
        if not await step():
            await asyncio.sleep(poll_interval)


async def run_forever(
    *,
    documents: DocumentStoreProtocol,
    blobs: BlobStoreProtocol,
    generator: GenerationAdapterProtocol,
    config: ReportConfig,
    vision_generator: Optional[GenerationAdapterProtocol] = None,
    vision_timeout_seconds: Optional[float] = None,
    poll_interval: float = 0.5,
) -> None:
    """Poll images and reports in two independent loops until interrupted.

    A long report run never delays text extraction for new uploads.
    """
    await asyncio.gather(
        _poll(
            "image",
            partial(
                run_image_once,
                documents=documents,
                blobs=blobs,
                generator=vision_generator or generator,
                config=config,
                timeout_seconds=vision_timeout_seconds,
            ),
            poll_interval,
        ),
        _poll(
            "report",
            partial(run_report_once, documents=documents, blobs=blobs, generator=generator, config=config),
            poll_interval,
        ),
    )


def _should_load_dotenv() -> bool:
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("ARCHIVE_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


def _poll_interval() -> float:
    raw = os.getenv("WORKER_POLL_INTERVAL", "0.5")
    try:
        value = float(raw)
    except ValueError:
        LOG.warning("Invalid WORKER_POLL_INTERVAL=%s, defaulting to 0.5 seconds", raw)
        return 0.5
    return max(0.05, value)


async def _serve() -> None:
    from backend.storage.blobs_supabase import build_from_env
    from backend.storage.config import resolve_database_dsn
    from backend.storage.documents_db import DBDocumentStore

    ai_cfg = load_ai_config()
    report_cfg = load_report_config()
    LOG.info(
        "archive.adapters.selected backend=%s generation=%s",
        ai_cfg.backend,
        ai_cfg.generation_adapter_path,
    )
    module = import_module(ai_cfg.generation_adapter_path)
    generator = module.build(model=ai_cfg.report_model)  # type: ignore[attr-defined]
    vision_generator = module.build(model=ai_cfg.vision_model)  # type: ignore[attr-defined]

    documents = DBDocumentStore(resolve_database_dsn(), poll_interval=_poll_interval())
    await documents.ensure_schema()
    blobs = build_from_env()
    await run_forever(
        documents=documents,
        blobs=blobs,
        generator=generator,
        config=report_cfg,
        vision_generator=vision_generator,
        vision_timeout_seconds=float(ai_cfg.timeout_vision_seconds),
        poll_interval=_poll_interval(),
    )


def main() -> None:
    """CLI entrypoint for the worker."""
    if _should_load_dotenv():
        from dotenv import load_dotenv

        load_dotenv()
    level_name = os.getenv("LOG_LEVEL", "INFO")
    logging.basicConfig(level=level_name.strip().upper() or "INFO")
    asyncio.run(_serve())


if __name__ == "__main__":
    main()
