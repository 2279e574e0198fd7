"""
Report sink: inline vs. external storage around the size threshold.

Invariant under test: a completed record carries exactly one of `report`
and `reportUrl`.
"""
from __future__ import annotations

import pytest

from backend.archive.config import MAX_INLINE_REPORT_BYTES, ReportConfig
from backend.archive.domain import REPORTS, BatchMetrics, ExternalReport, InlineReport
from backend.archive.usecases.sink import REPORT_CONTENT_TYPE, complete_report, store_report_text

pytestmark = pytest.mark.anyio("asyncio")


async def _pending_report(documents) -> str:
    return await documents.create(REPORTS, {"userId": "u1", "status": "processing", "progress": {"x": 1}})


async def test_large_report_is_uploaded_and_record_holds_only_url(documents, blobs) -> None:
    report_id = await _pending_report(documents)
    text = "x" * 1_000_000

    location = await complete_report(report_id, text, documents=documents, blobs=blobs, config=ReportConfig())

    assert isinstance(location, ExternalReport)
    doc = await documents.get(REPORTS, report_id)
    assert doc["status"] == "completed"
    assert doc["reportUrl"] == location.url
    assert "report" not in doc
    assert "progress" not in doc
    path = blobs.path_from_url(location.url)
    assert path == f"reports/{report_id}.txt"
    assert await blobs.download(path) == text.encode("utf-8")
    assert blobs.content_type(path) == REPORT_CONTENT_TYPE


async def test_small_report_is_stored_inline(documents, blobs) -> None:
    report_id = await _pending_report(documents)
    text = "y" * 10_000
    metrics = BatchMetrics(total_batches=3, successful_batches=3, failed_batches=0, retried_batches=0, images_per_batch=10)

    location = await complete_report(
        report_id, text, documents=documents, blobs=blobs, config=ReportConfig(), metrics=metrics, omitted_images=2
    )

    assert location == InlineReport(text=text)
    doc = await documents.get(REPORTS, report_id)
    assert doc["report"] == text
    assert "reportUrl" not in doc
    assert doc["batchMetrics"]["totalBatches"] == 3
    assert doc["omittedImages"] == 2
    assert doc["completedAt"]


@pytest.mark.parametrize(
    "size, expected",
    [
        (MAX_INLINE_REPORT_BYTES - 1, InlineReport),
        (MAX_INLINE_REPORT_BYTES, InlineReport),
        (MAX_INLINE_REPORT_BYTES + 1, ExternalReport),
    ],
)
async def test_threshold_boundary(blobs, size: int, expected: type) -> None:
    location = await store_report_text("r-boundary", "z" * size, blobs=blobs, config=ReportConfig())
    assert isinstance(location, expected)


async def test_threshold_counts_utf8_bytes_not_characters(blobs) -> None:
    # 2 bytes per character: fits by characters, not by bytes
    text = "é" * (MAX_INLINE_REPORT_BYTES // 2 + 1)
    location = await store_report_text("r-utf8", text, blobs=blobs, config=ReportConfig())
    assert isinstance(location, ExternalReport)


async def test_completing_again_replaces_the_other_field(documents, blobs) -> None:
    report_id = await _pending_report(documents)
    config = ReportConfig(max_inline_bytes=100)
    await complete_report(report_id, "a" * 200, documents=documents, blobs=blobs, config=config)
    await complete_report(report_id, "short", documents=documents, blobs=blobs, config=config)
    doc = await documents.get(REPORTS, report_id)
    assert doc["report"] == "short"
    assert "reportUrl" not in doc
