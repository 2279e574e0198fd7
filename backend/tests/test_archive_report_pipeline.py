"""
End-to-end report pipeline on in-memory stores with a scripted generator.

Scenarios:
    - 5 images with prompt "describe" run single-shot.
    - 205 images run as 41 batches of 5 and the report is assembled in order.
    - A failing batch is retried as pairs; a permanently failing one is left out.
    - Missing/foreign images and download failures are surfaced as omitted.
    - Invalid requests end in `failed` with the validation message.
"""
from __future__ import annotations

import asyncio

import pytest

from backend.archive.config import ReportConfig
from backend.archive.domain import IMAGES, REPORTS, ExternalReport, InlineReport
from backend.archive.usecases.reports import ERROR_MESSAGE_LIMIT, generate_report, truncate_error_message
from backend.archive.workers import telemetry
from utils.archive_fakes import RecordingSleep, ScriptedGenerator, exhibit_blocks, failing_for, seed_images, seed_report

pytestmark = pytest.mark.anyio("asyncio")


class _ProgressSpy:
    """Wrap a document store and record every progress snapshot written."""

    def __init__(self, inner) -> None:
        self._inner = inner
        self.progress: list[dict] = []
        self.statuses: list[str] = []

    async def update(self, collection, doc_id, fields):
        if collection == REPORTS:
            if isinstance(fields.get("progress"), dict):
                self.progress.append(fields["progress"])
            if isinstance(fields.get("status"), str):
                self.statuses.append(fields["status"])
        return await self._inner.update(collection, doc_id, fields)

    def __getattr__(self, name):
        return getattr(self._inner, name)


async def test_five_images_run_single_shot(documents, blobs) -> None:
    ids = await seed_images(documents, blobs, 5)
    report_id = await seed_report(documents, ids, prompt="describe")
    generator = ScriptedGenerator()
    spy = _ProgressSpy(documents)

    location = await generate_report(
        report_id, documents=spy, blobs=blobs, generator=generator, config=ReportConfig()
    )

    assert isinstance(location, InlineReport)
    assert len(generator.requests) == 1
    request = generator.requests[0]
    assert len(request.images) == 5
    assert request.max_tokens == ReportConfig().single_shot_max_tokens
    assert "describe" in request.text
    assert "--- photo_1.jpg ---" in request.text
    doc = await documents.get(REPORTS, report_id)
    assert doc["status"] == "completed"
    assert doc["report"].startswith("**EXHIBIT 1**")
    assert "batchMetrics" not in doc
    assert spy.statuses[0] == "processing"
    assert spy.progress[0]["message"] == "Preparing to process 5 images..."
    assert spy.progress[1]["message"] == "Processing 5 images..."
    assert telemetry.counter_value("archive_reports_total", status="completed", mode="single_shot") == 1


async def test_205_images_run_in_41_ordered_batches(documents, blobs) -> None:
    ids = await seed_images(documents, blobs, 205)
    report_id = await seed_report(documents, ids, reportStyle="academic", reportDepth="brief")
    generator = ScriptedGenerator()
    spy = _ProgressSpy(documents)

    await generate_report(
        report_id, documents=spy, blobs=blobs, generator=generator, config=ReportConfig(), sleep=RecordingSleep()
    )

    assert len(generator.requests) == 41
    assert all(len(r.images) <= 5 for r in generator.requests)
    bounds = sorted((r.first_exhibit, r.last_exhibit) for r in generator.requests)
    assert bounds[0] == (1, 5) and bounds[-1] == (201, 205)
    assert any("Generate report for exhibits 1 to 5." in r.text for r in generator.requests)
    doc = await documents.get(REPORTS, report_id)
    text = doc["report"]
    assert text.startswith("# Museum Collection Analysis")
    assert "**Total Exhibits Analyzed:** 205" in text
    assert "**Batches Processed:** 41" in text
    assert "**Report Style:** Academic" in text
    positions = [text.index(f"**EXHIBIT {n}**\n") for n in (1, 6, 100, 205)]
    assert positions == sorted(positions)
    assert doc["batchMetrics"] == {
        "totalBatches": 41,
        "successfulBatches": 41,
        "failedBatches": 0,
        "retriedBatches": 0,
        "imagesPerBatch": 5,
    }
    messages = [p["message"] for p in spy.progress]
    assert messages[0] == "Preparing to process 205 images..."
    assert messages[1] == "Starting to process 205 images..."
    assert "Processing 150 out of 205 images..." in messages
    assert messages[-1] == "Finalizing your report..."
    processed = [p["imagesProcessed"] for p in spy.progress]
    assert processed == sorted(processed)


class _ReadCounter:
    """Wrap a document store and count reads per collection."""

    def __init__(self, inner) -> None:
        self._inner = inner
        self.gets: dict[str, int] = {}
        self.get_many_calls: dict[str, int] = {}

    async def get(self, collection, doc_id):
        self.gets[collection] = self.gets.get(collection, 0) + 1
        return await self._inner.get(collection, doc_id)

    async def get_many(self, collection, doc_ids):
        self.get_many_calls[collection] = self.get_many_calls.get(collection, 0) + 1
        return await self._inner.get_many(collection, doc_ids)

    def __getattr__(self, name):
        return getattr(self._inner, name)


async def test_image_resolution_reads_the_store_once_regardless_of_size(documents, blobs) -> None:
    ids = await seed_images(documents, blobs, 205)
    report_id = await seed_report(documents, ids)
    counter = _ReadCounter(documents)

    await generate_report(
        report_id, documents=counter, blobs=blobs, generator=ScriptedGenerator(), config=ReportConfig(), sleep=RecordingSleep()
    )

    assert counter.get_many_calls == {IMAGES: 1}
    assert counter.gets.get(IMAGES, 0) == 0
    assert counter.gets.get(REPORTS, 0) <= 2
    doc = await documents.get(REPORTS, report_id)
    assert doc["status"] == "completed"


async def test_failing_batch_recovered_by_pair_retries(documents, blobs) -> None:
    ids = await seed_images(documents, blobs, 30)
    report_id = await seed_report(documents, ids)
    # 30 images -> batches of 10; exhibits 11..20 fail on their first call only
    generator = ScriptedGenerator(failing_for({15}, times=1))
    sleep = RecordingSleep()

    await generate_report(report_id, documents=documents, blobs=blobs, generator=generator, config=ReportConfig(), sleep=sleep)

    doc = await documents.get(REPORTS, report_id)
    assert doc["status"] == "completed"
    assert doc["batchMetrics"]["retriedBatches"] == 1
    assert doc["batchMetrics"]["failedBatches"] == 0
    retry_sizes = [len(r.images) for r in generator.requests[3:]]
    assert retry_sizes == [2, 2, 2, 2, 2]
    assert sleep.calls == [1.0] * 4
    for n in range(11, 21):
        assert f"**EXHIBIT {n}**" in doc["report"]


async def test_permanently_failing_batch_is_omitted_not_fatal(documents, blobs) -> None:
    ids = await seed_images(documents, blobs, 30)
    report_id = await seed_report(documents, ids)
    generator = ScriptedGenerator(failing_for(set(range(11, 21))))

    await generate_report(
        report_id, documents=documents, blobs=blobs, generator=generator, config=ReportConfig(), sleep=RecordingSleep()
    )

    doc = await documents.get(REPORTS, report_id)
    assert doc["status"] == "completed"
    assert doc["batchMetrics"]["failedBatches"] == 1
    assert doc["batchMetrics"]["successfulBatches"] == 2
    assert "**EXHIBIT 12**" not in doc["report"]
    assert "**EXHIBIT 10**" in doc["report"] and "**EXHIBIT 21**" in doc["report"]


async def test_unresolvable_and_undownloadable_images_are_reported_as_omitted(documents, blobs) -> None:
    ids = await seed_images(documents, blobs, 4)
    foreign = await seed_images(documents, blobs, 1, owner_id="someone-else")
    broken = await documents.create(
        IMAGES, {"userId": "u1", "imageUrl": "memory://archive/images/u1/gone.jpg", "fileName": "gone.jpg", "status": "completed"}
    )
    report_id = await seed_report(documents, ids + ["does-not-exist"] + foreign + [broken])
    generator = ScriptedGenerator()

    await generate_report(report_id, documents=documents, blobs=blobs, generator=generator, config=ReportConfig())

    doc = await documents.get(REPORTS, report_id)
    assert doc["status"] == "completed"
    assert doc["omittedImages"] == 3
    assert "3 images could not be included" in doc["report"]
    assert len(generator.requests[0].images) == 4


async def test_download_failure_in_a_timed_out_batch_is_still_omitted(documents, blobs) -> None:
    ids = await seed_images(documents, blobs, 30)
    ids[14] = await documents.create(
        IMAGES, {"userId": "u1", "imageUrl": "memory://archive/images/u1/gone.jpg", "fileName": "gone.jpg", "status": "completed"}
    )
    report_id = await seed_report(documents, ids)

    async def hang_on_fifteen(request):
        if request.first_exhibit <= 15 <= request.last_exhibit:
            await asyncio.sleep(5)
        return exhibit_blocks(request)

    config = ReportConfig(call_timeout_seconds=0.05)
    await generate_report(
        report_id, documents=documents, blobs=blobs, generator=ScriptedGenerator(hang_on_fifteen), config=config, sleep=RecordingSleep()
    )

    doc = await documents.get(REPORTS, report_id)
    assert doc["status"] == "completed"
    assert doc["batchMetrics"]["failedBatches"] == 0
    assert doc["omittedImages"] == 1
    assert "**EXHIBIT 13**" in doc["report"] and "**EXHIBIT 17**" in doc["report"]


async def test_large_report_goes_to_blob_storage(documents, blobs) -> None:
    ids = await seed_images(documents, blobs, 2)
    report_id = await seed_report(documents, ids)
    generator = ScriptedGenerator(lambda request: "w" * 1_000_000)

    location = await generate_report(report_id, documents=documents, blobs=blobs, generator=generator, config=ReportConfig())

    assert isinstance(location, ExternalReport)
    doc = await documents.get(REPORTS, report_id)
    assert doc["reportUrl"] == location.url
    assert "report" not in doc


@pytest.mark.parametrize(
    "fields, message",
    [
        ({"imageIds": []}, "No images selected"),
        ({"prompt": "   "}, "Prompt must not be empty"),
        ({"reportDepth": "epic"}, "Unknown report depth: epic"),
        ({"imageIds": ["missing-1", "missing-2"]}, "No valid images found"),
    ],
)
async def test_invalid_requests_end_failed(documents, blobs, fields: dict, message: str) -> None:
    ids = await seed_images(documents, blobs, 1)
    report_id = await seed_report(documents, ids, **fields)
    generator = ScriptedGenerator()

    assert await generate_report(report_id, documents=documents, blobs=blobs, generator=generator, config=ReportConfig()) is None

    doc = await documents.get(REPORTS, report_id)
    assert doc["status"] == "failed"
    assert doc["error"] == message
    assert generator.requests == []
    assert telemetry.counter_value("archive_reports_total", status="rejected") == 1
    assert telemetry.gauge_value("archive_reports_in_flight") == 0


async def test_single_shot_generation_error_marks_report_failed(documents, blobs) -> None:
    ids = await seed_images(documents, blobs, 3)
    report_id = await seed_report(documents, ids)

    def boom(request):
        raise RuntimeError("model exploded")

    await generate_report(report_id, documents=documents, blobs=blobs, generator=ScriptedGenerator(boom), config=ReportConfig())

    doc = await documents.get(REPORTS, report_id)
    assert doc["status"] == "failed"
    assert doc["error"] == "model exploded"
    assert "progress" not in doc


async def test_non_pending_reports_are_skipped(documents, blobs) -> None:
    ids = await seed_images(documents, blobs, 1)
    report_id = await seed_report(documents, ids, status="completed", report="done")
    generator = ScriptedGenerator()

    assert await generate_report(report_id, documents=documents, blobs=blobs, generator=generator, config=ReportConfig()) is None
    assert generator.requests == []
    assert (await documents.get(REPORTS, report_id))["report"] == "done"


def test_error_messages_are_truncated() -> None:
    long = "e" * (ERROR_MESSAGE_LIMIT * 2)
    out = truncate_error_message(long)
    assert len(out) == ERROR_MESSAGE_LIMIT
    assert out.endswith("...")
    assert truncate_error_message("  ") == "Unknown error occurred"
