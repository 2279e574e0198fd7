"""
Image text extraction, explicit reset, and image registration/deletion.
"""
from __future__ import annotations

import asyncio

import pytest

from backend.archive.config import ReportConfig
from backend.archive.domain import IMAGES, InvalidTransitionError, Status
from backend.archive.usecases.extraction import NO_TEXT_DETECTED, extract_image_text, reset_image_extraction
from backend.archive.usecases.images import delete_image, register_image
from backend.archive.usecases.prompts import EXTRACTION_PROMPT
from backend.archive.workers import telemetry
from utils.archive_fakes import ScriptedGenerator, seed_images

pytestmark = pytest.mark.anyio("asyncio")


async def test_extraction_happy_path(documents, blobs) -> None:
    (image_id,) = await seed_images(documents, blobs, 1, status="pending")
    generator = ScriptedGenerator(lambda request: "  MING VASE\n1402  ")

    status = await extract_image_text(image_id, documents=documents, blobs=blobs, generator=generator, config=ReportConfig())

    assert status is Status.COMPLETED
    doc = await documents.get(IMAGES, image_id)
    assert doc["status"] == "completed"
    assert doc["extractedText"] == "MING VASE\n1402"
    assert doc["processedAt"]
    assert "error" not in doc
    (request,) = generator.requests
    assert request.text == EXTRACTION_PROMPT
    assert request.images[0].mime_type == "image/jpeg"
    assert request.first_exhibit is None
    assert telemetry.counter_value("archive_extractions_total", status="completed") == 1


async def test_empty_answer_becomes_placeholder(documents, blobs) -> None:
    (image_id,) = await seed_images(documents, blobs, 1, status="pending")
    await extract_image_text(
        image_id, documents=documents, blobs=blobs, generator=ScriptedGenerator(lambda r: "   "), config=ReportConfig()
    )
    assert (await documents.get(IMAGES, image_id))["extractedText"] == NO_TEXT_DETECTED


async def test_generation_failure_marks_image_failed(documents, blobs) -> None:
    (image_id,) = await seed_images(documents, blobs, 1, status="pending")

    def boom(request):
        raise RuntimeError("vision model unavailable")

    status = await extract_image_text(
        image_id, documents=documents, blobs=blobs, generator=ScriptedGenerator(boom), config=ReportConfig()
    )

    assert status is Status.FAILED
    doc = await documents.get(IMAGES, image_id)
    assert doc["status"] == "failed"
    assert doc["error"] == "vision model unavailable"


async def test_extraction_timeout_marks_image_failed(documents, blobs) -> None:
    (image_id,) = await seed_images(documents, blobs, 1, status="pending")

    async def slow(request):
        await asyncio.sleep(5)
        return "late"

    status = await extract_image_text(
        image_id,
        documents=documents,
        blobs=blobs,
        generator=ScriptedGenerator(slow),
        config=ReportConfig(),
        timeout_seconds=0.01,
    )

    assert status is Status.FAILED
    assert (await documents.get(IMAGES, image_id))["error"] == "text extraction timed out"


async def test_missing_fields_fail_without_calling_model(documents, blobs) -> None:
    image_id = await documents.create(IMAGES, {"userId": "u1", "status": "pending", "fileName": "x.jpg"})
    generator = ScriptedGenerator()

    status = await extract_image_text(image_id, documents=documents, blobs=blobs, generator=generator, config=ReportConfig())

    assert status is Status.FAILED
    assert (await documents.get(IMAGES, image_id))["error"] == "Missing required fields"
    assert generator.requests == []


async def test_non_pending_images_are_skipped(documents, blobs) -> None:
    (image_id,) = await seed_images(documents, blobs, 1, status="completed")
    generator = ScriptedGenerator()
    assert await extract_image_text(image_id, documents=documents, blobs=blobs, generator=generator, config=ReportConfig()) is None
    assert generator.requests == []


async def test_reset_touches_only_the_target_record(documents, blobs) -> None:
    ids = await seed_images(documents, blobs, 3, status="failed")
    await documents.update(IMAGES, ids[1], {"error": "model overloaded"})
    before = {i: await documents.get(IMAGES, i) for i in ids}

    await reset_image_extraction(ids[1], "u1", documents=documents)

    after = {i: await documents.get(IMAGES, i) for i in ids}
    assert after[ids[0]] == before[ids[0]]
    assert after[ids[2]] == before[ids[2]]
    expected = dict(before[ids[1]])
    expected["status"] = "pending"
    expected.pop("error")
    assert after[ids[1]] == expected

    # The worker now extracts that image alone
    generator = ScriptedGenerator(lambda r: "label")
    for image_id in ids:
        await extract_image_text(image_id, documents=documents, blobs=blobs, generator=generator, config=ReportConfig())
    assert len(generator.requests) == 1
    assert (await documents.get(IMAGES, ids[1]))["status"] == "completed"


async def test_reset_checks_existence_ownership_and_status(documents, blobs) -> None:
    (image_id,) = await seed_images(documents, blobs, 1, status="failed")
    with pytest.raises(LookupError):
        await reset_image_extraction("nope", "u1", documents=documents)
    with pytest.raises(PermissionError):
        await reset_image_extraction(image_id, "intruder", documents=documents)

    (processing,) = await seed_images(documents, blobs, 1, status="processing", owner_id="u2")
    with pytest.raises(InvalidTransitionError):
        await reset_image_extraction(processing, "u2", documents=documents)
    assert (await documents.get(IMAGES, processing))["status"] == "processing"


async def test_register_and_delete_image(documents, blobs) -> None:
    image_id = await register_image(
        "u1", "My Photo (1).PNG", b"\x89PNG-bytes", documents=documents, blobs=blobs, epoch_ms=1700000000000
    )
    doc = await documents.get(IMAGES, image_id)
    assert doc["status"] == "pending"
    assert doc["fileSize"] == len(b"\x89PNG-bytes")
    path = blobs.path_from_url(doc["imageUrl"])
    assert path == "images/u1/1700000000000_My_Photo_1_.PNG"
    assert blobs.content_type(path) == "image/png"

    with pytest.raises(PermissionError):
        await delete_image(image_id, "u2", documents=documents, blobs=blobs)
    await delete_image(image_id, "u1", documents=documents, blobs=blobs)
    assert await documents.get(IMAGES, image_id) is None
    with pytest.raises(LookupError):
        await delete_image(image_id, "u1", documents=documents, blobs=blobs)


async def test_register_rejects_empty_upload(documents, blobs) -> None:
    with pytest.raises(ValueError):
        await register_image("u1", "a.jpg", b"", documents=documents, blobs=blobs)
    with pytest.raises(ValueError):
        await register_image("u1", "  ", b"data", documents=documents, blobs=blobs)
