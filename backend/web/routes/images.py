"""
Image endpoints: upload, delete and retry text extraction.

Uploads send the raw image bytes as the request body and the file name in
the `X-File-Name` header; the worker picks the new `pending` record up.
"""
from __future__ import annotations

import logging
import os

from fastapi import APIRouter, Request

from backend.archive.domain import InvalidTransitionError
from backend.archive.usecases.extraction import reset_image_extraction
from backend.archive.usecases.images import delete_image, register_image
from backend.web.routes.security import error_response, private_response, require_owner, require_same_origin
from backend.web.storage_wiring import get_stores

LOG = logging.getLogger(__name__)

images_router = APIRouter(tags=["Images"])

DEFAULT_MAX_UPLOAD_BYTES = 20 * 1024 * 1024


def _max_upload_bytes() -> int:
    raw = os.getenv("ARCHIVE_MAX_UPLOAD_BYTES", str(DEFAULT_MAX_UPLOAD_BYTES))
    try:
        return max(1, int(raw))
    except ValueError:
        LOG.warning("Invalid ARCHIVE_MAX_UPLOAD_BYTES=%s, using default", raw)
        return DEFAULT_MAX_UPLOAD_BYTES


@images_router.post("/api/images")
async def upload_image(request: Request):
    """Store an uploaded image and queue it for text extraction.

    Behavior:
        - 201 with `{id, status}`.
        - 400 when the file name or body is missing, 413 when too large.
    """
    owner_id, error = require_owner(request)
    if error:
        return error
    csrf = require_same_origin(request)
    if csrf:
        return csrf
    file_name = (request.headers.get("x-file-name") or "").strip()
    data = await request.body()
    if len(data) > _max_upload_bytes():
        return error_response("payload_too_large", status_code=413)
    stores = get_stores()
    try:
        image_id = await register_image(
            owner_id, file_name, data, documents=stores.documents, blobs=stores.blobs
        )
    except ValueError as exc:
        return error_response("bad_request", status_code=400, detail=str(exc))
    return private_response({"id": image_id, "status": "pending"}, status_code=201)


@images_router.delete("/api/images/{image_id}")
async def remove_image(request: Request, image_id: str):
    owner_id, error = require_owner(request)
    if error:
        return error
    csrf = require_same_origin(request)
    if csrf:
        return csrf
    stores = get_stores()
    try:
        await delete_image(image_id, owner_id, documents=stores.documents, blobs=stores.blobs)
    except LookupError:
        return error_response("not_found", status_code=404)
    except PermissionError:
        return error_response("forbidden", status_code=403)
    return private_response({"id": image_id, "deleted": True})


@images_router.post("/api/images/{image_id}/retry")
async def retry_image(request: Request, image_id: str):
    """Reset one image to `pending` so extraction runs again (202)."""
    owner_id, error = require_owner(request)
    if error:
        return error
    csrf = require_same_origin(request)
    if csrf:
        return csrf
    try:
        await reset_image_extraction(image_id, owner_id, documents=get_stores().documents)
    except LookupError:
        return error_response("not_found", status_code=404)
    except PermissionError:
        return error_response("forbidden", status_code=403)
    except InvalidTransitionError:
        return error_response("conflict", status_code=409, detail="invalid_status")
    return private_response({"id": image_id, "status": "pending"}, status_code=202)


__all__ = ["images_router"]
