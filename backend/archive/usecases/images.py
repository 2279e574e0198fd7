"""Register uploaded images and delete them again."""
from __future__ import annotations

import logging
import time
from typing import Optional

from backend.archive.domain import IMAGES, Status, isoformat, utcnow
from backend.archive.usecases.batches import mime_type_for
from backend.storage.config import image_blob_path
from backend.storage.ports import BlobNotFoundError, BlobStoreProtocol, DocumentStoreProtocol

LOG = logging.getLogger(__name__)


async def register_image(
    owner_id: str,
    file_name: str,
    data: bytes,
    *,
    documents: DocumentStoreProtocol,
    blobs: BlobStoreProtocol,
    epoch_ms: Optional[int] = None,
) -> str:
    """Upload the bytes and create a `pending` record; returns the image id."""
    if not owner_id:
        raise ValueError("owner_id is required")
    if not file_name or not file_name.strip():
        raise ValueError("file_name is required")
    if not data:
        raise ValueError("image data must not be empty")
    stamp = epoch_ms if epoch_ms is not None else int(time.time() * 1000)
    path = image_blob_path(owner_id, file_name.strip(), epoch_ms=stamp)
    await blobs.upload(path, data, mime_type_for(file_name))
    url = await blobs.make_retrievable(path)
    image_id = await documents.create(
        IMAGES,
        {
            "userId": owner_id,
            "imageUrl": url,
            "fileName": file_name.strip(),
            "fileSize": len(data),
            "uploadedAt": isoformat(utcnow()),
            "status": Status.PENDING.value,
            "extractedText": "",
        },
    )
    LOG.info("archive.images action=registered image_id=%s bytes=%s", image_id, len(data))
    return image_id


async def delete_image(
    image_id: str, owner_id: str, *, documents: DocumentStoreProtocol, blobs: BlobStoreProtocol
) -> None:
    """Remove the blob (tolerating a missing one) and the record."""
    doc = await documents.get(IMAGES, image_id)
    if doc is None:
        raise LookupError("image not found")
    if str(doc.get("userId") or "") != owner_id:
        raise PermissionError("image belongs to another user")
    url = str(doc.get("imageUrl") or "")
    if url:
        try:
            await blobs.delete(blobs.path_from_url(url))
        except (BlobNotFoundError, ValueError) as exc:
            LOG.warning("archive.images action=blob_missing image_id=%s error=%s", image_id, type(exc).__name__)
    await documents.delete(IMAGES, image_id)
    LOG.info("archive.images action=deleted image_id=%s", image_id)


__all__ = ["register_image", "delete_image"]
