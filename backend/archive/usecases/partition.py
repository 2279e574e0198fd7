"""Split an ordered exhibit list into contiguous batches."""
from __future__ import annotations

from typing import Sequence

from backend.archive.config import ReportConfig
from backend.archive.domain import Batch, ExhibitImage


def batch_size_for(total: int, config: ReportConfig) -> int:
    """Return the per-batch size for `total` images using the tier table.

    Larger datasets get smaller batches to bound payload size and latency
    per call; the tier table is validated to never grow with the total.
    """
    for bound, size in config.batch_tiers:
        if total <= bound:
            return size
    return config.large_batch_size


def partition(images: Sequence[ExhibitImage], size: int) -> list[Batch]:
    """Cut `images` into consecutive slices of at most `size` items."""
    if size < 1:
        raise ValueError("batch size must be >= 1")
    return [
        Batch(index=offset // size, images=tuple(images[offset : offset + size]))
        for offset in range(0, len(images), size)
    ]


def partition_for_report(images: Sequence[ExhibitImage], config: ReportConfig) -> tuple[list[Batch], int]:
    """Partition all exhibits of a report; returns the batches and the size used."""
    size = batch_size_for(len(images), config)
    return partition(images, size), size


def split_for_retry(batch: Batch, size: int) -> list[Batch]:
    """Re-cut a failed batch into smaller slices that keep its batch index."""
    if size < 1:
        raise ValueError("batch size must be >= 1")
    return [
        Batch(index=batch.index, images=batch.images[offset : offset + size])
        for offset in range(0, len(batch.images), size)
    ]


__all__ = ["batch_size_for", "partition", "partition_for_report", "split_for_retry"]
