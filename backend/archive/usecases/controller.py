"""
Concurrency controller for batched report generation.

Intent:
    Run batches through a work queue of `(batch, attempt)` items:
      1. First attempts run in waves of `concurrent_batches` and each wave is
         awaited as a whole before the next one starts.
      2. Failed batches are re-queued at the next attempt, re-cut into slices
         of `retry_batch_size`, and run one after another with a fixed delay.
      3. Results are assembled in batch-index order, so completion order
         never changes the output.

    Omitted-image counts are taken from the last attempt of each work item;
    a retried slice reports its own.

Progress:
    `ProgressAccumulator` is an immutable value advanced only at the single
    aggregation point after each wave (and after each successful retry); it
    never decreases.
"""
from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field, replace
import logging
from typing import Awaitable, Callable, Iterable, Optional, Sequence

from backend.archive.config import ReportConfig
from backend.archive.domain import Batch, BatchMetrics, BatchResult, Depth, Progress, Style
from backend.archive.usecases.partition import split_for_retry
from backend.archive.workers import telemetry

LOG = logging.getLogger(__name__)

REPORT_SEPARATOR = "\n\n---\n\n"

BatchRunner = Callable[[Batch], Awaitable[BatchResult]]
ProgressSink = Callable[[Progress], Awaitable[None]]
Sleeper = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class WorkItem:
    batch: Batch
    attempt: int = 1


@dataclass(frozen=True)
class ProgressAccumulator:
    total_images: int
    images_processed: int = 0

    def advance(self, images: int) -> "ProgressAccumulator":
        if images <= 0:
            return self
        return replace(self, images_processed=min(self.total_images, self.images_processed + images))

    def snapshot(self, message: str) -> Progress:
        return Progress(
            images_processed=self.images_processed,
            total_images=self.total_images,
            message=message,
        )


@dataclass
class BatchOutcome:
    """Accumulated state of one original batch across attempts."""

    batch: Batch
    success: bool = False
    texts: list[str] = field(default_factory=list)
    error: Optional[str] = None
    retried: bool = False
    omitted: int = 0

    @property
    def text(self) -> str:
        return "\n\n".join(t.strip() for t in self.texts if t.strip())


@dataclass(frozen=True)
class ControllerResult:
    outcomes: list[BatchOutcome]
    metrics: BatchMetrics
    progress: ProgressAccumulator

    @property
    def omitted_images(self) -> int:
        return sum(o.omitted for o in self.outcomes)


def _waves(items: Sequence[WorkItem], width: int) -> Iterable[Sequence[WorkItem]]:
    for start in range(0, len(items), width):
        yield items[start : start + width]


async def run_batches(
    batches: Sequence[Batch],
    *,
    run_batch: BatchRunner,
    config: ReportConfig,
    on_progress: Optional[ProgressSink] = None,
    sleep: Sleeper = asyncio.sleep,
    report_id: str = "",
) -> ControllerResult:
    """Execute all batches with bounded concurrency and one finer-grained retry.

    Parameters:
        batches: Partitioned batches; indices must be unique.
        run_batch: Executes one batch and never raises (see `execute_batch`).
        on_progress: Awaited with each progress snapshot, in order.
        sleep: Injected for tests; awaited between sequential retry calls.
    """
    outcomes = {b.index: BatchOutcome(batch=b) for b in batches}
    total_images = sum(len(b) for b in batches)
    progress = ProgressAccumulator(total_images=total_images)

    async def publish(message: str) -> None:
        if on_progress is not None:
            await on_progress(progress.snapshot(message))

    queue: deque[WorkItem] = deque(WorkItem(batch=b) for b in batches)
    first_attempts = [queue.popleft() for _ in range(len(queue))]

    for wave_number, wave in enumerate(_waves(first_attempts, config.concurrent_batches), start=1):
        LOG.info(
            "archive.report.wave action=started report_id=%s wave=%s batches=%s",
            report_id,
            wave_number,
            len(wave),
        )
        results = await asyncio.gather(*(run_batch(item.batch) for item in wave))
        gained = 0
        for item, result in zip(wave, results):
            outcome = outcomes[item.batch.index]
            if result.success:
                outcome.success = True
                outcome.texts.append(result.text)
                outcome.omitted += result.omitted
                gained += len(item.batch)
                telemetry.increment_counter("archive_batches_total", status="ok")
            else:
                outcome.error = result.error
                telemetry.increment_counter("archive_batches_total", status="failed")
                if item.attempt < config.max_attempts:
                    queue.extend(
                        WorkItem(batch=piece, attempt=item.attempt + 1)
                        for piece in split_for_retry(item.batch, config.retry_batch_size)
                    )
                else:
                    outcome.omitted += result.omitted
        progress = progress.advance(gained)
        await publish(f"Processing {progress.images_processed} out of {total_images} images...")

    if queue:
        LOG.warning(
            "archive.report.retry action=scheduled report_id=%s items=%s",
            report_id,
            len(queue),
        )
        await publish(f"Retrying some images... ({progress.images_processed} processed so far)")

    first_call = True
    while queue:
        item = queue.popleft()
        if not first_call:
            await sleep(config.retry_delay_seconds)
        first_call = False
        outcome = outcomes[item.batch.index]
        outcome.retried = True
        result = await run_batch(item.batch)
        telemetry.increment_counter("archive_batch_retries_total", status="ok" if result.success else "failed")
        if result.success:
            outcome.success = True
            outcome.texts.append(result.text)
            outcome.omitted += result.omitted
            progress = progress.advance(len(item.batch))
            await publish(f"Retrying some images... ({progress.images_processed} processed so far)")
        elif item.attempt < config.max_attempts:
            queue.extend(
                WorkItem(batch=piece, attempt=item.attempt + 1)
                for piece in split_for_retry(item.batch, config.retry_batch_size)
            )
        else:
            outcome.error = result.error
            outcome.omitted += result.omitted

    ordered = [outcomes[index] for index in sorted(outcomes)]
    successful = sum(1 for o in ordered if o.success)
    metrics = BatchMetrics(
        total_batches=len(ordered),
        successful_batches=successful,
        failed_batches=len(ordered) - successful,
        retried_batches=sum(1 for o in ordered if o.retried),
        images_per_batch=max((len(b) for b in batches), default=0),
    )
    for o in ordered:
        if not o.success:
            LOG.warning(
                "archive.report.batch action=dropped report_id=%s batch=%s exhibits=%s-%s",
                report_id,
                o.batch.index,
                o.batch.first_exhibit,
                o.batch.last_exhibit,
            )
    return ControllerResult(outcomes=ordered, metrics=metrics, progress=progress)


def report_header(
    *, total_exhibits: int, batch_count: int, style: Style, depth: Depth, omitted_images: int = 0
) -> str:
    lines = [
        "# Museum Collection Analysis",
        "",
        f"**Total Exhibits Analyzed:** {total_exhibits}",
        "**Processing Method:** Parallel Batch Processing",
        f"**Batches Processed:** {batch_count}",
        f"**Report Style:** {style.value.capitalize()}",
        f"**Depth:** {depth.value.capitalize()}",
    ]
    if omitted_images > 0:
        lines.append(f"**Images Omitted:** {omitted_images}")
    return "\n".join(lines) + REPORT_SEPARATOR


def assemble_report(
    outcomes: Iterable[BatchOutcome],
    *,
    total_exhibits: int,
    style: Style,
    depth: Depth,
    omitted_images: int = 0,
) -> str:
    """Join successful batch texts in index order below the report header."""
    ordered = sorted(outcomes, key=lambda o: o.batch.index)
    body = REPORT_SEPARATOR.join(o.text for o in ordered if o.success and o.text)
    header = report_header(
        total_exhibits=total_exhibits,
        batch_count=len(ordered),
        style=style,
        depth=depth,
        omitted_images=omitted_images,
    )
    return header + body


__all__ = [
    "REPORT_SEPARATOR",
    "WorkItem",
    "ProgressAccumulator",
    "BatchOutcome",
    "ControllerResult",
    "run_batches",
    "report_header",
    "assemble_report",
]
