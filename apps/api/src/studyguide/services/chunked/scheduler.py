from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
import logging

from studyguide.services.chunked.types import ChunkDescriptor, ChunkResult, ProgressRecord

logger = logging.getLogger(__name__)

ExecuteFn = Callable[[ChunkDescriptor], Awaitable[ChunkResult]]
ProgressCallback = Callable[[ProgressRecord], None]


class _ChunkCursor:
    # claim() never awaits, so two workers cannot take the same position
    def __init__(self, descriptors: Sequence[ChunkDescriptor]) -> None:
        self._descriptors = descriptors
        self._position = 0

    def claim(self) -> ChunkDescriptor | None:
        if self._position >= len(self._descriptors):
            return None
        descriptor = self._descriptors[self._position]
        self._position += 1
        return descriptor


class _ProgressTracker:
    def __init__(self, total_chunks: int, on_progress: ProgressCallback | None) -> None:
        self.total_chunks = total_chunks
        self.completed_chunks = 0
        self.errors: list[str] = []
        self._on_progress = on_progress

    def emit(self, *, current_chunk: int, status: str, stage: str, message: str) -> None:
        if self._on_progress is None:
            return
        record = ProgressRecord(
            total_chunks=self.total_chunks,
            completed_chunks=self.completed_chunks,
            current_chunk=current_chunk,
            progress_percent=round(self.completed_chunks / self.total_chunks * 100),
            status=status,
            stage=stage,
            message=message,
            errors=list(self.errors),
        )
        try:
            self._on_progress(record)
        except Exception:
            logger.warning("progress callback failed status=%s", status, exc_info=True)


async def run_all(
    execute: ExecuteFn,
    descriptors: Sequence[ChunkDescriptor],
    *,
    max_concurrency: int = 3,
    on_progress: ProgressCallback | None = None,
) -> list[ChunkResult]:
    """Run ``execute`` over every descriptor with at most ``max_concurrency`` in flight.

    Workers pull the next unclaimed descriptor from a shared cursor until it
    is exhausted. Result ``i`` always belongs to descriptor ``i`` whatever
    order the chunks finish in.
    """
    if max_concurrency < 1:
        raise ValueError("max_concurrency must be >= 1")
    if not descriptors:
        return []

    for position, descriptor in enumerate(descriptors):
        if descriptor.index != position:
            raise ValueError(
                f"descriptor index mismatch at position={position} index={descriptor.index}"
            )

    total = len(descriptors)
    slots: list[ChunkResult | None] = [None] * total
    cursor = _ChunkCursor(descriptors)
    tracker = _ProgressTracker(total, on_progress)

    tracker.emit(current_chunk=0, status="starting", stage="generating", message=f"Processing {total} chunks")

    async def worker() -> None:
        while (descriptor := cursor.claim()) is not None:
            tracker.emit(
                current_chunk=descriptor.index,
                status="processing",
                stage="generating",
                message=f"Processing pages {descriptor.start_page}-{descriptor.end_page}",
            )
            try:
                result = await execute(descriptor)
            except Exception as exc:
                logger.exception("chunk=%d executor raised", descriptor.index + 1)
                result = ChunkResult(
                    descriptor=descriptor,
                    payload=None,
                    error=str(exc) or exc.__class__.__name__,
                    processing_time_ms=0,
                )
            slots[descriptor.index] = result
            tracker.completed_chunks += 1
            if result.error is not None:
                tracker.errors.append(f"Chunk {descriptor.index + 1}: {result.error}")
            tracker.emit(
                current_chunk=descriptor.index,
                status="processing",
                stage="generating",
                message=f"Completed {tracker.completed_chunks}/{total} chunks",
            )

    await asyncio.gather(*(worker() for _ in range(min(max_concurrency, total))))

    results = [slot for slot in slots if slot is not None]
    succeeded = sum(1 for result in results if result.succeeded)
    final_status = "completed" if succeeded else "error"
    tracker.emit(
        current_chunk=total - 1,
        status=final_status,
        stage="generating",
        message=f"{succeeded}/{total} chunks succeeded",
    )
    logger.info(
        "chunk batch finished total=%d succeeded=%d failed=%d",
        total,
        succeeded,
        total - succeeded,
    )
    return results
