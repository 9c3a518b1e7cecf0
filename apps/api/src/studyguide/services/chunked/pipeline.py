from __future__ import annotations

import asyncio
import logging
from time import perf_counter

from studyguide.generation import GenerationClient
from studyguide.services.chunked.executor import ChunkExecutor, RetryPolicy, SleepFn
from studyguide.services.chunked.merger import merge_chunk_results
from studyguide.services.chunked.planner import plan_chunks, select_chunk_size
from studyguide.services.chunked.scheduler import ProgressCallback, run_all
from studyguide.services.chunked.types import ChunkResult, MergedResult, ProgressRecord

logger = logging.getLogger(__name__)


class NoPagesGeneratedError(RuntimeError):
    """Every chunk failed or came back empty; the batch is rejected."""

    def __init__(self, message: str, *, errors: list[str]) -> None:
        super().__init__(message)
        self.errors = errors


def _resolve_title(document_title: str | None, results: list[ChunkResult], document_id: str) -> str:
    if document_title:
        return document_title
    for result in results:
        if result.payload is not None and result.payload.document_title.strip():
            return result.payload.document_title.strip()
    return f"Document {document_id}"


def _notify(on_progress: ProgressCallback | None, record: ProgressRecord) -> None:
    if on_progress is None:
        return
    try:
        on_progress(record)
    except Exception:
        logger.warning("progress callback failed status=%s", record.status, exc_info=True)


async def process_large_document(
    client: GenerationClient,
    file_handle: str,
    mime_type: str,
    total_pages: int,
    file_size_bytes: int,
    context_text: str,
    document_id: str,
    *,
    max_concurrency: int = 3,
    on_progress: ProgressCallback | None = None,
    document_title: str | None = None,
    retry_policy: RetryPolicy | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> MergedResult:
    start = perf_counter()
    chunk_size = select_chunk_size(total_pages, file_size_bytes)
    descriptors = plan_chunks(total_pages, chunk_size)
    logger.info(
        "processing document_id=%s total_pages=%d file_size_bytes=%d chunk_size=%d chunks=%d concurrency=%d",
        document_id,
        total_pages,
        file_size_bytes,
        chunk_size,
        len(descriptors),
        max_concurrency,
    )

    executor = ChunkExecutor(
        client,
        file_handle=file_handle,
        mime_type=mime_type,
        context_text=context_text,
        retry_policy=retry_policy,
        sleep=sleep,
    )
    results = await run_all(
        executor,
        descriptors,
        max_concurrency=max_concurrency,
        on_progress=on_progress,
    )

    errors = [
        f"Chunk {result.descriptor.index + 1}: {result.error}"
        for result in results
        if result.error is not None
    ]
    merged = merge_chunk_results(
        results,
        _resolve_title(document_title, results, document_id),
        total_pages,
    )
    total = len(descriptors)

    if not merged.pages:
        _notify(
            on_progress,
            ProgressRecord(
                total_chunks=total,
                completed_chunks=total,
                current_chunk=total - 1,
                progress_percent=100,
                status="error",
                stage="merging",
                message="No pages were generated for this document",
                errors=errors,
            ),
        )
        logger.error("no pages generated document_id=%s failed_chunks=%d", document_id, len(errors))
        raise NoPagesGeneratedError(
            f"No pages were generated for document {document_id}",
            errors=errors,
        )

    _notify(
        on_progress,
        ProgressRecord(
            total_chunks=total,
            completed_chunks=total,
            current_chunk=total - 1,
            progress_percent=100,
            status="completed",
            stage="done",
            message=f"Generated {len(merged.pages)} of {total_pages} pages",
            errors=errors,
        ),
    )
    logger.info(
        "document processed document_id=%s pages=%d failed_chunks=%d duration_ms=%d",
        document_id,
        len(merged.pages),
        len(errors),
        int((perf_counter() - start) * 1000),
    )
    return merged
