from __future__ import annotations

import math
from typing import Any

from studyguide.services.chunked.types import ChunkDescriptor

_BYTES_PER_MB = 1024 * 1024


def plan_chunks(total_pages: int, chunk_size: int) -> list[ChunkDescriptor]:
    if total_pages <= 0:
        raise ValueError("total_pages must be > 0")
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")

    total_chunks = math.ceil(total_pages / chunk_size)
    return [
        ChunkDescriptor(
            start_page=index * chunk_size + 1,
            end_page=min((index + 1) * chunk_size, total_pages),
            index=index,
            total_chunks=total_chunks,
        )
        for index in range(total_chunks)
    ]


def select_chunk_size(total_pages: int, file_size_bytes: int) -> int:
    """Pick how many pages each generation call covers.

    Long documents get wider chunks (fewer calls); heavy files get narrower
    ones so each request stays small enough not to be truncated.
    """
    if total_pages <= 0:
        raise ValueError("total_pages must be > 0")
    if file_size_bytes < 0:
        raise ValueError("file_size_bytes must be >= 0")

    if total_pages > 200:
        chunk_size = 25
    elif total_pages > 100:
        chunk_size = 20
    elif total_pages > 50:
        chunk_size = 15
    elif total_pages > 20:
        chunk_size = 10
    else:
        chunk_size = total_pages

    file_size_mb = file_size_bytes / _BYTES_PER_MB
    if file_size_mb > 50:
        chunk_size = max(chunk_size - 5, 10)
    elif file_size_mb < 20:
        chunk_size = min(chunk_size + 5, 30)

    return min(chunk_size, total_pages)


def build_plan_preview(
    total_pages: int,
    file_size_bytes: int,
    *,
    max_concurrency: int,
    seconds_per_chunk: float = 15.0,
) -> dict[str, Any]:
    if max_concurrency <= 0:
        raise ValueError("max_concurrency must be > 0")

    chunk_size = select_chunk_size(total_pages, file_size_bytes)
    chunks = plan_chunks(total_pages, chunk_size)
    batches = math.ceil(len(chunks) / max_concurrency)
    sequential_seconds = len(chunks) * seconds_per_chunk
    parallel_seconds = batches * seconds_per_chunk

    return {
        "input": {
            "total_pages": total_pages,
            "file_size_bytes": file_size_bytes,
            "file_size_mb": round(file_size_bytes / _BYTES_PER_MB, 2),
        },
        "configuration": {
            "chunk_size": chunk_size,
            "total_chunks": len(chunks),
            "max_concurrency": max_concurrency,
            "batches": batches,
        },
        "chunks": [
            {
                "index": chunk.index,
                "start_page": chunk.start_page,
                "end_page": chunk.end_page,
                "page_count": chunk.page_count,
            }
            for chunk in chunks
        ],
        "estimates": {
            "seconds_per_chunk": seconds_per_chunk,
            "sequential_seconds": sequential_seconds,
            "parallel_seconds": parallel_seconds,
            "speedup": round(sequential_seconds / parallel_seconds, 2) if parallel_seconds else 1.0,
        },
    }
