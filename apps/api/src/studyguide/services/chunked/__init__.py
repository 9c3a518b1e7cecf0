from studyguide.services.chunked.executor import ChunkExecutor, RetryPolicy
from studyguide.services.chunked.merger import merge_chunk_results
from studyguide.services.chunked.pipeline import NoPagesGeneratedError, process_large_document
from studyguide.services.chunked.planner import build_plan_preview, plan_chunks, select_chunk_size
from studyguide.services.chunked.progress import InMemoryProgressStore, ProgressReporter
from studyguide.services.chunked.scheduler import run_all
from studyguide.services.chunked.types import (
    ChunkDescriptor,
    ChunkResult,
    MergedResult,
    ProgressRecord,
    StructuredResult,
    StudyGuidePage,
)

__all__ = [
    "ChunkDescriptor",
    "ChunkExecutor",
    "ChunkResult",
    "InMemoryProgressStore",
    "MergedResult",
    "NoPagesGeneratedError",
    "ProgressRecord",
    "ProgressReporter",
    "RetryPolicy",
    "StructuredResult",
    "StudyGuidePage",
    "build_plan_preview",
    "merge_chunk_results",
    "plan_chunks",
    "process_large_document",
    "run_all",
    "select_chunk_size",
]
