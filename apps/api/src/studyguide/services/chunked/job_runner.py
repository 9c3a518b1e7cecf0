from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging

from sqlalchemy.orm import Session

from studyguide.config import Settings
from studyguide.db import get_engine
from studyguide.generation import GenerationClient
from studyguide.models import StudyGuideJobRecord
from studyguide.services.chunked.executor import RetryPolicy, SleepFn
from studyguide.services.chunked.pipeline import NoPagesGeneratedError, process_large_document
from studyguide.services.chunked.progress import ProgressReporter
from studyguide.services.chunked.types import ProgressRecord

logger = logging.getLogger(__name__)


def retry_policy_from_settings(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_retries=settings.chunk_max_retries,
        base_delay_seconds=settings.chunk_backoff_base_seconds,
        max_delay_seconds=settings.chunk_backoff_max_seconds,
        attempt_timeout_seconds=settings.chunk_attempt_timeout_seconds,
    )


def _mark_running(job_id: str) -> StudyGuideJobRecord | None:
    with Session(get_engine(), expire_on_commit=False) as session:
        job = session.get(StudyGuideJobRecord, job_id)
        if job is None or job.status != "queued":
            return None
        now = datetime.now(timezone.utc)
        job.status = "running"
        job.started_at = now
        job.updated_at = now
        job.finished_at = None
        job.error = None
        session.commit()
        return job


def _mark_finished(
    job_id: str,
    *,
    status: str,
    result_json: dict[str, object] | None = None,
    error: str | None = None,
) -> None:
    with Session(get_engine()) as session:
        job = session.get(StudyGuideJobRecord, job_id)
        if job is None:
            return
        now = datetime.now(timezone.utc)
        job.status = status
        job.result_json = result_json
        job.error = error
        job.finished_at = now
        job.updated_at = now
        session.commit()


async def run_study_guide_job(
    job_id: str,
    *,
    client: GenerationClient,
    reporter: ProgressReporter,
    settings: Settings,
    sleep: SleepFn = asyncio.sleep,
) -> None:
    job = await asyncio.to_thread(_mark_running, job_id)
    if job is None:
        logger.warning("job not claimable job_id=%s", job_id)
        return

    try:
        merged = await process_large_document(
            client,
            job.file_uri,
            job.mime_type,
            job.total_pages,
            job.file_size_bytes,
            job.context_text,
            job.document_id,
            max_concurrency=job.max_concurrency,
            on_progress=reporter.callback_for(job.user_id, job.document_id),
            document_title=job.document_title,
            retry_policy=retry_policy_from_settings(settings),
            sleep=sleep,
        )
    except NoPagesGeneratedError as exc:
        detail = "; ".join(exc.errors) if exc.errors else "all chunks returned no pages"
        await asyncio.to_thread(
            _mark_finished, job_id, status="failed", error=f"{exc}: {detail}"
        )
        logger.warning("job failed job_id=%s error=%s", job_id, exc)
        return
    except Exception as exc:
        await asyncio.to_thread(_mark_finished, job_id, status="failed", error=str(exc))
        reporter.update(
            job.user_id,
            job.document_id,
            ProgressRecord(status="error", stage="failed", message=str(exc), errors=[str(exc)]),
        )
        logger.exception("job crashed job_id=%s", job_id)
        return

    await asyncio.to_thread(
        _mark_finished, job_id, status="succeeded", result_json=merged.as_dict()
    )
    logger.info("job succeeded job_id=%s pages=%d", job_id, len(merged.pages))
