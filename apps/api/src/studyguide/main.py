from datetime import datetime, timezone
from functools import lru_cache
import re
from typing import Annotated, Any, Literal

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from studyguide.config import get_settings
from studyguide.db import get_engine, init_db
from studyguide.generation import GeminiGenerationClient, GenerationClient
from studyguide.models import StudyGuideJobRecord
from studyguide.services.chunked import (
    InMemoryProgressStore,
    ProgressRecord,
    ProgressReporter,
    build_plan_preview,
)
from studyguide.services.chunked.job_runner import run_study_guide_job

app = FastAPI(title="Study Guide Pipeline API", version="0.1.0")


class StudyGuideJobRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    user_id: str = Field(min_length=1, max_length=64)
    document_id: str = Field(min_length=1, max_length=64)
    file_uri: str = Field(min_length=1)
    mime_type: str = Field(default="application/pdf", min_length=1)
    total_pages: int = Field(ge=1)
    file_size_bytes: int = Field(ge=0)
    context_text: str = ""
    document_title: str | None = None
    max_concurrency: int | None = Field(default=None, ge=1, le=16)


class ProgressPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total_chunks: int = Field(default=0, ge=0)
    completed_chunks: int = Field(default=0, ge=0)
    current_chunk: int = Field(default=0, ge=0)
    progress_percent: int = Field(default=0, ge=0, le=100)
    status: Literal["starting", "processing", "completed", "error"]
    stage: str = ""
    message: str = ""
    errors: list[str] = Field(default_factory=list)


class ProgressUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(min_length=1)
    document_id: str = Field(min_length=1)
    progress: ProgressPayload


@app.on_event("startup")
def startup() -> None:
    init_db()


def get_generation_client() -> GenerationClient:
    settings = get_settings()
    return GeminiGenerationClient(
        base_url=settings.gemini_base_url,
        api_key=settings.gemini_api_key,
        model=settings.gemini_model,
        timeout_seconds=settings.gemini_timeout_seconds,
    )


@lru_cache
def get_progress_reporter() -> ProgressReporter:
    return ProgressReporter(
        InMemoryProgressStore(),
        ttl_seconds=get_settings().progress_ttl_seconds,
    )


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def _job_summary(job: StudyGuideJobRecord) -> dict[str, Any]:
    return {
        "id": job.id,
        "user_id": job.user_id,
        "document_id": job.document_id,
        "status": job.status,
    }


def _job_detail(job: StudyGuideJobRecord) -> dict[str, Any]:
    return {
        **_job_summary(job),
        "document_title": job.document_title,
        "total_pages": job.total_pages,
        "file_size_bytes": job.file_size_bytes,
        "max_concurrency": job.max_concurrency,
        "created_at": _to_iso(job.created_at),
        "updated_at": _to_iso(job.updated_at),
        "started_at": _to_iso(job.started_at),
        "finished_at": _to_iso(job.finished_at),
        "error": job.error,
        "result_json": job.result_json if isinstance(job.result_json, dict) else None,
    }


def _extract_numeric_suffix(value: str) -> int | None:
    match = re.search(r"(\d+)$", value)
    if match is None:
        return None
    return int(match.group(1))


def _next_job_id(session: Session) -> str:
    next_id = 1
    for existing_id in session.scalars(select(StudyGuideJobRecord.id)).all():
        parsed = _extract_numeric_suffix(str(existing_id))
        if parsed is None:
            continue
        next_id = max(next_id, parsed + 1)
    return str(next_id)


def _require_progress_key(user_id: str | None, document_id: str | None) -> tuple[str, str]:
    if not user_id or not user_id.strip() or not document_id or not document_id.strip():
        raise HTTPException(status_code=400, detail="user_id and document_id are required")
    return user_id.strip(), document_id.strip()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/study-guide/plan")
def study_guide_plan(
    pages: int = Query(ge=1),
    size: int = Query(default=20 * 1024 * 1024, ge=0),
    max_concurrency: int | None = Query(default=None, ge=1, le=16),
) -> dict[str, Any]:
    concurrency = max_concurrency or get_settings().chunk_max_concurrency
    return build_plan_preview(pages, size, max_concurrency=concurrency)


@app.post("/study-guide/jobs")
def enqueue_study_guide_job(
    request: StudyGuideJobRequest,
    background_tasks: BackgroundTasks,
    client: Annotated[GenerationClient, Depends(get_generation_client)],
    reporter: Annotated[ProgressReporter, Depends(get_progress_reporter)],
) -> JSONResponse:
    settings = get_settings()

    with Session(get_engine()) as session:
        existing = session.scalar(
            select(StudyGuideJobRecord)
            .where(StudyGuideJobRecord.user_id == request.user_id)
            .where(StudyGuideJobRecord.document_id == request.document_id)
            .where(StudyGuideJobRecord.status.in_(["queued", "running"]))
            .order_by(StudyGuideJobRecord.created_at.asc(), StudyGuideJobRecord.id.asc())
            .limit(1)
        )
        if existing is not None:
            return JSONResponse(
                status_code=409,
                content={
                    "detail": "study guide generation already queued/running",
                    "existing_job_id": existing.id,
                },
            )

        job = StudyGuideJobRecord(
            id=_next_job_id(session),
            user_id=request.user_id,
            document_id=request.document_id,
            status="queued",
            file_uri=request.file_uri,
            mime_type=request.mime_type,
            document_title=request.document_title,
            total_pages=request.total_pages,
            file_size_bytes=request.file_size_bytes,
            context_text=request.context_text,
            max_concurrency=request.max_concurrency or settings.chunk_max_concurrency,
            updated_at=datetime.now(timezone.utc),
        )
        session.add(job)
        session.commit()
        job_id = job.id
        job_status = job.status

    reporter.update(
        request.user_id,
        request.document_id,
        ProgressRecord(status="starting", stage="queued", message="Study guide generation queued"),
    )
    background_tasks.add_task(
        run_study_guide_job,
        job_id,
        client=client,
        reporter=reporter,
        settings=settings,
    )

    return JSONResponse(status_code=202, content={"job_id": job_id, "status": job_status})


@app.get("/jobs")
def list_jobs(
    status: str | None = Query(default=None),
    user_id: str | None = Query(default=None),
) -> list[dict[str, Any]]:
    with Session(get_engine()) as session:
        stmt = select(StudyGuideJobRecord)
        if status is not None:
            stmt = stmt.where(StudyGuideJobRecord.status == status)
        if user_id is not None:
            stmt = stmt.where(StudyGuideJobRecord.user_id == user_id)

        jobs = session.scalars(
            stmt.order_by(StudyGuideJobRecord.created_at.asc(), StudyGuideJobRecord.id.asc())
        ).all()

    return [_job_summary(job) for job in jobs]


@app.get("/jobs/{job_id}")
def get_job(job_id: str) -> dict[str, Any]:
    with Session(get_engine()) as session:
        job = session.get(StudyGuideJobRecord, job_id)

    if job is None:
        raise HTTPException(status_code=404, detail="job not found")
    return _job_detail(job)


@app.get("/study-guide/progress")
def get_progress(
    reporter: Annotated[ProgressReporter, Depends(get_progress_reporter)],
    user_id: str | None = Query(default=None),
    document_id: str | None = Query(default=None),
) -> dict[str, Any]:
    user_key, document_key = _require_progress_key(user_id, document_id)
    return {"progress": reporter.get(user_key, document_key).as_dict()}


@app.post("/study-guide/progress")
def post_progress(
    request: ProgressUpdateRequest,
    reporter: Annotated[ProgressReporter, Depends(get_progress_reporter)],
) -> dict[str, bool]:
    user_key, document_key = _require_progress_key(request.user_id, request.document_id)
    reporter.update(user_key, document_key, ProgressRecord(**request.progress.model_dump()))
    return {"success": True}


@app.delete("/study-guide/progress")
def delete_progress(
    reporter: Annotated[ProgressReporter, Depends(get_progress_reporter)],
    user_id: str | None = Query(default=None),
    document_id: str | None = Query(default=None),
) -> dict[str, bool]:
    user_key, document_key = _require_progress_key(user_id, document_id)
    reporter.clear(user_key, document_key)
    return {"success": True}


def run() -> None:
    import uvicorn

    uvicorn.run("studyguide.main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    run()
