from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ProgressStatus = Literal["not_started", "starting", "processing", "completed", "error"]

TERMINAL_STATUSES = frozenset({"completed", "error"})


class StudyGuidePage(BaseModel):
    model_config = ConfigDict(extra="allow")

    page_number: int
    page_title: str = ""
    page_content: str = ""
    key_concepts: list[str] = Field(default_factory=list)
    difficulty_level: str | None = None
    prerequisites: list[str] = Field(default_factory=list)
    learning_objectives: list[str] = Field(default_factory=list)
    original_content: str | None = None


class StructuredResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    document_title: str
    total_pages: int
    pages: list[StudyGuidePage]
    overall_summary: str = ""
    learning_path: list[str] | None = None


@dataclass(frozen=True)
class ChunkDescriptor:
    start_page: int
    end_page: int
    index: int
    total_chunks: int

    @property
    def page_count(self) -> int:
        return self.end_page - self.start_page + 1

    def contains(self, page_number: int) -> bool:
        return self.start_page <= page_number <= self.end_page


@dataclass(frozen=True)
class ChunkResult:
    descriptor: ChunkDescriptor
    payload: StructuredResult | None
    error: str | None
    processing_time_ms: int

    @property
    def succeeded(self) -> bool:
        return self.payload is not None


@dataclass
class ProgressRecord:
    total_chunks: int = 0
    completed_chunks: int = 0
    current_chunk: int = 0
    progress_percent: int = 0
    status: ProgressStatus = "not_started"
    stage: str = ""
    message: str = ""
    errors: list[str] = field(default_factory=list)
    updated_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_chunks": self.total_chunks,
            "completed_chunks": self.completed_chunks,
            "current_chunk": self.current_chunk,
            "progress_percent": self.progress_percent,
            "status": self.status,
            "stage": self.stage,
            "message": self.message,
            "errors": list(self.errors),
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class MergedResult:
    document_title: str
    total_pages: int
    pages: tuple[StudyGuidePage, ...]
    overall_summary: str
    learning_path: tuple[str, ...] | None = None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "document_title": self.document_title,
            "total_pages": self.total_pages,
            "pages": [page.model_dump() for page in self.pages],
            "overall_summary": self.overall_summary,
        }
        if self.learning_path is not None:
            payload["learning_path"] = list(self.learning_path)
        return payload
