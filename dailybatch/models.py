from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


JobStatus = Literal["pending", "processing", "completed", "failed"]
JobType = Literal["blog", "translation"]

ACTIVE_STATUSES: frozenset[str] = frozenset({"pending", "processing"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContentItem(BaseModel):
    title: str
    summary: str | None = None
    content: str | None = None
    link: str | None = None
    created_at: datetime | None = None


class NewsItem(BaseModel):
    title: str
    snippet: str = ""
    link: str
    source: str | None = None


class PostDraft(BaseModel):
    title: str
    content: str
    thumbnail: str | None = None


class WorkUnit(BaseModel):
    index: int
    key: str | None = None
    topic: str | None = None
    contents: list[ContentItem] = Field(default_factory=list)
    news: list[NewsItem] = Field(default_factory=list)
    draft: PostDraft | None = None

    def correlation_id(self, prefix: str) -> str:
        return self.key or f"{prefix}-{self.index}"


class JobRecord(BaseModel):
    job_id: str
    job_type: JobType
    status: JobStatus = "pending"
    created_at: datetime = Field(default_factory=utcnow)
    display_name: str = ""
    groups: list[WorkUnit] = Field(default_factory=list)
    aux_file_path: str | None = None
    results_by_unit: dict[int, PostDraft] = Field(default_factory=dict)
    derived_job_id: str | None = None
    derived_status_by_unit: dict[int, JobStatus] = Field(default_factory=dict)
    derived_result_by_unit: dict[int, str] = Field(default_factory=dict)
    source_job_id: str | None = None
    handler_failures: int = 0

    @field_validator("results_by_unit", "derived_status_by_unit", "derived_result_by_unit", mode="before")
    @classmethod
    def _default_empty_mapping(cls, value: Any) -> Any:
        # Older snapshots wrote null or omitted the maps entirely.
        return {} if value is None else value

    def has_active_derived_job(self) -> bool:
        if not self.derived_job_id:
            return False
        return any(status in ACTIVE_STATUSES for status in self.derived_status_by_unit.values())


class RawResult(BaseModel):
    correlation_id: str | None = None
    body: Any = None
    error: str | None = None


class UnitOutcome(BaseModel):
    index: int
    key: str
    success: bool
    body: Any = None
    error: str | None = None
