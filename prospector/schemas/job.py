from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator

from prospector.config import settings


class ProspectFilters(BaseModel):
    titles: list[str] = Field(default_factory=list, validation_alias=AliasChoices("titles", "titleRoles", "title_roles"))
    country: str | None = None  # ISO country code
    industry: str | None = None


class JobCreate(BaseModel):
    prompt: str
    size: int = settings.default_job_size
    providers: list[str] = []  # empty = settings.default_provider
    filters: ProspectFilters = ProspectFilters()

    @field_validator("prompt")
    @classmethod
    def _prompt_long_enough(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 6:
            raise ValueError("Prompt too short")
        return v

    @field_validator("size")
    @classmethod
    def _clamp_size(cls, v: int) -> int:
        return min(max(v, 1), settings.max_job_size)


class JobOut(BaseModel):
    id: str
    tenant_id: str
    created_by: str | None
    prompt: str
    size: int
    providers: list[str]
    filters: dict[str, Any]
    status: str
    attempts: int
    max_attempts: int
    error_text: str | None
    total_candidates: int
    deduped_candidates: int
    duplicate_count: int
    inserted_count: int
    import_job_id: str | None
    created_at: datetime
    started_at: datetime | None
    finished_at: datetime | None


class EventOut(BaseModel):
    id: int
    level: str
    message: str
    meta: dict[str, Any] | None
    created_at: datetime


class QuotaOut(BaseModel):
    used: int
    cap: int
    remaining: int


class QuotaUpdate(BaseModel):
    daily_cap: int | None = Field(None, ge=0)  # None = system default
