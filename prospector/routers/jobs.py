import json
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from prospector.db.database import get_db
from prospector.db.models import ProspectEvent, ProspectJob
from prospector.errors import JobNotFound, NotCancelable
from prospector.routers.deps import get_actor_id, get_tenant_id
from prospector.schemas.job import EventOut, JobCreate, JobOut
from prospector.services import job_service

router = APIRouter()


def _job_to_out(job: ProspectJob) -> dict:
    return {
        "id": job.id, "tenant_id": job.tenant_id, "created_by": job.created_by,
        "prompt": job.prompt, "size": job.size,
        "providers": json.loads(job.providers or "[]"),
        "filters": json.loads(job.filters or "{}"),
        "status": job.status,
        "attempts": job.attempts or 0, "max_attempts": job.max_attempts or 0,
        "error_text": job.error_text,
        "total_candidates": job.total_candidates or 0,
        "deduped_candidates": job.deduped_candidates or 0,
        "duplicate_count": job.duplicate_count or 0,
        "inserted_count": job.inserted_count or 0,
        "import_job_id": job.import_job_id,
        "created_at": job.created_at, "started_at": job.started_at, "finished_at": job.finished_at,
    }


def _event_to_out(event: ProspectEvent) -> dict:
    return {
        "id": event.id, "level": event.level, "message": event.message,
        "meta": json.loads(event.meta) if event.meta else None,
        "created_at": event.created_at,
    }


@router.get("", response_model=list[JobOut])
async def list_jobs(
    status: str | None = None,
    created_by: str | None = None,
    sort_by: str = "created_at",
    sort_dir: str = "desc",
    limit: int = Query(50, ge=1, le=200),
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
):
    try:
        jobs = await job_service.list_jobs(
            db, tenant_id,
            filters={"status": status, "created_by": created_by},
            sort_by=sort_by, sort_dir=sort_dir, limit=limit,
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    return [_job_to_out(j) for j in jobs]


@router.post("", response_model=JobOut, status_code=201)
async def create_job(
    data: JobCreate,
    tenant_id: str = Depends(get_tenant_id),
    actor_id: str | None = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    job = await job_service.create_job(
        db, tenant_id, actor_id,
        prompt=data.prompt,
        size=data.size,
        providers=data.providers,
        filters=data.filters.model_dump(exclude_none=True),
    )
    return _job_to_out(job)


@router.get("/{job_id}", response_model=JobOut)
async def get_job(job_id: str, tenant_id: str = Depends(get_tenant_id), db: AsyncSession = Depends(get_db)):
    job = await job_service.get_job(db, tenant_id, job_id)
    if not job:
        raise HTTPException(404, "Job not found")
    return _job_to_out(job)


@router.get("/{job_id}/events", response_model=list[EventOut])
async def get_job_events(
    job_id: str,
    since: datetime | None = None,
    limit: int = Query(200, ge=1, le=500),
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
):
    if not await job_service.get_job(db, tenant_id, job_id):
        raise HTTPException(404, "Job not found")
    events = await job_service.list_events(db, tenant_id, job_id, since=since, limit=limit)
    return [_event_to_out(e) for e in events]


@router.post("/{job_id}/cancel")
async def cancel_job(job_id: str, tenant_id: str = Depends(get_tenant_id), db: AsyncSession = Depends(get_db)):
    try:
        await job_service.cancel_job(db, tenant_id, job_id)
    except JobNotFound:
        raise HTTPException(404, "Job not found")
    except NotCancelable as e:
        raise HTTPException(409, f"Job not cancelable: {e}")
    return {"ok": True}
