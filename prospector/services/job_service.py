import json
import logging
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from prospector.config import settings
from prospector.db.filters import apply_filters, apply_sort
from prospector.db.models import (
    CANCELED,
    DONE,
    FAILED,
    QUEUED,
    RUNNING,
    ProspectEvent,
    ProspectJob,
)
from prospector.errors import JobNotFound, NotCancelable

logger = logging.getLogger(__name__)

MAX_ERROR_TEXT = 1000

JOB_FILTER_COLUMNS = {
    "status": ProspectJob.status,
    "created_by": ProspectJob.created_by,
}
JOB_SORT_COLUMNS = {
    "created_at": ProspectJob.created_at,
    "started_at": ProspectJob.started_at,
    "finished_at": ProspectJob.finished_at,
    "size": ProspectJob.size,
    "status": ProspectJob.status,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _claimable():
    return or_(
        ProspectJob.status == QUEUED,
        and_(ProspectJob.status == FAILED, ProspectJob.attempts < ProspectJob.max_attempts),
    )


def _event(job_id: str, level: str, message: str, meta: dict | None = None) -> ProspectEvent:
    return ProspectEvent(
        job_id=job_id,
        level=level,
        message=message,
        meta=json.dumps(meta, default=str) if meta is not None else None,
    )


async def create_job(
    db: AsyncSession,
    tenant_id: str,
    actor_id: str | None,
    prompt: str,
    size: int,
    providers: list[str],
    filters: dict,
) -> ProspectJob:
    providers = providers or [settings.default_provider]
    job = ProspectJob(
        tenant_id=tenant_id,
        created_by=actor_id,
        prompt=prompt,
        size=size,
        providers=json.dumps(providers),
        filters=json.dumps(filters or {}),
        status=QUEUED,
        attempts=0,
        max_attempts=settings.max_attempts,
    )
    db.add(job)
    await db.flush()
    db.add(_event(job.id, "info", "Job queued", {"size": size, "providers": providers}))
    await db.commit()
    await db.refresh(job)
    return job


async def get_job(db: AsyncSession, tenant_id: str, job_id: str) -> ProspectJob | None:
    result = await db.execute(
        select(ProspectJob).where(ProspectJob.id == job_id, ProspectJob.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()


async def get_job_by_id(db: AsyncSession, job_id: str) -> ProspectJob | None:
    result = await db.execute(
        select(ProspectJob).where(ProspectJob.id == job_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_jobs(
    db: AsyncSession,
    tenant_id: str,
    filters: dict | None = None,
    sort_by: str | None = None,
    sort_dir: str = "desc",
    limit: int = 50,
) -> list[ProspectJob]:
    query = select(ProspectJob).where(ProspectJob.tenant_id == tenant_id)
    query = apply_filters(query, JOB_FILTER_COLUMNS, filters or {})
    query = apply_sort(query, JOB_SORT_COLUMNS, sort_by, sort_dir, default="created_at")
    result = await db.execute(query.limit(limit))
    return list(result.scalars().all())


async def pick_next_job(db: AsyncSession, tenant_id: str | None = None, exclude: Iterable[str] = ()) -> str | None:
    """Return the id of the oldest queued job without locking it."""
    query = select(ProspectJob.id).where(ProspectJob.status == QUEUED)
    if tenant_id:
        query = query.where(ProspectJob.tenant_id == tenant_id)
    exclude = list(exclude)
    if exclude:
        query = query.where(ProspectJob.id.notin_(exclude))
    result = await db.execute(query.order_by(ProspectJob.created_at.asc(), ProspectJob.id.asc()).limit(1))
    return result.scalar_one_or_none()


async def claim_job(db: AsyncSession, job_id: str) -> ProspectJob | None:
    """Take exclusive ownership of a job, or return None if it isn't claimable.

    The row is read with FOR UPDATE SKIP LOCKED so a concurrent claimer skips it
    instead of waiting, and the status change is a guarded UPDATE re-checking
    the claimable predicate, so on backends without row locks (SQLite) only the
    first writer's UPDATE matches. Everything commits before returning: provider
    calls must not run inside this transaction.
    """
    result = await db.execute(
        select(ProspectJob)
        .where(ProspectJob.id == job_id, _claimable())
        .with_for_update(skip_locked=True)
    )
    job = result.scalar_one_or_none()
    if job is None:
        await db.rollback()
        return None

    claimed = await db.execute(
        update(ProspectJob)
        .where(ProspectJob.id == job_id, _claimable())
        .values(
            status=RUNNING,
            attempts=ProspectJob.attempts + 1,
            started_at=_now(),
            finished_at=None,
            error_text=None,
        )
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        await db.rollback()
        return None

    db.add(_event(job_id, "info", "Job started", {
        "size": job.size,
        "providers": json.loads(job.providers or "[]"),
        "attempt": job.attempts + 1,
    }))
    await db.commit()
    await db.refresh(job)
    return job


async def update_progress(
    db: AsyncSession,
    job_id: str,
    total_candidates: int | None = None,
    deduped_candidates: int | None = None,
    duplicate_count: int | None = None,
):
    job = await get_job_by_id(db, job_id)
    if not job:
        return
    if total_candidates is not None:
        job.total_candidates = total_candidates
    if deduped_candidates is not None:
        job.deduped_candidates = deduped_candidates
    if duplicate_count is not None:
        job.duplicate_count = duplicate_count
    await db.commit()


async def add_event(db: AsyncSession, job_id: str, level: str, message: str, meta: dict | None = None):
    db.add(_event(job_id, level, message, meta))
    await db.commit()


async def _finish_running(db: AsyncSession, job_id: str, **values) -> bool:
    """Move a job out of `running`; False when it already left that state (canceled)."""
    result = await db.execute(
        update(ProspectJob)
        .where(ProspectJob.id == job_id, ProspectJob.status == RUNNING)
        .values(finished_at=_now(), **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def mark_done(db: AsyncSession, job_id: str, import_job_id: str | None, inserted_count: int) -> str | None:
    """Record the import result. A job canceled mid-attempt keeps its `canceled` status."""
    job = await get_job_by_id(db, job_id)
    if not job:
        return None
    meta = {"import_job_id": import_job_id, "inserted_count": inserted_count}
    if await _finish_running(db, job_id, status=DONE, import_job_id=import_job_id, inserted_count=inserted_count):
        db.add(_event(job_id, "success", "Job completed", meta))
    else:
        await db.execute(
            update(ProspectJob)
            .where(ProspectJob.id == job_id)
            .values(import_job_id=import_job_id, inserted_count=inserted_count)
            .execution_options(synchronize_session=False)
        )
        db.add(_event(job_id, "info", "Attempt finished after the job was canceled", meta))
    await db.commit()
    await db.refresh(job)
    return job.status


async def mark_failed(db: AsyncSession, job_id: str, error: BaseException | str) -> str | None:
    """Record a failed attempt; requeue while attempts remain and the error allows it.

    Only a `running` job changes status, so cancellation stays terminal.
    """
    job = await get_job_by_id(db, job_id)
    if not job:
        return None
    retryable = getattr(error, "retryable", True)
    attempts, max_attempts = job.attempts, job.max_attempts
    will_retry = retryable and attempts < max_attempts
    meta = {
        "error": str(error),
        "attempt": attempts,
        "max_attempts": max_attempts,
        "will_retry": will_retry,
    }
    finished = await _finish_running(
        db, job_id,
        status=QUEUED if will_retry else FAILED,
        error_text=str(error)[:MAX_ERROR_TEXT],
    )
    if finished:
        db.add(_event(job_id, "error", "Job failed", meta))
    else:
        db.add(_event(job_id, "error", "Attempt failed after the job was canceled", {**meta, "will_retry": False}))
    await db.commit()
    await db.refresh(job)
    if not finished:
        logger.info(f"Prospect job {job_id} left as {job.status} after a failed attempt")
    return job.status


async def cancel_job(db: AsyncSession, tenant_id: str, job_id: str) -> ProspectJob:
    job = await get_job(db, tenant_id, job_id)
    if not job:
        raise JobNotFound(job_id)
    current_status = job.status
    result = await db.execute(
        update(ProspectJob)
        .where(
            ProspectJob.id == job_id,
            ProspectJob.tenant_id == tenant_id,
            ProspectJob.status.in_([QUEUED, RUNNING]),
        )
        .values(status=CANCELED, finished_at=_now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise NotCancelable(f"Job {job_id} is {current_status}")
    db.add(_event(job_id, "info", "Job canceled"))
    await db.commit()
    await db.refresh(job)
    return job


async def list_events(
    db: AsyncSession,
    tenant_id: str,
    job_id: str,
    since: datetime | None = None,
    limit: int = 200,
) -> list[ProspectEvent]:
    query = (
        select(ProspectEvent)
        .join(ProspectJob, ProspectJob.id == ProspectEvent.job_id)
        .where(ProspectEvent.job_id == job_id, ProspectJob.tenant_id == tenant_id)
    )
    if since is not None:
        query = query.where(ProspectEvent.created_at > since)
    result = await db.execute(
        query.order_by(ProspectEvent.created_at.asc(), ProspectEvent.id.asc()).limit(limit)
    )
    return list(result.scalars().all())


async def requeue_stale_jobs(db: AsyncSession, older_than: timedelta) -> int:
    """Release jobs left `running` by a worker that died mid-attempt."""
    cutoff = _now() - older_than
    result = await db.execute(
        select(ProspectJob).where(ProspectJob.status == RUNNING, ProspectJob.started_at < cutoff)
    )
    stale = list(result.scalars().all())
    for job in stale:
        will_retry = job.attempts < job.max_attempts
        job.status = QUEUED if will_retry else FAILED
        job.error_text = "Worker stopped responding while the job was running"
        job.finished_at = _now()
        db.add(_event(job.id, "error", "Job orphaned", {"attempt": job.attempts, "will_retry": will_retry}))
    if stale:
        await db.commit()
        logger.info(f"Released {len(stale)} stale prospect job(s)")
    return len(stale)
