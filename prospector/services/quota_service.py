from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from prospector.config import settings
from prospector.db.models import CANCELED, ProspectJob, TenantQuota
from prospector.errors import QuotaExceeded


@dataclass
class QuotaStatus:
    used: int
    cap: int

    @property
    def remaining(self) -> int:
        return max(self.cap - self.used, 0)


def _start_of_day(now: datetime | None = None) -> datetime:
    """Quota days are UTC calendar days."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


async def get_daily_cap(db: AsyncSession, tenant_id: str) -> int:
    quota = await db.get(TenantQuota, tenant_id)
    if quota is not None and quota.daily_cap is not None:
        return quota.daily_cap
    return settings.default_daily_cap


async def get_used_today(db: AsyncSession, tenant_id: str, exclude_job_id: str | None = None) -> int:
    query = select(func.coalesce(func.sum(ProspectJob.size), 0)).where(
        ProspectJob.tenant_id == tenant_id,
        ProspectJob.created_at >= _start_of_day(),
        ProspectJob.status != CANCELED,
    )
    if exclude_job_id:
        query = query.where(ProspectJob.id != exclude_job_id)
    return int((await db.execute(query)).scalar() or 0)


async def get_quota_status(db: AsyncSession, tenant_id: str) -> QuotaStatus:
    return QuotaStatus(
        used=await get_used_today(db, tenant_id),
        cap=await get_daily_cap(db, tenant_id),
    )


async def check_quota(
    db: AsyncSession,
    tenant_id: str,
    requested: int,
    exclude_job_id: str | None = None,
) -> QuotaStatus:
    """Fail closed when today's requested volume plus this request exceeds the cap."""
    cap = await get_daily_cap(db, tenant_id)
    used = await get_used_today(db, tenant_id, exclude_job_id=exclude_job_id)
    if used + requested > cap:
        raise QuotaExceeded(used=used, cap=cap, requested=requested)
    return QuotaStatus(used=used, cap=cap)


async def set_daily_cap(db: AsyncSession, tenant_id: str, daily_cap: int | None) -> TenantQuota:
    quota = await db.get(TenantQuota, tenant_id)
    if quota is None:
        quota = TenantQuota(tenant_id=tenant_id)
        db.add(quota)
    quota.daily_cap = daily_cap
    await db.commit()
    return quota
