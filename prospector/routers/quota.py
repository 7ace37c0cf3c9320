from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from prospector.db.database import get_db
from prospector.routers.deps import get_tenant_id
from prospector.schemas.job import QuotaOut, QuotaUpdate
from prospector.services import quota_service

router = APIRouter()


async def _quota_out(db: AsyncSession, tenant_id: str) -> QuotaOut:
    status = await quota_service.get_quota_status(db, tenant_id)
    return QuotaOut(used=status.used, cap=status.cap, remaining=status.remaining)


@router.get("", response_model=QuotaOut)
async def get_quota(tenant_id: str = Depends(get_tenant_id), db: AsyncSession = Depends(get_db)):
    return await _quota_out(db, tenant_id)


@router.put("", response_model=QuotaOut)
async def update_quota(data: QuotaUpdate, tenant_id: str = Depends(get_tenant_id), db: AsyncSession = Depends(get_db)):
    await quota_service.set_daily_cap(db, tenant_id, data.daily_cap)
    return await _quota_out(db, tenant_id)
