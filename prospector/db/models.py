import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, relationship

QUEUED = "queued"
RUNNING = "running"
DONE = "done"
FAILED = "failed"
CANCELED = "canceled"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class ProspectJob(Base):
    __tablename__ = "prospect_jobs"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(64), nullable=False)
    created_by = Column(String(64), nullable=True)
    prompt = Column(Text, nullable=False)
    size = Column(Integer, nullable=False, default=25)
    providers = Column(Text, default="[]")  # JSON array
    filters = Column(Text, default="{}")  # JSON: titles, country, industry
    status = Column(String(20), nullable=False, default=QUEUED)  # queued, running, done, failed, canceled
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    error_text = Column(Text, nullable=True)
    total_candidates = Column(Integer, default=0)
    deduped_candidates = Column(Integer, default=0)
    duplicate_count = Column(Integer, default=0)
    inserted_count = Column(Integer, default=0)
    import_job_id = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    events = relationship("ProspectEvent", back_populates="job", cascade="all, delete-orphan")


Index("ix_prospect_jobs_tenant_status_created", ProspectJob.tenant_id, ProspectJob.status, ProspectJob.created_at)


class ProspectEvent(Base):
    __tablename__ = "prospect_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(36), ForeignKey("prospect_jobs.id"), nullable=False)
    level = Column(String(20), default="info")  # debug, info, success, error
    message = Column(Text, nullable=False)
    meta = Column(Text, nullable=True)  # JSON
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    job = relationship("ProspectJob", back_populates="events")


Index("ix_prospect_events_job_created", ProspectEvent.job_id, ProspectEvent.created_at)


class TenantQuota(Base):
    __tablename__ = "prospect_quotas"

    tenant_id = Column(String(64), primary_key=True)
    daily_cap = Column(Integer, nullable=True)


class Lead(Base):
    __tablename__ = "leads"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(64), nullable=False)
    name = Column(String(400))
    email = Column(String(500))
    phone = Column(String(50))
    phone_norm = Column(String(20))
    company = Column(String(500))
    title = Column(String(300))
    source = Column(String(100))
    stage = Column(String(50), default="new")
    ai_summary = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


Index("ix_leads_tenant_phone_norm", Lead.tenant_id, Lead.phone_norm)
Index("ix_leads_tenant_email", Lead.tenant_id, Lead.email)


class ImportJob(Base):
    __tablename__ = "import_jobs"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(64), nullable=False)
    created_by = Column(String(64), nullable=True)
    module = Column(String(50), default="lead")
    filename = Column(String(500))
    status = Column(String(20), default="processing")  # processing, completed, failed
    options = Column(Text, default="{}")  # JSON
    total_rows = Column(Integer, default=0)
    inserted_count = Column(Integer, default=0)
    duplicate_count = Column(Integer, default=0)
    failed_count = Column(Integer, default=0)
    skipped_count = Column(Integer, default=0)
    error_text = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), default=_utcnow)
    finished_at = Column(DateTime(timezone=True), nullable=True)
