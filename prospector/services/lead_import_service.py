"""CSV lead import, shared by manual uploads and prospecting jobs.

Rows are matched against the tenant's leads by lower-cased email, then by
normalized phone; matches count as duplicates, everything else is inserted.
Rows inserted earlier in the same file take part in matching, so repeats
within one upload collapse to a single lead.
"""

import csv
import io
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from prospector.db.models import ImportJob, Lead
from prospector.providers.base import normalize_email, normalize_phone

logger = logging.getLogger(__name__)

FIELD_ALIASES = {
    "name": ["name", "full_name", "lead_name"],
    "email": ["email", "e-mail"],
    "phone": ["phone", "mobile", "telephone", "phone_number"],
    "company": ["company", "org", "organization"],
    "title": ["title", "job_title", "profession", "role"],
    "source": ["source", "utm_source"],
    "stage": ["stage", "pipeline_stage"],
}


@dataclass
class ImportSummary:
    job: ImportJob
    inserted_lead_ids: list[str] = field(default_factory=list)


def map_row(row: dict) -> dict:
    lowered = {str(k or "").strip().lower(): (v.strip() if isinstance(v, str) else v) for k, v in row.items()}
    mapped = {}
    for target, aliases in FIELD_ALIASES.items():
        mapped[target] = next((lowered[a] for a in aliases if lowered.get(a)), None)
    return mapped


def _valid_email(email: str) -> bool:
    local, _, domain = email.partition("@")
    return bool(local) and "." in domain


async def _find_existing(db: AsyncSession, tenant_id: str, email: str | None, phone_norm: str | None) -> str | None:
    if email:
        result = await db.execute(
            select(Lead.id).where(Lead.tenant_id == tenant_id, func.lower(Lead.email) == normalize_email(email)).limit(1)
        )
        lead_id = result.scalar_one_or_none()
        if lead_id:
            return lead_id
    if phone_norm:
        result = await db.execute(
            select(Lead.id).where(Lead.tenant_id == tenant_id, Lead.phone_norm == phone_norm).limit(1)
        )
        return result.scalar_one_or_none()
    return None


async def import_leads_csv(
    db: AsyncSession,
    tenant_id: str,
    actor_id: str | None,
    filename: str,
    csv_text: str,
    options: dict | None = None,
) -> ImportSummary:
    options = options or {}
    job = ImportJob(
        tenant_id=tenant_id,
        created_by=actor_id,
        filename=filename or "upload.csv",
        status="processing",
        options=json.dumps(options),
    )
    db.add(job)
    await db.commit()
    await db.refresh(job)

    import_id = job.id
    summary = ImportSummary(job=job)
    total = inserted = duplicate = failed = skipped = 0
    default_source = options.get("source")

    try:
        for raw in csv.DictReader(io.StringIO(csv_text)):
            total += 1
            row = map_row(raw)
            if not (row["name"] or row["email"] or row["phone"]):
                skipped += 1
                continue
            if row["email"] and not _valid_email(row["email"]):
                failed += 1
                continue

            phone_norm = normalize_phone(row["phone"])
            if await _find_existing(db, tenant_id, row["email"], phone_norm):
                duplicate += 1
                continue

            lead = Lead(
                tenant_id=tenant_id,
                name=row["name"],
                email=row["email"],
                phone=row["phone"],
                phone_norm=phone_norm,
                company=row["company"],
                title=row["title"],
                source=row["source"] or default_source,
                stage=row["stage"] or "new",
                created_by=actor_id,
            )
            db.add(lead)
            await db.flush()
            inserted += 1
            summary.inserted_lead_ids.append(lead.id)

        job.total_rows = total
        job.inserted_count = inserted
        job.duplicate_count = duplicate
        job.failed_count = failed
        job.skipped_count = skipped
        job.status = "completed"
        job.finished_at = datetime.now(timezone.utc)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception(f"Lead import {import_id} failed")
        summary.inserted_lead_ids = []
        try:
            job.status = "failed"
            job.error_text = str(e)[:1000]
            job.finished_at = datetime.now(timezone.utc)
            await db.commit()
        except SQLAlchemyError:
            logger.exception(f"Could not record failure of lead import {import_id}")
        raise

    logger.info(
        f"Lead import {import_id}: {inserted} inserted, {duplicate} duplicate, "
        f"{failed} failed, {skipped} skipped of {total}"
    )
    return summary
