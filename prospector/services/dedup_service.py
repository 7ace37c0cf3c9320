from dataclasses import dataclass, field

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from prospector.db.models import Lead
from prospector.providers.base import Candidate, normalize_email


@dataclass
class DedupResult:
    unique: list[Candidate] = field(default_factory=list)
    duplicates: list[Candidate] = field(default_factory=list)


async def find_existing_identifiers(
    db: AsyncSession,
    tenant_id: str,
    emails: set[str],
    phones: set[str],
) -> tuple[set[str], set[str]]:
    """Return the (emails, phones) among the given ones already held by tenant leads."""
    clauses = []
    if emails:
        clauses.append(func.lower(Lead.email).in_(emails))
    if phones:
        clauses.append(Lead.phone_norm.in_(phones))
    if not clauses:
        return set(), set()

    result = await db.execute(
        select(Lead.email, Lead.phone_norm).where(Lead.tenant_id == tenant_id, or_(*clauses))
    )
    seen_emails, seen_phones = set(), set()
    for email, phone_norm in result.all():
        if email:
            seen_emails.add(normalize_email(email))
        if phone_norm:
            seen_phones.add(phone_norm)
    return seen_emails, seen_phones


async def partition_candidates(db: AsyncSession, tenant_id: str, candidates: list[Candidate]) -> DedupResult:
    """Split candidates into ones new to the tenant and ones matching an existing lead.

    A match on either email or phone is enough. Candidates are not compared
    with each other; repeats inside one batch are left to the lead importer.
    """
    if not candidates:
        return DedupResult()

    emails = {c.email_norm for c in candidates if c.email_norm}
    phones = {c.phone_norm for c in candidates if c.phone_norm}
    seen_emails, seen_phones = await find_existing_identifiers(db, tenant_id, emails, phones)

    result = DedupResult()
    for c in candidates:
        is_dup = (c.email_norm and c.email_norm in seen_emails) or (c.phone_norm and c.phone_norm in seen_phones)
        (result.duplicates if is_dup else result.unique).append(c)
    return result
