"""Post-import lead summaries from a pluggable text model."""

import logging
from typing import Protocol

from sqlalchemy import select

from prospector.db.models import Lead

logger = logging.getLogger(__name__)


class TextEnricher(Protocol):
    async def summarize(self, lead: Lead) -> str | None: ...


class NullTextEnricher:
    async def summarize(self, lead: Lead) -> str | None:
        return None


async def enrich_imported_leads(session_factory, tenant_id: str, lead_ids: list[str], enricher: TextEnricher) -> int:
    """Write summaries for freshly imported leads; one failing lead doesn't stop the rest."""
    updated = 0
    async with session_factory() as db:
        result = await db.execute(select(Lead).where(Lead.tenant_id == tenant_id, Lead.id.in_(lead_ids)))
        for lead in result.scalars().all():
            try:
                summary = await enricher.summarize(lead)
            except Exception as e:
                logger.warning(f"Summary failed for lead {lead.id}: {e}")
                continue
            if summary:
                lead.ai_summary = summary
                updated += 1
        await db.commit()
    logger.info(f"Summarized {updated}/{len(lead_ids)} imported leads for tenant {tenant_id}")
    return updated
