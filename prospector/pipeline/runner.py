import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from prospector.config import settings
from prospector.db.database import async_session
from prospector.db.models import ProspectJob
from prospector.pipeline.bulk_writer import BulkWriteResult, LeadImportBridge
from prospector.pipeline.enrichment import enrich_candidates, get_enricher
from prospector.providers.base import BaseProvider, Candidate, SearchFilters
from prospector.providers.registry import get_provider
from prospector.services import dedup_service, job_service, quota_service

logger = logging.getLogger(__name__)

_DEFAULT = object()


@dataclass
class PipelineResult:
    total_candidates: int
    deduped_candidates: int
    duplicate_count: int
    import_ref: str | None
    inserted_count: int
    inserted_lead_ids: list[str] = field(default_factory=list)


class ProspectPipeline:
    """Runs one claimed job through quota, search, dedup, enrichment and import.

    Stages run sequentially; each opens its own short session so no database
    transaction stays open across provider or enrichment calls. Exceptions
    propagate to the caller, which records the failed attempt.
    """

    def __init__(
        self,
        session_factory=async_session,
        providers: Mapping[str, BaseProvider] | None = None,
        enricher=_DEFAULT,
        writer: LeadImportBridge | None = None,
        page_size: int | None = None,
        enrichment_concurrency: int | None = None,
    ):
        self.session_factory = session_factory
        self.providers = dict(providers or {})
        self.enricher = get_enricher() if enricher is _DEFAULT else enricher
        self.writer = writer or LeadImportBridge(session_factory)
        self.page_size = page_size or settings.provider_page_size
        self.enrichment_concurrency = enrichment_concurrency or settings.enrichment_concurrency

    def resolve_provider(self, name: str) -> BaseProvider:
        if name not in self.providers:
            self.providers[name] = get_provider(name)
        return self.providers[name]

    async def log(self, job_id: str, level: str, message: str, meta: dict | None = None):
        async with self.session_factory() as db:
            await job_service.add_event(db, job_id, level, message, meta)

    async def fetch_candidates(self, job: ProspectJob) -> list[Candidate]:
        wanted = job.size
        query = job.prompt
        filters = SearchFilters.from_dict(json.loads(job.filters or "{}"))
        provider_names = json.loads(job.providers or "[]") or [settings.default_provider]

        found: list[Candidate] = []
        for name in provider_names:
            if len(found) >= wanted:
                break
            provider = self.resolve_provider(name)
            page_limit = min(self.page_size, provider.max_page_size or self.page_size)
            cursor = None
            while len(found) < wanted:
                page_size = min(page_limit, wanted - len(found))
                page = await provider.search_page(query, filters, page_size, cursor)
                await self.log(job.id, "debug", f"{provider.name} page cursor={cursor} items={len(page.candidates)}")
                found.extend(page.candidates[: wanted - len(found)])
                if page.next_cursor is None or len(page.candidates) < page_size:
                    break
                cursor = page.next_cursor
        return found

    async def process(self, job: ProspectJob) -> PipelineResult:
        async with self.session_factory() as db:
            quota = await quota_service.check_quota(db, job.tenant_id, job.size, exclude_job_id=job.id)
        await self.log(job.id, "debug", "Quota ok", {"used": quota.used, "cap": quota.cap, "requested": job.size})

        candidates = await self.fetch_candidates(job)
        async with self.session_factory() as db:
            await job_service.update_progress(db, job.id, total_candidates=len(candidates))
            await job_service.add_event(db, job.id, "info", f"Fetched {len(candidates)} candidates")

            partition = await dedup_service.partition_candidates(db, job.tenant_id, candidates)
            await job_service.update_progress(
                db, job.id,
                deduped_candidates=len(partition.unique),
                duplicate_count=len(partition.duplicates),
            )
            await job_service.add_event(
                db, job.id, "info",
                f"After dedupe: unique={len(partition.unique)} duplicates={len(partition.duplicates)}",
            )

        if self.enricher is None:
            await self.log(job.id, "debug", "Enrichment skipped: no enricher configured")
        elif partition.unique:
            enriched = await enrich_candidates(partition.unique, self.enricher, self.enrichment_concurrency)
            await self.log(job.id, "info", f"Enriched {enriched}/{len(partition.unique)} candidates")

        written: BulkWriteResult = await self.writer.write_candidates(job.tenant_id, job.created_by, partition.unique)
        async with self.session_factory() as db:
            await job_service.mark_done(db, job.id, written.import_ref, written.written_count)

        logger.info(
            f"Prospect job {job.id} done: {len(candidates)} fetched, "
            f"{len(partition.unique)} unique, {written.written_count} inserted"
        )
        return PipelineResult(
            total_candidates=len(candidates),
            deduped_candidates=len(partition.unique),
            duplicate_count=len(partition.duplicates),
            import_ref=written.import_ref,
            inserted_count=written.written_count,
            inserted_lead_ids=written.inserted_lead_ids,
        )
