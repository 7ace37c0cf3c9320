import asyncio
import logging
from datetime import timedelta

from prospector.config import settings
from prospector.db.database import async_session
from prospector.db.models import ProspectJob
from prospector.pipeline.runner import ProspectPipeline
from prospector.pipeline.text_enrichment import TextEnricher, enrich_imported_leads
from prospector.services import job_service

logger = logging.getLogger(__name__)


class ProspectWorker:
    """Polls the job store and runs up to ``max_concurrency`` units of work at once.

    Each tick claims jobs until the in-flight set is full or nothing is
    claimable, then the loop sleeps ``poll_interval``. Several workers can
    share one database; the claim decides who gets a job.
    """

    def __init__(
        self,
        pipeline: ProspectPipeline | None = None,
        session_factory=async_session,
        max_concurrency: int | None = None,
        poll_interval: float | None = None,
        tenant_id: str | None = None,
        text_enricher: TextEnricher | None = None,
    ):
        self.session_factory = session_factory
        self.pipeline = pipeline or ProspectPipeline(session_factory)
        self.max_concurrency = max_concurrency or settings.max_concurrency
        self.poll_interval = poll_interval if poll_interval is not None else settings.poll_interval
        self.tenant_id = tenant_id if tenant_id is not None else (settings.worker_tenant_id or None)
        self.text_enricher = text_enricher
        self._running: set[asyncio.Task] = set()
        self._stop: asyncio.Event | None = None

    @property
    def in_flight(self) -> int:
        return len(self._running)

    def submit(self, coro, name: str | None = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._running.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self._running.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Worker task {task.get_name()} failed: {task.exception()!r}")

    async def tick(self) -> int:
        """Claim and start jobs while there is spare capacity. Returns how many were started."""
        started = 0
        tried: set[str] = set()
        while self.in_flight < self.max_concurrency:
            async with self.session_factory() as db:
                job_id = await job_service.pick_next_job(db, self.tenant_id, exclude=tried)
            if job_id is None:
                break
            tried.add(job_id)

            async with self.session_factory() as db:
                job = await job_service.claim_job(db, job_id)
            if job is None:
                logger.debug(f"Job {job_id} was claimed by another worker")
                continue

            self.submit(self._run_job(job), name=f"prospect-job-{job.id}")
            started += 1
        return started

    async def _run_job(self, job: ProspectJob):
        try:
            result = await self.pipeline.process(job)
        except asyncio.CancelledError:
            await self._record_failure(job.id, "Worker stopped before the job finished")
            raise
        except Exception as e:
            logger.exception(f"Prospect job {job.id} failed")
            await self._record_failure(job.id, e)
            return

        if result.inserted_lead_ids and self.text_enricher is not None:
            self.submit(
                enrich_imported_leads(self.session_factory, job.tenant_id, result.inserted_lead_ids, self.text_enricher),
                name=f"lead-summaries-{job.id}",
            )

    async def _record_failure(self, job_id: str, error):
        async with self.session_factory() as db:
            status = await job_service.mark_failed(db, job_id, error)
        logger.info(f"Prospect job {job_id} is now {status}")

    async def run(self):
        self._stop = asyncio.Event()
        async with self.session_factory() as db:
            await job_service.requeue_stale_jobs(db, timedelta(seconds=settings.stale_job_seconds))

        logger.info(f"Prospect worker started (concurrency={self.max_concurrency}, poll={self.poll_interval}s)")
        while not self._stop.is_set():
            try:
                await self.tick()
            except Exception:
                # database may be down; try again next interval
                logger.exception("Prospect worker tick failed")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        await self.drain()
        logger.info("Prospect worker stopped")

    def stop(self):
        if self._stop is not None:
            self._stop.set()

    async def drain(self):
        # finished jobs may submit follow-up tasks while we wait
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)
