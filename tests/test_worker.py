import asyncio

import pytest

from conftest import FakeProvider, add_job, add_lead, load_job, person
from prospector.errors import ProviderError
from prospector.pipeline.runner import PipelineResult, ProspectPipeline
from prospector.services import job_service
from prospector.worker.engine import ProspectWorker


class BlockingPipeline:
    """Holds every job until released, so tests can observe in-flight work."""

    def __init__(self, error=None, lead_ids=()):
        self.started = []
        self.release = asyncio.Event()
        self.error = error
        self.lead_ids = list(lead_ids)

    async def process(self, job):
        self.started.append(job.id)
        await self.release.wait()
        if self.error is not None:
            raise self.error
        return PipelineResult(0, 0, 0, None, 0, inserted_lead_ids=self.lead_ids)


class RecordingSummarizer:
    def __init__(self):
        self.seen = []

    async def summarize(self, lead):
        self.seen.append(lead.id)
        return None


def make_worker(session_factory, pipeline, **kwargs):
    return ProspectWorker(pipeline=pipeline, session_factory=session_factory, poll_interval=0.01, **kwargs)


@pytest.mark.asyncio
async def test_tick_respects_max_concurrency(db, session_factory):
    jobs = [await add_job(db) for _ in range(3)]
    pipeline = BlockingPipeline()
    worker = make_worker(session_factory, pipeline, max_concurrency=2)

    assert await worker.tick() == 2
    await asyncio.sleep(0)
    assert worker.in_flight == 2
    assert await worker.tick() == 0

    statuses = [(await load_job(session_factory, j.id)).status for j in jobs]
    assert statuses.count("running") == 2
    assert statuses.count("queued") == 1

    pipeline.release.set()
    await worker.drain()
    assert worker.in_flight == 0
    assert await worker.tick() == 1
    await worker.drain()


@pytest.mark.asyncio
async def test_tick_only_claims_configured_tenant(db, session_factory):
    await add_job(db, tenant_id="t2")
    pipeline = BlockingPipeline()
    pipeline.release.set()
    worker = make_worker(session_factory, pipeline, tenant_id="t1")

    assert await worker.tick() == 0


@pytest.mark.asyncio
async def test_retryable_failure_requeues_job(db, session_factory):
    job = await add_job(db)
    pipeline = BlockingPipeline(error=ProviderError("x", "HTTP 502", 502))
    pipeline.release.set()
    worker = make_worker(session_factory, pipeline)

    await worker.tick()
    await worker.drain()

    stored = await load_job(session_factory, job.id)
    assert stored.status == "queued"
    assert stored.attempts == 1
    assert stored.error_text == "x: HTTP 502"


@pytest.mark.asyncio
async def test_quota_failure_fails_job_without_provider_calls(db, session_factory):
    await add_job(db, size=495, status="done")
    job = await add_job(db, size=10)
    provider = FakeProvider([person(i) for i in range(1, 20)])
    worker = make_worker(session_factory, ProspectPipeline(session_factory, providers={"x": provider}, enricher=None))

    await worker.tick()
    await worker.drain()

    stored = await load_job(session_factory, job.id)
    assert stored.status == "failed"
    assert stored.attempts == 1
    assert stored.error_text.startswith("Daily cap exceeded")
    assert provider.calls == []


@pytest.mark.asyncio
async def test_successful_job_through_worker(db, session_factory):
    job = await add_job(db, size=5)
    provider = FakeProvider([person(i) for i in range(1, 20)])
    worker = make_worker(session_factory, ProspectPipeline(session_factory, providers={"x": provider}, enricher=None))

    await worker.tick()
    await worker.drain()

    stored = await load_job(session_factory, job.id)
    assert stored.status == "done"
    assert stored.inserted_count == 5


@pytest.mark.asyncio
async def test_already_claimed_job_is_skipped(db, session_factory):
    job = await add_job(db)
    await job_service.claim_job(db, job.id)
    pipeline = BlockingPipeline()
    worker = make_worker(session_factory, pipeline)

    assert await worker.tick() == 0
    assert pipeline.started == []


@pytest.mark.asyncio
async def test_imported_leads_are_summarized_after_job(db, session_factory):
    await add_job(db)
    lead = await add_lead(db, email="jane@acme.test", name="Jane")
    pipeline = BlockingPipeline(lead_ids=[lead.id])
    pipeline.release.set()
    summarizer = RecordingSummarizer()
    worker = make_worker(session_factory, pipeline, text_enricher=summarizer)

    await worker.tick()
    await worker.drain()

    assert summarizer.seen == [lead.id]
    assert worker.in_flight == 0


@pytest.mark.asyncio
async def test_run_until_stopped(db, session_factory):
    job = await add_job(db, size=3)
    provider = FakeProvider([person(i) for i in range(1, 10)])
    worker = make_worker(session_factory, ProspectPipeline(session_factory, providers={"x": provider}, enricher=None))

    runner = asyncio.create_task(worker.run())
    for _ in range(200):
        if (await load_job(session_factory, job.id)).status == "done":
            break
        await asyncio.sleep(0.01)
    worker.stop()
    await asyncio.wait_for(runner, timeout=5)

    assert (await load_job(session_factory, job.id)).status == "done"
