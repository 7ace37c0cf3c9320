import json

import httpx
import pytest

from conftest import FakeEnricher, FakeProvider, add_job, add_lead, load_events, load_job, person
from prospector.errors import ProviderError, QuotaExceeded
from prospector.pipeline.runner import ProspectPipeline
from prospector.providers.pdl import PeopleDataLabsProvider
from prospector.services import job_service


async def claimed_job(session_factory, **fields):
    async with session_factory() as db:
        job = await add_job(db, **fields)
        return await job_service.claim_job(db, job.id)


@pytest.mark.asyncio
async def test_job_runs_end_to_end(session_factory):
    async with session_factory() as db:
        await add_lead(db, email="person3@acme.test")
    provider = FakeProvider([person(i) for i in range(1, 31)])
    pipeline = ProspectPipeline(session_factory, providers={"x": provider}, enricher=None, page_size=4)
    job = await claimed_job(session_factory, size=10)

    result = await pipeline.process(job)

    assert [c["page_size"] for c in provider.calls] == [4, 4, 2]
    assert [c["cursor"] for c in provider.calls] == [None, 4, 8]
    assert result.total_candidates == 10
    assert result.deduped_candidates == 9
    assert result.duplicate_count == 1
    assert result.inserted_count == 9

    stored = await load_job(session_factory, job.id)
    assert stored.status == "done"
    assert stored.import_job_id == result.import_ref
    assert stored.inserted_count <= stored.deduped_candidates <= stored.total_candidates <= stored.size
    assert stored.deduped_candidates + stored.duplicate_count == stored.total_candidates

    messages = [e.message for e in await load_events(session_factory, job.id)]
    assert "Fetched 10 candidates" in messages
    assert "After dedupe: unique=9 duplicates=1" in messages
    assert messages[-1] == "Job completed"


@pytest.mark.asyncio
async def test_quota_overflow_stops_before_any_provider_call(session_factory):
    async with session_factory() as db:
        await add_job(db, size=495, status="done")
    provider = FakeProvider([person(i) for i in range(1, 31)])
    pipeline = ProspectPipeline(session_factory, providers={"x": provider}, enricher=None)
    job = await claimed_job(session_factory, size=10)

    with pytest.raises(QuotaExceeded):
        await pipeline.process(job)

    assert provider.calls == []


@pytest.mark.asyncio
async def test_falls_through_to_next_provider(session_factory):
    first = FakeProvider([person(i) for i in range(1, 4)], name="first")
    second = FakeProvider([person(i) for i in range(100, 120)], name="second")
    pipeline = ProspectPipeline(
        session_factory, providers={"first": first, "second": second}, enricher=None, page_size=50,
    )
    job = await claimed_job(session_factory, size=8, providers=("first", "second"))

    result = await pipeline.process(job)

    assert len(first.calls) == 1
    assert second.calls[0]["page_size"] == 5
    assert result.total_candidates == 8


@pytest.mark.asyncio
async def test_empty_search_finishes_with_nothing_inserted(session_factory):
    pipeline = ProspectPipeline(session_factory, providers={"x": FakeProvider([])}, enricher=None)
    job = await claimed_job(session_factory, size=10)

    result = await pipeline.process(job)

    assert result.inserted_count == 0
    assert (await load_job(session_factory, job.id)).status == "done"


@pytest.mark.asyncio
async def test_enrichment_fills_missing_titles_before_import(session_factory):
    records = [person(1, job_title=None), person(2)]
    enricher = FakeEnricher(responses={"person1@acme.test": {"person": {"title": "Treasurer"}}})
    pipeline = ProspectPipeline(session_factory, providers={"x": FakeProvider(records)}, enricher=enricher)
    job = await claimed_job(session_factory, size=2)

    await pipeline.process(job)

    messages = [e.message for e in await load_events(session_factory, job.id)]
    assert "Enriched 1/2 candidates" in messages


@pytest.mark.asyncio
async def test_provider_error_propagates(session_factory):
    provider = FakeProvider([], error=ProviderError("x", "HTTP 502", 502))
    pipeline = ProspectPipeline(session_factory, providers={"x": provider}, enricher=None)
    job = await claimed_job(session_factory, size=5)

    with pytest.raises(ProviderError):
        await pipeline.process(job)

    assert (await load_job(session_factory, job.id)).status == "running"


@pytest.mark.asyncio
async def test_pages_larger_than_provider_limit_keep_paging(session_factory):
    offsets = []

    def handler(request: httpx.Request):
        body = json.loads(request.content)
        offsets.append(body["from"])
        start = body["from"]
        return httpx.Response(200, json={"data": [person(i) for i in range(start, start + body["size"])]})

    pdl = PeopleDataLabsProvider(
        api_key="pdl_test",
        endpoint="https://pdl.test/search",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    pipeline = ProspectPipeline(session_factory, providers={"pdl": pdl}, enricher=None, page_size=150)
    job = await claimed_job(session_factory, size=300, providers=("pdl",))

    found = await pipeline.fetch_candidates(job)

    assert len(found) == 300
    assert offsets == [0, 100, 200]


@pytest.mark.asyncio
async def test_page_size_clamped_to_provider_limit(session_factory):
    provider = FakeProvider([person(i) for i in range(1, 30)], max_page_size=3)
    pipeline = ProspectPipeline(session_factory, providers={"x": provider}, enricher=None, page_size=10)
    job = await claimed_job(session_factory, size=7)

    found = await pipeline.fetch_candidates(job)

    assert len(found) == 7
    assert [c["page_size"] for c in provider.calls] == [3, 3, 1]
