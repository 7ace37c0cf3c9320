import json

import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine

from prospector.db.database import engine_options, init_db, make_session_factory
from prospector.db.models import Lead, ProspectEvent, ProspectJob
from prospector.providers.base import BaseProvider, ProviderPage, normalize_candidate, normalize_phone


@pytest_asyncio.fixture
async def engine(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'prospector-test.db'}"
    engine = create_async_engine(url, **engine_options(url))
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


def person(i, **overrides):
    record = {
        "full_name": f"Person {i}",
        "work_email": f"person{i}@acme.test",
        "phone_numbers": [{"number": f"+1 (312) 555-{i:04d}"}],
        "job_title": "CFO",
        "job_company_name": f"Acme {i}",
    }
    record.update(overrides)
    return record


class FakeProvider(BaseProvider):
    """Serves fixed records page by page and remembers every call."""

    def __init__(self, records, name="x", error=None, max_page_size=None):
        self.records = records
        self.name = name
        self.error = error
        self.max_page_size = max_page_size
        self.calls = []

    async def search_page(self, query, filters, page_size, cursor=None):
        self.calls.append({"query": query, "filters": filters, "page_size": page_size, "cursor": cursor})
        if self.error is not None:
            raise self.error
        start = cursor or 0
        page_size = min(page_size, self.max_page_size or page_size)
        chunk = self.records[start:start + page_size]
        next_cursor = start + page_size if start + page_size < len(self.records) else None
        return ProviderPage(candidates=[normalize_candidate(r, self.name) for r in chunk], next_cursor=next_cursor)


class FakeEnricher:
    def __init__(self, responses=None, failures=()):
        self.responses = responses or {}
        self.failures = set(failures)
        self.looked_up = []

    async def lookup(self, email):
        self.looked_up.append(email)
        if email in self.failures:
            raise RuntimeError(f"lookup exploded for {email}")
        return self.responses.get(email)


async def add_job(db, tenant_id="t1", size=10, providers=("x",), status="queued", **fields):
    job = ProspectJob(
        tenant_id=tenant_id,
        created_by=fields.pop("created_by", "u1"),
        prompt=fields.pop("prompt", "find finance leaders at mid-market manufacturers"),
        size=size,
        providers=json.dumps(list(providers)),
        filters=json.dumps(fields.pop("filters", {})),
        status=status,
        attempts=fields.pop("attempts", 0),
        max_attempts=fields.pop("max_attempts", 3),
        **fields,
    )
    db.add(job)
    await db.commit()
    await db.refresh(job)
    return job


async def add_lead(db, tenant_id="t1", email=None, phone=None, **fields):
    lead = Lead(tenant_id=tenant_id, email=email, phone=phone, phone_norm=normalize_phone(phone), **fields)
    db.add(lead)
    await db.commit()
    return lead


async def load_job(session_factory, job_id):
    async with session_factory() as session:
        return await session.get(ProspectJob, job_id)


async def load_events(session_factory, job_id):
    async with session_factory() as session:
        result = await session.execute(
            select(ProspectEvent).where(ProspectEvent.job_id == job_id).order_by(ProspectEvent.id)
        )
        return list(result.scalars().all())
