import httpx
import pytest

from conftest import FakeEnricher
from prospector.errors import EnrichmentError
from prospector.pipeline.enrichment import ClearbitEnricher, apply_enrichment, enrich_candidates
from prospector.providers.base import Candidate


def test_apply_enrichment_fills_only_empty_fields():
    c = Candidate(name="Jane", email="jane@acme.test", title="CFO", company="")
    data = {"person": {"employment": {"title": "Chief Financial Officer", "name": "Acme Corp"}}}

    assert apply_enrichment(c, data) is True
    assert c.title == "CFO"
    assert c.company == "Acme Corp"


def test_apply_enrichment_falls_back_to_company_block():
    c = Candidate(email="sam@globex.test")
    assert apply_enrichment(c, {"person": {"title": "Controller"}, "company": {"name": "Globex"}})
    assert (c.title, c.company) == ("Controller", "Globex")


def test_apply_enrichment_without_data():
    c = Candidate(email="x@y.test")
    assert apply_enrichment(c, None) is False
    assert apply_enrichment(c, {"person": None}) is False


@pytest.mark.asyncio
async def test_enrich_candidates_survives_failing_lookups():
    batch = [
        Candidate(email="ok@acme.test"),
        Candidate(email="boom@acme.test"),
        Candidate(email=""),
        Candidate(email="unknown@acme.test"),
    ]
    enricher = FakeEnricher(
        responses={"ok@acme.test": {"employment": {"title": "VP Finance", "name": "Acme"}}},
        failures={"boom@acme.test"},
    )

    changed = await enrich_candidates(batch, enricher, concurrency=2)

    assert changed == 1
    assert batch[0].title == "VP Finance"
    assert batch[1].title == ""
    assert sorted(enricher.looked_up) == ["boom@acme.test", "ok@acme.test", "unknown@acme.test"]


def _clearbit(handler, api_key="sk_test"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ClearbitEnricher(api_key=api_key, endpoint="https://clearbit.test/find", client=client)


@pytest.mark.asyncio
async def test_clearbit_lookup_sends_bearer_token():
    seen = {}

    def handler(request: httpx.Request):
        seen["auth"] = request.headers["Authorization"]
        seen["email"] = request.url.params["email"]
        return httpx.Response(200, json={"person": {"title": "CFO"}})

    data = await _clearbit(handler).lookup("jane@acme.test")

    assert data == {"person": {"title": "CFO"}}
    assert seen == {"auth": "Bearer sk_test", "email": "jane@acme.test"}


@pytest.mark.asyncio
async def test_clearbit_not_found_and_errors():
    not_found = _clearbit(lambda request: httpx.Response(404))
    assert await not_found.lookup("nobody@acme.test") is None

    broken = _clearbit(lambda request: httpx.Response(500, text="oops"))
    with pytest.raises(EnrichmentError):
        await broken.lookup("jane@acme.test")


@pytest.mark.asyncio
async def test_clearbit_without_key_makes_no_request():
    def handler(request):
        raise AssertionError("no request expected")

    assert await _clearbit(handler, api_key="").lookup("jane@acme.test") is None
