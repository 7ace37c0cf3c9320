"""Best-effort per-candidate enrichment by email.

Lookups only fill fields that are empty on the candidate, and a failing
lookup never affects the job or the other candidates.
"""

import asyncio
import logging

import httpx

from prospector.config import settings
from prospector.errors import EnrichmentError
from prospector.providers.base import Candidate

logger = logging.getLogger(__name__)


class ClearbitEnricher:
    name = "clearbit"

    def __init__(
        self,
        api_key: str | None = None,
        endpoint: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.clearbit_api_key
        self.endpoint = endpoint or settings.clearbit_endpoint
        self.timeout = timeout or settings.enrichment_timeout
        self._client = client

    async def lookup(self, email: str) -> dict | None:
        if not self.api_key or not email:
            return None
        headers = {"Authorization": f"Bearer {self.api_key}"}
        params = {"email": email}
        try:
            if self._client is not None:
                resp = await self._client.get(self.endpoint, params=params, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.get(self.endpoint, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise EnrichmentError(f"Clearbit request failed: {e}") from e

        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise EnrichmentError(f"Clearbit {resp.status_code}")
        try:
            return resp.json()
        except ValueError as e:
            raise EnrichmentError("Clearbit returned invalid JSON") from e


def get_enricher() -> ClearbitEnricher | None:
    if not settings.clearbit_api_key:
        return None
    return ClearbitEnricher()


def _dig(data: dict, *path: str) -> str:
    node = data
    for key in path:
        if not isinstance(node, dict):
            return ""
        node = node.get(key)
    return node.strip() if isinstance(node, str) else ""


def apply_enrichment(candidate: Candidate, data: dict | None) -> bool:
    """Fill empty title/company from a lookup response. Returns True if anything changed."""
    if not data:
        return False
    changed = False
    if not candidate.title:
        title = (
            _dig(data, "person", "employment", "title")
            or _dig(data, "person", "title")
            or _dig(data, "employment", "title")
        )
        if title:
            candidate.title = title
            changed = True
    if not candidate.company:
        company = (
            _dig(data, "person", "employment", "name")
            or _dig(data, "employment", "name")
            or _dig(data, "company", "name")
        )
        if company:
            candidate.company = company
            changed = True
    return changed


async def enrich_candidates(candidates: list[Candidate], enricher, concurrency: int | None = None) -> int:
    semaphore = asyncio.Semaphore(concurrency or settings.enrichment_concurrency)

    async def _enrich_one(candidate: Candidate) -> bool:
        if not candidate.email:
            return False
        async with semaphore:
            try:
                data = await enricher.lookup(candidate.email)
            except Exception as e:
                logger.warning(f"Enrichment lookup failed for {candidate.email}: {e}")
                return False
        return apply_enrichment(candidate, data)

    results = await asyncio.gather(*[_enrich_one(c) for c in candidates])
    return sum(1 for changed in results if changed)
