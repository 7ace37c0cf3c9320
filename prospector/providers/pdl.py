"""People Data Labs person search."""

import logging

import httpx

from prospector.config import settings
from prospector.errors import ProviderError
from prospector.providers.base import BaseProvider, ProviderPage, SearchFilters, normalize_candidate

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

DEFAULT_FIELDS = [
    "full_name", "first_name", "last_name",
    "work_email", "personal_emails", "phone_numbers",
    "job_title", "job_company_name",
    "location_country", "location_country_code",
]

QUERY_FIELDS = ["job_title", "job_title_role", "job_title_sub_role", "summary", "skills"]


def build_query(query: str, filters: SearchFilters) -> dict:
    must: list[dict] = [{"multi_match": {"query": query, "fields": QUERY_FIELDS}}]
    if filters.titles:
        must.append({"terms": {"job_title_role": [t.lower() for t in filters.titles]}})
    if filters.country:
        must.append({"term": {"location_country_code": filters.country.upper()}})
    if filters.industry:
        must.append({"multi_match": {"query": filters.industry, "fields": ["industry", "job_company_industry"]}})
    return {"bool": {"must": must}}


class PeopleDataLabsProvider(BaseProvider):
    name = "pdl"
    max_page_size = MAX_PAGE_SIZE

    def __init__(
        self,
        api_key: str | None = None,
        endpoint: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.pdl_api_key
        self.endpoint = endpoint or settings.pdl_endpoint
        self.timeout = timeout or settings.provider_timeout
        self._client = client

    async def search_page(self, query: str, filters: SearchFilters, page_size: int, cursor: int | None = None) -> ProviderPage:
        if not self.api_key:
            raise ProviderError(self.name, "API key not configured")

        offset = cursor or 0
        size = min(max(page_size, 1), self.max_page_size)
        body = {
            "query": build_query(query, filters),
            "size": size,
            "from": offset,
            "dataset": "person",
            "fields": DEFAULT_FIELDS,
        }
        data = await self._post(body)

        records = data.get("data") if isinstance(data, dict) else None
        records = records if isinstance(records, list) else []
        candidates = [normalize_candidate(r, self.name) for r in records if isinstance(r, dict)]
        next_cursor = None if len(records) < size else offset + size
        logger.debug(f"PDL page from={offset} size={size} items={len(records)}")
        return ProviderPage(candidates=candidates, next_cursor=next_cursor)

    async def _post(self, body: dict) -> dict:
        headers = {"Content-Type": "application/json", "X-Api-Key": self.api_key}
        try:
            if self._client is not None:
                resp = await self._client.post(self.endpoint, json=body, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(self.endpoint, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise ProviderError(self.name, f"request failed: {e}") from e

        # PDL answers 404 when a search matches nothing
        if resp.status_code == 404:
            return {"data": []}
        if resp.status_code >= 400:
            raise ProviderError(self.name, f"HTTP {resp.status_code}: {resp.text[:300]}", resp.status_code)
        try:
            return resp.json()
        except ValueError as e:
            raise ProviderError(self.name, "invalid JSON response") from e
