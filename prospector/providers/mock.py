"""Synthetic prospects for local development and demos."""

from prospector.providers.base import BaseProvider, ProviderPage, SearchFilters, normalize_candidate

COMPANIES = ["Aurelia Labs", "VertexIQ", "BluePeak Systems", "Quantiva", "NovaStack"]
TITLES = ["Head of Growth", "CTO", "Product Lead", "VP Sales", "Founder"]


def synth_record(i: int, filters: SearchFilters) -> dict:
    title = filters.titles[i % len(filters.titles)] if filters.titles else TITLES[i % len(TITLES)]
    return {
        "full_name": f"Prospect {i}",
        "work_email": f"prospect{i}@example.com",
        "phone_numbers": [{"number": f"+1 555 {i:07d}"}],
        "job_title": title,
        "job_company_name": COMPANIES[i % len(COMPANIES)],
        "location_country_code": (filters.country or "US").upper(),
    }


class MockProvider(BaseProvider):
    name = "mock"

    def __init__(self, total: int = 100, name: str | None = None):
        self.total = total
        if name:
            self.name = name

    async def search_page(self, query: str, filters: SearchFilters, page_size: int, cursor: int | None = None) -> ProviderPage:
        start = cursor or 0
        end = min(start + page_size, self.total)
        candidates = [normalize_candidate(synth_record(i + 1, filters), self.name) for i in range(start, end)]
        next_cursor = end if end < self.total else None
        return ProviderPage(candidates=candidates, next_cursor=next_cursor)
