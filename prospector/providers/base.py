import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: str | None) -> str | None:
    """Digits only, keeping the last 10 when longer (drops country prefixes)."""
    digits = _NON_DIGITS.sub("", phone or "")
    if len(digits) > 10:
        digits = digits[-10:]
    return digits or None


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


@dataclass
class Candidate:
    name: str = ""
    email: str = ""
    phone: str = ""
    phone_norm: str | None = None
    company: str = ""
    title: str = ""
    source: str = ""

    @property
    def email_norm(self) -> str:
        return normalize_email(self.email)


@dataclass
class SearchFilters:
    titles: list[str] = field(default_factory=list)
    country: str | None = None
    industry: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SearchFilters":
        data = data or {}
        return cls(
            titles=list(data.get("titles") or data.get("titleRoles") or []),
            country=data.get("country") or None,
            industry=data.get("industry") or None,
        )


@dataclass
class ProviderPage:
    candidates: list[Candidate]
    next_cursor: Any | None = None


def _first(value) -> Any:
    if isinstance(value, list):
        return value[0] if value else None
    return value


def normalize_candidate(raw: dict, source: str) -> Candidate:
    """Map a provider record of any known shape onto the common candidate fields."""
    email = raw.get("work_email") or raw.get("email") or _first(raw.get("personal_emails")) or ""

    phone = raw.get("phone") or ""
    if not phone:
        first_phone = _first(raw.get("phone_numbers"))
        if isinstance(first_phone, dict):
            phone = first_phone.get("number") or ""
        elif first_phone:
            phone = str(first_phone)

    name = raw.get("full_name") or raw.get("name") or ""
    if not name:
        name = " ".join(p for p in (raw.get("first_name"), raw.get("last_name")) if p)

    employment = raw.get("employment") if isinstance(raw.get("employment"), dict) else {}
    company = raw.get("job_company_name") or raw.get("company") or employment.get("name") or ""
    title = raw.get("job_title") or raw.get("title") or ""

    return Candidate(
        name=str(name).strip(),
        email=str(email).strip(),
        phone=str(phone).strip(),
        phone_norm=normalize_phone(str(phone)),
        company=str(company).strip(),
        title=str(title).strip(),
        source=raw.get("source") or source,
    )


class BaseProvider(ABC):
    name: str = "base"
    max_page_size: int | None = None  # None = no provider-side limit

    @abstractmethod
    async def search_page(
        self,
        query: str,
        filters: SearchFilters,
        page_size: int,
        cursor: Any | None = None,
    ) -> ProviderPage:
        """Fetch one page of candidates.

        ``next_cursor`` is None once the provider has nothing more to return;
        a page shorter than ``page_size`` is also treated as the last one by
        the pipeline. Network failures and non-2xx responses raise
        ProviderError.
        """
