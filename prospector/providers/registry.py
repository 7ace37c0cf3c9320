from prospector.errors import ProviderError
from prospector.providers.base import BaseProvider
from prospector.providers.mock import MockProvider
from prospector.providers.pdl import PeopleDataLabsProvider

PROVIDERS: dict[str, type[BaseProvider]] = {
    "pdl": PeopleDataLabsProvider,
    "mock": MockProvider,
}


def get_provider(name: str) -> BaseProvider:
    provider_cls = PROVIDERS.get((name or "").lower())
    if provider_cls is None:
        raise ProviderError(name or "?", "unknown provider")
    return provider_cls()
