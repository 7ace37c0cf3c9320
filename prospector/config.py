from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_prefix": "PROSPECTOR_"}

    # Database
    database_url: str = "sqlite+aiosqlite:///./prospector.db"

    # Providers
    pdl_api_key: str = ""
    pdl_endpoint: str = "https://api.peopledatalabs.com/v5/person/search"
    default_provider: str = "pdl"  # "pdl" or "mock"
    provider_timeout: float = 30.0
    provider_page_size: int = 50

    # Enrichment
    clearbit_api_key: str = ""
    clearbit_endpoint: str = "https://person-stream.clearbit.com/v2/combined/find"
    enrichment_timeout: float = 10.0
    enrichment_concurrency: int = 5

    # Worker
    poll_interval: float = 1.5
    max_concurrency: int = 2
    worker_tenant_id: str = ""  # empty = all tenants
    stale_job_seconds: int = 900
    run_worker_in_app: bool = False

    # Jobs & quota
    default_job_size: int = 25
    max_job_size: int = 500
    max_attempts: int = 3
    default_daily_cap: int = 500
    auto_enrich_imports: bool = False

    # App
    debug: bool = False


settings = Settings()
