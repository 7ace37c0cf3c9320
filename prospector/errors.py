class ProspectError(Exception):
    """Base class for failures inside the prospecting pipeline.

    ``retryable`` tells the job store whether a failed attempt should put the
    job back in the queue (while attempts remain) or fail it outright.
    """

    retryable = True


class QuotaExceeded(ProspectError):
    retryable = False

    def __init__(self, used: int, cap: int, requested: int):
        self.used = used
        self.cap = cap
        self.requested = requested
        super().__init__(f"Daily cap exceeded ({used}/{cap}, requested {requested})")


class ProviderError(ProspectError):
    def __init__(self, provider: str, message: str, status_code: int | None = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"{provider}: {message}")


class EnrichmentError(ProspectError):
    pass


class BulkWriteError(ProspectError):
    pass


class JobNotFound(ProspectError):
    retryable = False


class NotCancelable(ProspectError):
    retryable = False
