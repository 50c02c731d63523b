class ConfigurationError(RuntimeError):
    """Required configuration is missing or unsafe. Commands exit with code 2."""


class UpstreamError(RuntimeError):
    def __init__(self, message: str, status: int | None = None, transient: bool = True):
        super().__init__(message)
        self.status = status
        self.transient = transient


class PageFetchFailed(RuntimeError):
    def __init__(self, resource: str, page: int, attempts: int, last_error: Exception):
        super().__init__(
            f"{resource} page {page} failed after {attempts} attempt(s): {last_error}"
        )
        self.resource = resource
        self.page = page
        self.attempts = attempts
        self.last_error = last_error


class UpsertError(ValueError):
    """Payload cannot be applied to a target table (bad shape, missing natural id)."""


class WebhookRejected(Exception):
    def __init__(self, status_code: int, reason: str):
        super().__init__(reason)
        self.status_code = status_code
        self.reason = reason
