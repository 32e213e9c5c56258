"""Error taxonomy for the conversion pipeline.

Adapters raise these internally and turn them into failure results at their
public boundary; only the gateway decides what reaches the caller.
"""


class FailureReason:
    QUOTA_EXHAUSTED = "quota_exhausted"
    PROVIDER_ERROR = "provider_error"
    JOB_TIMEOUT = "job_timeout"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    NOT_CONFIGURED = "not_configured"
    STORAGE_ERROR = "storage_error"
    ALL_PROVIDERS_FAILED = "all_providers_failed"
    INVALID_MEDIA_ID = "invalid_media_id"
    INTERNAL_ERROR = "internal_error"


class ConversionError(Exception):
    """Base class; `reason` is the machine-readable code."""

    reason = FailureReason.PROVIDER_ERROR

    def __init__(self, message: str = "", *, provider: str | None = None) -> None:
        super().__init__(message or self.reason)
        self.message = message or self.reason
        self.provider = provider


class QuotaExhausted(ConversionError):
    reason = FailureReason.QUOTA_EXHAUSTED


class ProviderError(ConversionError):
    """Malformed or non-2xx provider response."""

    reason = FailureReason.PROVIDER_ERROR

    def __init__(self, message: str = "", *, provider: str | None = None,
                 status_code: int | None = None) -> None:
        super().__init__(message, provider=provider)
        self.status_code = status_code


class JobTimeout(ProviderError):
    reason = FailureReason.JOB_TIMEOUT


class ProviderNotConfigured(ConversionError):
    reason = FailureReason.NOT_CONFIGURED


class DeadlineExceeded(ConversionError):
    reason = FailureReason.DEADLINE_EXCEEDED


class StorageError(ConversionError):
    """Download from the remote link or upload to the durable store failed."""

    reason = FailureReason.STORAGE_ERROR
