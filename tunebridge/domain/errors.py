"""Transfer error taxonomy.

Adapters raise these with provider/operation context so the orchestrator and
scheduler can decide between retrying and failing a job without inspecting
provider-specific exception types.
"""


class TransferError(Exception):
    """Base class for every error raised by the transfer engine."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.operation = operation

    def context(self) -> dict[str, str | int | None]:
        """Structured context for logging and job metadata."""
        return {
            "error_type": type(self).__name__,
            "provider": self.provider,
            "operation": self.operation,
        }


class AuthorizationError(TransferError):
    """Missing, expired or rejected provider credential. Never retried."""


class UpstreamError(TransferError):
    """Non-success response from a provider API."""

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        operation: str | None = None,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message, provider=provider, operation=operation)
        self.status_code = status_code
        self.body = body

    @property
    def is_client_error(self) -> bool:
        """True for 4xx responses that repeating the request will not fix."""
        return (
            self.status_code is not None
            and 400 <= self.status_code < 500
            and self.status_code not in (408, 429)
        )

    def context(self) -> dict[str, str | int | None]:
        return {**super().context(), "status_code": self.status_code}


class MalformedDataError(TransferError):
    """Provider payload did not have the expected shape."""


class LockConflict(TransferError):
    """Another worker owns the job lease, or this worker lost it."""


class ProviderNotSupportedError(TransferError):
    """No adapter is registered for the requested provider."""


class InvalidTransferRequest(TransferError, ValueError):
    """Submitted transfer cannot be executed as specified."""


FATAL_ERRORS: tuple[type[TransferError], ...] = (
    AuthorizationError,
    ProviderNotSupportedError,
    InvalidTransferRequest,
)
