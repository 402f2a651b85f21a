# core/errors.py
"""Exception hierarchy for generation and API failures."""

from __future__ import annotations


class BookForgeError(Exception):
    """Base error carrying a human-readable message."""

    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class CredentialMissingError(BookForgeError):
    """No API key has been configured; raised before any network call."""

    def __init__(self, message: str = "API key not set") -> None:
        super().__init__(message)


class InvalidCredentialError(BookForgeError):
    """The service rejected the API key, or the key is malformed."""

    def __init__(
        self, message: str = "Invalid API key. Please check your OpenAI API key."
    ) -> None:
        super().__init__(message)


class RateLimitedError(BookForgeError):
    """Quota exhausted; ``retry_after`` is the service's suggested wait in seconds."""

    retryable = True

    def __init__(self, retry_after: float, message: str | None = None) -> None:
        super().__init__(
            message
            or f"Rate limit exceeded. Please wait {retry_after:g} seconds before trying again."
        )
        self.retry_after = retry_after


class ServiceUnavailableError(BookForgeError):
    """Transient upstream or transport fault."""

    retryable = True

    def __init__(
        self,
        message: str = "OpenAI service temporarily unavailable. Please try again later.",
    ) -> None:
        super().__init__(message)


class MalformedUpstreamResponseError(BookForgeError):
    """The service answered successfully but the body could not be interpreted."""


class UpstreamError(BookForgeError):
    """Any other upstream rejection; ``message`` is the service's own text."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NoChaptersFoundError(BookForgeError):
    """The outline yielded no chapter titles."""

    def __init__(
        self, message: str = "No chapters found in table of contents"
    ) -> None:
        super().__init__(message)


class StageOutOfOrderError(BookForgeError):
    """A stage was invoked before its prerequisite state exists."""


class PersistenceError(BookForgeError):
    """The project could not be written to storage."""


__all__ = [
    "BookForgeError",
    "CredentialMissingError",
    "InvalidCredentialError",
    "RateLimitedError",
    "ServiceUnavailableError",
    "MalformedUpstreamResponseError",
    "UpstreamError",
    "NoChaptersFoundError",
    "StageOutOfOrderError",
    "PersistenceError",
]
