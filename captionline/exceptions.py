"""
captionline.exceptions - Custom exception classes.

All captionline-specific exceptions inherit from CaptionlineError. Remote
failures are classified into typed errors at the networking layer so the
retry controller can branch on type rather than on message text.
"""

from __future__ import annotations


class CaptionlineError(Exception):
    """Base exception for all captionline errors."""

    pass


class ConfigError(CaptionlineError):
    """Configuration loading or validation error."""

    pass


class RemoteError(CaptionlineError):
    """A call to an external service failed."""

    kind = "fatal"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class TransientError(RemoteError):
    """Temporary failure (timeout, connection reset, 5xx). Retried with backoff."""

    kind = "transient"


class RateLimitedError(TransientError):
    """The service rejected the call for exceeding its rate budget."""

    kind = "rate_limited"

    def __init__(
        self,
        message: str,
        status_code: int | None = 429,
        retry_after: float | None = None,
    ) -> None:
        self.retry_after = retry_after
        super().__init__(message, status_code)


class AuthExpiredError(RemoteError):
    """The access credential was rejected as expired."""

    kind = "auth_expired"


class FatalRemoteError(RemoteError):
    """Non-retryable remote failure."""

    pass


class NotFoundError(FatalRemoteError):
    """Requested remote resource does not exist."""

    pass


class CaptionExistsError(FatalRemoteError):
    """A caption for the language is already published."""

    kind = "conflict"


class StageError(CaptionlineError):
    """A pipeline stage failed for one item."""

    pass


class DownloadError(StageError):
    """Source asset download error."""

    pass


class ExtractionError(StageError):
    """Audio extraction error."""

    pass


class TranscriptionError(StageError):
    """Speech-to-text engine error."""

    pass


class TranscriptionTimeoutError(TranscriptionError):
    """Speech-to-text engine exceeded its time limit."""

    pass


class TranslationError(StageError):
    """Translation stage error."""

    pass


class ValidationFailure(TranslationError):
    """Malformed, truncated, or placeholder output."""

    kind = "validation"


class TranslationCountMismatchError(ValidationFailure):
    """The service returned fewer translations than requested."""

    def __init__(self, expected: int, received: int, language: str | None = None) -> None:
        self.expected = expected
        self.received = received
        self.language = language
        target = f" ({language})" if language else ""
        super().__init__(
            f"Translation count mismatch{target}: expected {expected} lines, got {received}"
        )


class TranslationValidationError(ValidationFailure):
    """A translated unit is empty, untranslated, or a placeholder."""

    def __init__(self, message: str, problems: list[str] | None = None) -> None:
        self.problems = problems or []
        super().__init__(message)


class IncompleteItemError(CaptionlineError):
    """Verification found missing or invalid artifacts for an item."""

    def __init__(self, item_id: str, problems: list[str]) -> None:
        self.item_id = item_id
        self.problems = problems
        super().__init__(f"Item {item_id} incomplete: {'; '.join(problems)}")


class ItemFailedError(CaptionlineError):
    """An item exhausted its attempts."""

    def __init__(self, item_id: str, reason: str, attempts: int) -> None:
        self.item_id = item_id
        self.reason = reason
        self.attempts = attempts
        super().__init__(f"Item {item_id} failed after {attempts} attempt(s): {reason}")


class DependencyError(CaptionlineError):
    """Required dependency missing or misconfigured."""

    def __init__(self, dependency: str, message: str, install_hint: str | None = None):
        self.dependency = dependency
        self.message = message
        self.install_hint = install_hint
        super().__init__(f"{dependency}: {message}")
