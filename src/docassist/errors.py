"""Error taxonomy shared by the lifecycle, query and API layers.

Every error carries a stable ``kind`` and a human-readable ``message``; the
API serialises only those two fields so provider payloads never cross the
HTTP boundary.
"""

from __future__ import annotations

from typing import Any

RATE_LIMIT_MARKER = "rate_limit_exceeded"
RATE_LIMIT_STATUS_CODE = 429


class DocAssistError(RuntimeError):
    """Base class for failures surfaced to callers."""

    kind = "internal"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class NotInitializedError(DocAssistError):
    """Raised when the remote client has no credentials."""

    kind = "not_initialized"


class NoActiveSessionError(DocAssistError):
    """Raised when an operation needs a provisioned session that is absent."""

    kind = "no_active_session"


class NoAgentError(NoActiveSessionError):
    kind = "no_agent"


class DocumentNotFoundError(DocAssistError):
    kind = "document_not_found"


class EmptyQuestionError(DocAssistError, ValueError):
    kind = "empty_question"


class IndexingFailedError(DocAssistError):
    """Raised when the remote index never reaches the ready state."""

    kind = "indexing_failed"

    def __init__(self, message: str, *, status: str) -> None:
        super().__init__(message)
        self.status = status


class RunFailedError(DocAssistError):
    """Raised when a run ends in a non-completed state that is not retried."""

    kind = "run_failed"

    def __init__(self, message: str, *, status: str, reason: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.reason = reason


class RunTimeoutError(DocAssistError):
    kind = "timeout"


class RateLimitedError(DocAssistError):
    """Transient throttling reported by the provider."""

    kind = "rate_limited"

    def __init__(self, message: str, *, status_code: int | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class RemoteCallError(DocAssistError):
    """Any other provider failure; never retried."""

    kind = "remote_call_failed"

    def __init__(self, message: str, *, operation: str) -> None:
        super().__init__(message)
        self.operation = operation


def is_rate_limit_error(exc: BaseException) -> bool:
    """Return True when ``exc`` signals provider throttling.

    Any one of: the marker token in the message, a 429 transport status, or
    the throttling error code.
    """

    if isinstance(exc, RateLimitedError):
        return True
    message = getattr(exc, "message", None) or str(exc)
    if RATE_LIMIT_MARKER in str(message):
        return True
    for attr in ("status_code", "status"):
        if getattr(exc, attr, None) == RATE_LIMIT_STATUS_CODE:
            return True
    return getattr(exc, "code", None) == RATE_LIMIT_MARKER


__all__ = [
    "DocAssistError",
    "DocumentNotFoundError",
    "EmptyQuestionError",
    "IndexingFailedError",
    "NoActiveSessionError",
    "NoAgentError",
    "NotInitializedError",
    "RATE_LIMIT_MARKER",
    "RateLimitedError",
    "RemoteCallError",
    "RunFailedError",
    "RunTimeoutError",
    "is_rate_limit_error",
]
