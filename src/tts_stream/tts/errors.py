"""
Error taxonomy for the synthesis pipeline.

Every failure raised by the endpoint adapter, the synthesis client or
the pipeline derives from TTSStreamError and carries a stable ErrorCode
so the CLI and HTTP layer can report it uniformly.

    AuthError            credential rejected; not retried
    InvalidRequestError  request rejected as malformed; not retried
    RateLimited          quota exceeded; retried after a cooldown
    TransientError       network/server hiccup; retried with backoff
    ExhaustedRetries     retry budget spent on recoverable failures
    NoCredentialsAvailable  pool is empty (configuration problem)
    PipelineCancelled    cooperative cancellation was requested
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class ErrorCode:
    """Stable error codes used in error payloads and status updates."""
    AUTH_ERROR = "AUTH_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"
    RATE_LIMITED = "RATE_LIMITED"
    TRANSIENT_ERROR = "TRANSIENT_ERROR"
    EXHAUSTED_RETRIES = "EXHAUSTED_RETRIES"
    NO_CREDENTIALS = "NO_CREDENTIALS"
    CANCELLED = "CANCELLED"
    INVALID_STATE = "INVALID_STATE"
    INVALID_INPUT = "INVALID_INPUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class TTSStreamError(Exception):
    """
    Base exception with an error code and optional details.

    Attributes:
        message: Human-readable error message.
        code: One of the ErrorCode constants.
        details: Extra context (status code, attempt, ...).
    """
    def __init__(self, message: str, code: str = ErrorCode.INTERNAL_ERROR, details: Optional[Dict] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the standard ``{"ok": false, ...}`` error payload."""
        result: Dict[str, Any] = {
            "ok": False,
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class AuthError(TTSStreamError):
    """The endpoint rejected the credential."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.AUTH_ERROR, details)


class InvalidRequestError(TTSStreamError):
    """The endpoint rejected the request itself; retrying cannot help."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.INVALID_REQUEST, details)


class RateLimited(TTSStreamError):
    """
    Quota exceeded for the credential used.

    ``detail`` keeps the endpoint's own error text; it may contain a
    retry hint such as "Please retry in 5.2s".
    """
    def __init__(self, message: str, detail: str = "", details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.RATE_LIMITED, details)
        self.detail = detail or message


class TransientError(TTSStreamError):
    """Network failure, timeout or server error worth retrying."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.TRANSIENT_ERROR, details)


class ExhaustedRetries(TTSStreamError):
    """Recoverable failures persisted past the retry budget."""
    def __init__(self, message: str, last_error: Optional[TTSStreamError] = None, details: Optional[Dict] = None):
        details = dict(details or {})
        if last_error is not None:
            details.setdefault("last_error", last_error.code)
        super().__init__(message, ErrorCode.EXHAUSTED_RETRIES, details)
        self.last_error = last_error


class NoCredentialsAvailable(TTSStreamError):
    """The credential pool is empty."""
    def __init__(self, message: str = "No API credentials configured", details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.NO_CREDENTIALS, details)


class PipelineCancelled(TTSStreamError):
    """Work was abandoned because cancellation was requested."""
    def __init__(self, message: str = "Cancelled", details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.CANCELLED, details)


class InvalidStateError(TTSStreamError):
    """A control operation is not valid in the session's current state."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.INVALID_STATE, details)


class InvalidInputError(TTSStreamError):
    """Caller supplied unusable input (empty text, unknown voice, ...)."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.INVALID_INPUT, details)
