"""
Tests for the error taxonomy.

Tests cover:
- ErrorCode constants
- TTSStreamError creation and to_dict serialization
- Subclass codes and details
- ExhaustedRetries keeps the last underlying error
- Inheritance (every error is catchable as TTSStreamError)
"""
import pytest

from tts_stream.tts.errors import (
    AuthError,
    ErrorCode,
    ExhaustedRetries,
    InvalidInputError,
    InvalidRequestError,
    InvalidStateError,
    NoCredentialsAvailable,
    PipelineCancelled,
    RateLimited,
    TransientError,
    TTSStreamError,
)


class TestErrorCode:
    """Tests for ErrorCode constants."""

    def test_codes_are_their_own_names(self):
        for name in ("AUTH_ERROR", "INVALID_REQUEST", "RATE_LIMITED", "TRANSIENT_ERROR",
                     "EXHAUSTED_RETRIES", "NO_CREDENTIALS", "CANCELLED", "INVALID_STATE",
                     "INVALID_INPUT", "INTERNAL_ERROR"):
            assert getattr(ErrorCode, name) == name


class TestTTSStreamError:
    """Tests for the base exception."""

    def test_creation_with_message(self):
        err = TTSStreamError("Test error message")
        assert err.message == "Test error message"
        assert str(err) == "Test error message"

    def test_default_code_is_internal_error(self):
        assert TTSStreamError("x").code == ErrorCode.INTERNAL_ERROR

    def test_default_details_is_empty_dict(self):
        assert TTSStreamError("x").details == {}

    def test_to_dict_basic(self):
        """to_dict should produce the standard envelope."""
        assert TTSStreamError("boom", code=ErrorCode.INVALID_STATE).to_dict() == {
            "ok": False,
            "error": "INVALID_STATE",
            "message": "boom",
        }

    def test_to_dict_includes_details(self):
        err = TTSStreamError("boom", details={"status_code": 500})
        assert err.to_dict()["details"] == {"status_code": 500}


class TestSubclasses:
    """Each subclass carries its own code."""

    @pytest.mark.parametrize("exc,code", [
        (AuthError("bad key"), ErrorCode.AUTH_ERROR),
        (InvalidRequestError("bad request"), ErrorCode.INVALID_REQUEST),
        (RateLimited("slow down"), ErrorCode.RATE_LIMITED),
        (TransientError("flaky"), ErrorCode.TRANSIENT_ERROR),
        (NoCredentialsAvailable(), ErrorCode.NO_CREDENTIALS),
        (PipelineCancelled(), ErrorCode.CANCELLED),
        (InvalidStateError("not now"), ErrorCode.INVALID_STATE),
        (InvalidInputError("empty"), ErrorCode.INVALID_INPUT),
    ])
    def test_codes(self, exc, code):
        assert exc.code == code
        assert isinstance(exc, TTSStreamError)
        assert exc.to_dict()["error"] == code

    def test_rate_limited_detail_defaults_to_message(self):
        assert RateLimited("Please retry in 5s").detail == "Please retry in 5s"
        assert RateLimited("429", detail='"retryDelay": "7s"').detail == '"retryDelay": "7s"'

    def test_no_credentials_default_message(self):
        assert "credentials" in NoCredentialsAvailable().message


class TestExhaustedRetries:
    """Retry budget exhaustion."""

    def test_keeps_last_error(self):
        last = TransientError("server error", details={"status_code": 500})
        err = ExhaustedRetries("Giving up", last_error=last, details={"attempts": 3})
        assert err.last_error is last
        assert err.details == {"attempts": 3, "last_error": "TRANSIENT_ERROR"}
        assert err.code == ErrorCode.EXHAUSTED_RETRIES

    def test_without_last_error(self):
        err = ExhaustedRetries("Giving up")
        assert err.last_error is None
        assert err.details == {}

    def test_caller_details_not_mutated(self):
        details = {"attempts": 2}
        ExhaustedRetries("x", last_error=AuthError("y"), details=details)
        assert details == {"attempts": 2}

    def test_catchable_as_base(self):
        with pytest.raises(TTSStreamError):
            raise ExhaustedRetries("x")
