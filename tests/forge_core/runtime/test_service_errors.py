"""Unit tests for the ServiceError hierarchy and conversion exceptions."""

import pytest

from forge_core.domain.exceptions import (
    ConversionFailedError,
    ConversionTimeoutError,
    DownloadFailedError,
    PollerConflictError,
    QuotaExceededError,
    ReconciliationError,
    TransientError,
    ValidationError,
)
from forge_core.runtime.errors import ErrorCode, RetryableError, ServiceError, TerminalError


class TestServiceError:
    """Tests for ServiceError base class."""

    def test_create_with_required_fields(self):
        error = ServiceError(code="TEST_ERROR", message_safe="Something went wrong")

        assert error.code == "TEST_ERROR"
        assert error.message_debug is None
        assert error.retryable is False
        assert error.debug_id is not None

    def test_str_representation(self):
        """Should format as [CODE] message."""
        error = ServiceError(code="MY_CODE", message_safe="My message")

        assert str(error) == "[MY_CODE] My message"

    def test_to_dict_excludes_debug(self):
        error = ServiceError(
            code="X", message_safe="safe", message_debug="secret", debug_id="abc"
        )

        assert error.to_dict() == {"code": "X", "message": "safe", "debug_id": "abc"}

    def test_subclasses_set_retryable(self):
        assert RetryableError(code="A", message_safe="a").retryable is True
        assert TerminalError(code="B", message_safe="b").retryable is False


class TestConversionErrors:
    """Tests for the conversion error taxonomy."""

    def test_only_transient_is_retryable(self):
        errors = [
            ValidationError("bad"),
            QuotaExceededError("limit", status_code=402),
            ConversionFailedError("t", "rejected"),
            ConversionTimeoutError("t", 60),
            DownloadFailedError("t", "boom"),
            ReconciliationError("t", "http://stored/x.glb"),
            PollerConflictError("t"),
        ]

        assert all(not e.retryable for e in errors)
        assert TransientError("down").retryable is True

    def test_validation_error_carries_field(self):
        error = ValidationError("Prompt is required", field="prompt")

        assert error.code == ErrorCode.INVALID_INPUT
        assert error.field == "prompt"

    def test_failed_error_includes_vendor_message(self):
        error = ConversionFailedError("task-1", "Content rejected")

        assert "Content rejected" in error.message_safe
        assert error.vendor_message == "Content rejected"

    def test_timeout_error_suggests_retry(self):
        error = ConversionTimeoutError("task-1", 60)

        assert error.code == ErrorCode.POLL_BUDGET_EXHAUSTED
        assert error.attempts == 60
        assert "try again" in error.message_safe

    def test_timeout_error_does_not_shadow_builtin(self):
        assert not issubclass(ConversionTimeoutError, TimeoutError)

    def test_reconciliation_error_keeps_url(self):
        cause = RuntimeError("db down")
        error = ReconciliationError("task-1", "http://stored/x.glb", cause=cause)

        assert error.persisted_model_url == "http://stored/x.glb"
        assert error.cause is cause
        assert error.message_debug == "db down"
