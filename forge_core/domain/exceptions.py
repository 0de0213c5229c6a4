"""
Conversion lifecycle exceptions for figurine-forge.

Every error here is a ServiceError, so callers get a stable `code`, a
`retryable` flag and `to_dict()` for output. Only TransientError is
retryable.
"""

from __future__ import annotations

from forge_core.runtime.errors import ErrorCode, RetryableError, TerminalError


class ValidationError(TerminalError):
    """Bad submission input. Raised before any network call."""

    def __init__(self, message: str, field: str | None = None, cause: Exception | None = None):
        super().__init__(
            code=ErrorCode.INVALID_INPUT,
            message_safe=message,
            cause=cause,
        )
        self.field = field


class QuotaExceededError(TerminalError):
    """The vendor rejected the job because of a usage or rate limit."""

    def __init__(self, message: str, status_code: int | None = None, cause: Exception | None = None):
        super().__init__(
            code=ErrorCode.QUOTA_EXCEEDED,
            message_safe=message,
            cause=cause,
            status_code=status_code,
        )


class TransientError(RetryableError):
    """Network failure, timeout or 5xx while talking to the vendor."""

    def __init__(self, message: str, status_code: int | None = None, cause: Exception | None = None):
        super().__init__(
            code=ErrorCode.SERVICE_UNAVAILABLE,
            message_safe=message,
            cause=cause,
            status_code=status_code,
        )


class TaskNotFoundError(TerminalError):
    """No conversion task with this id is known locally or to the vendor."""

    def __init__(self, task_id: str):
        super().__init__(
            code=ErrorCode.NOT_FOUND,
            message_safe=f"Conversion task {task_id} not found",
        )
        self.task_id = task_id


class ConversionFailedError(TerminalError):
    """The vendor reported the job as failed."""

    def __init__(self, task_id: str, vendor_message: str | None = None):
        super().__init__(
            code=ErrorCode.CONVERSION_FAILED,
            message_safe=f"3D conversion {task_id} failed: {vendor_message or 'unknown error'}",
        )
        self.task_id = task_id
        self.vendor_message = vendor_message


class MissingArtifactError(TerminalError):
    """The vendor reported success without a model URL."""

    def __init__(self, task_id: str):
        super().__init__(
            code=ErrorCode.MISSING_ARTIFACT,
            message_safe=f"Vendor reported task {task_id} as succeeded without a model URL",
        )
        self.task_id = task_id


class ConversionTimeoutError(TerminalError):
    """The polling attempt budget ran out before the vendor finished."""

    def __init__(self, task_id: str, attempts: int):
        super().__init__(
            code=ErrorCode.POLL_BUDGET_EXHAUSTED,
            message_safe=(
                f"Conversion {task_id} did not finish after {attempts} status checks; "
                "please try again"
            ),
        )
        self.task_id = task_id
        self.attempts = attempts


class DownloadFailedError(TerminalError):
    """Fetching or storing a finished artifact failed."""

    def __init__(self, task_id: str, message: str, cause: Exception | None = None):
        super().__init__(
            code=ErrorCode.DOWNLOAD_FAILED,
            message_safe=f"Could not persist model for task {task_id}: {message}",
            cause=cause,
        )
        self.task_id = task_id


class ReconciliationError(TerminalError):
    """Linking a persisted model to a figurine failed.

    The persisted model URL is kept on the error so the artifact is never
    lost to the caller.
    """

    def __init__(self, task_id: str, persisted_model_url: str, cause: Exception | None = None):
        super().__init__(
            code=ErrorCode.RECONCILIATION_FAILED,
            message_safe=f"Model for task {task_id} was saved but could not be linked to a figurine",
            message_debug=str(cause) if cause else None,
            cause=cause,
        )
        self.task_id = task_id
        self.persisted_model_url = persisted_model_url


class InvalidTransitionError(TerminalError):
    """A status change would move a task backwards or out of a terminal state."""

    def __init__(self, message: str):
        super().__init__(code=ErrorCode.INVALID_TRANSITION, message_safe=message)


class PollerConflictError(TerminalError):
    """A poll loop is already running for this task id."""

    def __init__(self, task_id: str):
        super().__init__(
            code=ErrorCode.POLLER_CONFLICT,
            message_safe=f"A poller is already active for task {task_id}; cancel it first",
        )
        self.task_id = task_id
