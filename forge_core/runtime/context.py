"""
Request-scoped context for service operations.

RunContext carries correlation IDs and owner information across service
boundaries. The CLI creates one per invocation; a poll loop creates one per
conversion task so every vendor call for that task shares a request id.
"""

from __future__ import annotations

import uuid

from pydantic import BaseModel


class RunContext(BaseModel):
    """Request-scoped context for service operations.

    Attributes:
        request_id: Unique identifier for request tracing.
        owner_id: Owner of the conversion tasks touched by this request.
        task_id: Optional conversion task this context is bound to.
    """

    request_id: str
    owner_id: str | None = None
    task_id: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def new(cls, owner_id: str | None = None) -> "RunContext":
        """Create a context with a fresh request id."""
        return cls(request_id=str(uuid.uuid4()), owner_id=owner_id)

    @classmethod
    def for_task(cls, task_id: str, owner_id: str | None = None) -> "RunContext":
        """Create RunContext for a poll loop.

        Uses the task_id as the request_id for correlation.

        Args:
            task_id: The conversion task id.
            owner_id: Owner of the task.

        Returns:
            A new RunContext configured for the poll loop.
        """
        return cls(request_id=task_id, owner_id=owner_id, task_id=task_id)

    def get_headers(self) -> dict[str, str]:
        """Get HTTP headers for propagating context.

        Returns:
            Dictionary of headers to inject into outbound requests.
        """
        headers = {"X-Request-Id": self.request_id}
        if self.owner_id:
            headers["X-Owner-Id"] = self.owner_id
        return headers
