"""
VendorJobClient: thin typed client for the Meshy conversion API.

Submits image-to-3D and text-to-3D jobs and fetches their status. Raw
vendor payloads are turned into VendorStatus here, including the status
string normalization, so nothing downstream sees vendor field names.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
from loguru import logger
from pydantic import BaseModel

from forge_core.config import settings
from forge_core.conversions.models import GenerationConfig, TaskKind, TaskStatus
from forge_core.conversions.status_mapping import normalize_vendor_status
from forge_core.domain.exceptions import (
    QuotaExceededError,
    TaskNotFoundError,
    TransientError,
)
from forge_core.runtime import (
    NO_RETRY_POLICY,
    ErrorCode,
    RetryableError,
    RetryPolicy,
    RunContext,
    ServiceError,
    ServiceHttpClient,
)

ENDPOINTS = {
    TaskKind.IMAGE_TO_3D: "/v1/image-to-3d",
    TaskKind.TEXT_TO_3D: "/v2/text-to-3d",
}

QUOTA_CODES = {ErrorCode.RATE_LIMITED, ErrorCode.PAYMENT_REQUIRED}
# Body phrases that mean the account is out of quota, not that the input broke a limit
LIMIT_MARKERS = ("limit reached", "quota", "insufficient credits")


class VendorStatus(BaseModel):
    """Normalized view of `GET /{kind}/{task_id}`."""

    task_id: str
    raw_status: Optional[str] = None
    status: TaskStatus
    progress: int = 0
    model_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def from_payload(cls, task_id: str, payload: dict[str, Any]) -> "VendorStatus":
        raw_status = payload.get("status")
        model_urls = payload.get("model_urls") or {}
        if not isinstance(model_urls, dict):
            model_urls = {}
        # Prefer GLB, fall back to OBJ
        model_url = payload.get("model_url") or model_urls.get("glb") or model_urls.get("obj")
        task_error = payload.get("task_error") or {}
        if not isinstance(task_error, dict):
            task_error = {"message": str(task_error)}

        try:
            progress = int(payload.get("progress") or 0)
        except (TypeError, ValueError):
            progress = 0

        return cls(
            task_id=task_id,
            raw_status=raw_status,
            status=normalize_vendor_status(raw_status),
            progress=max(0, min(progress, 100)),
            model_url=model_url or None,
            thumbnail_url=payload.get("thumbnail_url") or None,
            error_message=task_error.get("message") or payload.get("error") or None,
        )


def _json_body(response: httpx.Response) -> dict[str, Any]:
    """Decode a 2xx vendor body; anything but a JSON object is transient."""
    try:
        body = response.json()
    except ValueError as e:
        raise TransientError(
            "Vendor returned a non-JSON response", status_code=response.status_code, cause=e
        ) from e
    if not isinstance(body, dict):
        raise TransientError(
            f"Vendor returned an unexpected {type(body).__name__} payload",
            status_code=response.status_code,
        )
    return body


def _translate(error: ServiceError, task_id: str | None = None) -> ServiceError:
    """Map transport-level errors onto the conversion taxonomy."""
    if isinstance(error, RetryableError):
        return TransientError(error.message_safe, status_code=error.status_code, cause=error)
    body = (error.message_debug or "").lower()
    if error.code in QUOTA_CODES or any(marker in body for marker in LIMIT_MARKERS):
        return QuotaExceededError(
            "Vendor usage limit reached. Please try again later or upgrade your plan.",
            status_code=error.status_code,
            cause=error,
        )
    if error.code == ErrorCode.NOT_FOUND and task_id:
        return TaskNotFoundError(task_id)
    return error


class VendorJobClient:
    """
    Client for the vendor's submit/status contract.

    Status calls are single-shot: the status poller owns the retry budget.
    Submissions retry transport failures according to `submit_policy`.

    Usage:
        client = VendorJobClient()
        task_id = await client.submit(TaskKind.TEXT_TO_3D, "a red dragon", config, ctx)
        status = await client.get_status(TaskKind.TEXT_TO_3D, task_id, ctx)
    """

    def __init__(
        self,
        http_client: ServiceHttpClient | None = None,
        api_key: str | None = None,
        submit_policy: RetryPolicy | None = None,
        submit_timeout: float | None = None,
        status_timeout: float | None = None,
    ):
        key = api_key if api_key is not None else settings.MESHY_API_KEY
        self._http = http_client or ServiceHttpClient(
            base_url=settings.MESHY_API_URL,
            default_headers={"Authorization": f"Bearer {key}"},
        )
        self.submit_policy = submit_policy or RetryPolicy(
            max_attempts=settings.SUBMIT_MAX_ATTEMPTS, base_delay=1.0
        )
        self.submit_timeout = submit_timeout or settings.VENDOR_SUBMIT_TIMEOUT_SECONDS
        self.status_timeout = status_timeout or settings.VENDOR_STATUS_TIMEOUT_SECONDS

    async def close(self) -> None:
        await self._http.close()

    @staticmethod
    def build_payload(kind: TaskKind, source: str, config: GenerationConfig) -> dict[str, Any]:
        """Build the vendor request body for a submission."""
        payload = config.to_vendor_payload()
        if kind == TaskKind.TEXT_TO_3D:
            payload["mode"] = "preview"
            payload["prompt"] = source.strip()
            # The text endpoint has no texture_richness option
            payload.pop("texture_richness", None)
        else:
            payload["image_url"] = source
        return payload

    async def submit(
        self,
        kind: TaskKind,
        source: str,
        config: GenerationConfig,
        context: RunContext,
    ) -> str:
        """
        Submit a conversion job.

        Args:
            kind: Which endpoint to use.
            source: Image URL / data URI, or the prompt text.
            config: Validated generation options.
            context: Request context for correlation headers.

        Returns:
            str: The vendor-assigned task id.

        Raises:
            QuotaExceededError: Vendor usage/rate limit.
            TransientError: Network failure or 5xx after retries.
            TerminalError: Any other vendor rejection.
        """
        payload = self.build_payload(kind, source, config)
        logger.info(f"[{context.request_id}] Submitting {kind.value} job to vendor")

        try:
            response = await self._http.post(
                ENDPOINTS[kind],
                context,
                json=payload,
                retry_policy=self.submit_policy,
                timeout=self.submit_timeout,
            )
        except ServiceError as e:
            translated = _translate(e)
            logger.error(f"[{context.request_id}] Vendor rejected submission: {translated}")
            raise translated from e

        body = _json_body(response)
        task_id = body.get("result") or body.get("id")
        if not task_id:
            raise TransientError("Vendor response did not include a task id")

        logger.info(f"[{context.request_id}] Vendor accepted job {task_id}")
        return str(task_id)

    async def get_status(self, kind: TaskKind, task_id: str, context: RunContext) -> VendorStatus:
        """
        Fetch the vendor's status for a job.

        Raises:
            TransientError: Network failure, timeout, 5xx or an unreadable body.
            TaskNotFoundError: The vendor does not know the task.
        """
        try:
            response = await self._http.get(
                f"{ENDPOINTS[kind]}/{task_id}",
                context,
                retry_policy=NO_RETRY_POLICY,
                timeout=self.status_timeout,
            )
        except ServiceError as e:
            raise _translate(e, task_id=task_id) from e

        payload = _json_body(response)
        try:
            status = VendorStatus.from_payload(task_id, payload)
        except (TypeError, ValueError) as e:
            raise TransientError(f"Malformed vendor status for {task_id}", cause=e) from e
        logger.debug(
            f"[{task_id}] Vendor status {status.raw_status!r} -> {status.status.value} "
            f"({status.progress}%)"
        )
        return status
