"""
TaskSubmitter: validates a conversion request and hands it to the vendor.

All validation happens before any network call. On success a `pending`
task row is written and the vendor task id is returned; polling is started
separately by the caller.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
from typing import Any, Optional, Union

import pydantic
from loguru import logger
from pydantic import BaseModel, Field

from forge_core.config import settings
from forge_core.conversions.models import ConversionTask, GenerationConfig, TaskKind, TaskStatus
from forge_core.conversions.progress import ProgressScale
from forge_core.domain.exceptions import ValidationError
from forge_core.runtime import RunContext

from app.conversion.protocols import JobClient, TaskStore

_IMAGE_SIGNATURES = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)


def sniff_image_mime(content: bytes) -> Optional[str]:
    """Best-effort MIME type from the leading bytes of an image."""
    for signature, mime in _IMAGE_SIGNATURES:
        if content.startswith(signature):
            return mime
    if content[:4] == b"RIFF" and content[8:12] == b"WEBP":
        return "image/webp"
    return None


class SubmitRequest(BaseModel):
    """
    One conversion request.

    Image requests set either `image_url` (http(s) URL or data URI) or
    `image_bytes`; text requests set `prompt`.
    """

    kind: TaskKind
    owner_id: str = Field(..., min_length=1)
    image_url: Optional[str] = None
    image_bytes: Optional[bytes] = None
    image_mime_type: Optional[str] = None
    prompt: Optional[str] = None
    config: Union[GenerationConfig, dict[str, Any]] = Field(default_factory=dict)


class ValidatedSubmission(BaseModel):
    """What gets sent to the vendor and what gets stored."""

    kind: TaskKind
    owner_id: str
    source: str
    source_ref: str
    config: GenerationConfig


class TaskSubmitter:
    """
    Validates requests, submits them and records the pending task.

    Usage:
        submitter = TaskSubmitter(vendor, ledger)
        task_id = await submitter.submit(
            SubmitRequest(kind=TaskKind.TEXT_TO_3D, owner_id="user-1", prompt="a red dragon")
        )
    """

    def __init__(
        self,
        vendor: JobClient,
        ledger: TaskStore,
        progress: ProgressScale | None = None,
        max_image_bytes: int | None = None,
        max_prompt_length: int | None = None,
    ):
        self.vendor = vendor
        self.ledger = ledger
        self.scale = progress or ProgressScale.from_settings()
        self.max_image_bytes = max_image_bytes or settings.MAX_IMAGE_BYTES
        self.max_prompt_length = max_prompt_length or settings.MAX_PROMPT_LENGTH

    def validate(self, request: SubmitRequest) -> ValidatedSubmission:
        """
        Check a request without touching the network.

        Raises:
            ValidationError: With `field` naming the offending input.
        """
        config = self._validate_config(request.config)

        if request.kind == TaskKind.TEXT_TO_3D:
            prompt = (request.prompt or "").strip()
            if not prompt:
                raise ValidationError("A prompt is required for text-to-3D", field="prompt")
            if len(prompt) > self.max_prompt_length:
                raise ValidationError(
                    f"Prompt must be at most {self.max_prompt_length} characters",
                    field="prompt",
                )
            return ValidatedSubmission(
                kind=request.kind,
                owner_id=request.owner_id,
                source=prompt,
                source_ref=prompt,
                config=config,
            )

        source, source_ref = self._validate_image(request)
        return ValidatedSubmission(
            kind=request.kind,
            owner_id=request.owner_id,
            source=source,
            source_ref=source_ref,
            config=config,
        )

    @staticmethod
    def _validate_config(config: Union[GenerationConfig, dict[str, Any]]) -> GenerationConfig:
        if isinstance(config, GenerationConfig):
            return config
        try:
            return GenerationConfig.model_validate(config or {})
        except pydantic.ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or "config"
            raise ValidationError(
                f"Invalid generation option '{field}': {first.get('msg')}",
                field=field,
                cause=e,
            ) from e

    def _validate_image(self, request: SubmitRequest) -> tuple[str, str]:
        """Return (vendor source, stored source_ref) for an image request."""
        if request.image_bytes is not None:
            content = request.image_bytes
            mime = request.image_mime_type or sniff_image_mime(content)
            self._check_image(content, mime)
            encoded = base64.b64encode(content).decode("ascii")
            return f"data:{mime};base64,{encoded}", self._digest(content)

        image_url = (request.image_url or "").strip()
        if not image_url:
            raise ValidationError("An image is required for image-to-3D", field="image")

        if image_url.startswith("data:"):
            header, _, data = image_url.partition(",")
            mime = header[len("data:"):].split(";")[0]
            if ";base64" not in header:
                raise ValidationError("Image data URIs must be base64 encoded", field="image")
            try:
                content = base64.b64decode(data, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValidationError("Image data URI is not valid base64", field="image", cause=e) from e
            self._check_image(content, mime)
            return image_url, self._digest(content)

        if image_url.startswith(("http://", "https://")):
            return image_url, image_url

        raise ValidationError("Image must be an http(s) URL, a data URI or raw bytes", field="image")

    def _check_image(self, content: bytes, mime: Optional[str]) -> None:
        if not content:
            raise ValidationError("Image is empty", field="image")
        if len(content) > self.max_image_bytes:
            raise ValidationError(
                f"Image exceeds the {self.max_image_bytes // (1024 * 1024)} MB limit",
                field="image",
            )
        if not mime or not mime.startswith("image/"):
            raise ValidationError(f"Unsupported image type: {mime or 'unknown'}", field="image")

    @staticmethod
    def _digest(content: bytes) -> str:
        return "sha256:" + hashlib.sha256(content).hexdigest()

    async def submit(self, request: SubmitRequest, context: RunContext | None = None) -> str:
        """
        Validate, submit to the vendor and record the pending task.

        Returns:
            str: The vendor task id.

        Raises:
            ValidationError: Bad input; nothing was sent.
            QuotaExceededError: The vendor refused because of a usage limit.
            TransientError: The vendor could not be reached.
        """
        submission = self.validate(request)
        context = context or RunContext.new(owner_id=submission.owner_id)

        task_id = await self.vendor.submit(
            submission.kind, submission.source, submission.config, context
        )

        task = ConversionTask(
            task_id=task_id,
            owner_id=submission.owner_id,
            kind=submission.kind,
            status=TaskStatus.PENDING,
            progress_percent=self.scale.submitted,
            source_ref=submission.source_ref,
            config=submission.config,
        )
        self.ledger.create_task(task)

        logger.info(f"[{context.request_id}] Submitted {submission.kind.value} task {task_id}")
        return task_id
