"""
Domain models for conversion tasks and figurines.

These models provide type-safe representations of the rows stored by the
task ledger and the figurine repository, plus the caller-facing status
report and poll outcome.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt
from pydantic.alias_generators import to_camel

from forge_core.domain.exceptions import InvalidTransitionError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskKind(str, Enum):
    """Which vendor endpoint a task was submitted to."""
    IMAGE_TO_3D = "image_to_3d"
    TEXT_TO_3D = "text_to_3d"


class TaskStatus(str, Enum):
    """
    Normalized task status.

    Vendor strings are mapped onto this set by
    `forge_core.conversions.status_mapping.normalize_vendor_status`; nothing
    else in the codebase looks at raw vendor strings.
    """
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


TERMINAL_STATUSES = frozenset({TaskStatus.SUCCEEDED, TaskStatus.FAILED, TaskStatus.TIMED_OUT})

_STATUS_RANK = {
    TaskStatus.PENDING: 0,
    TaskStatus.PROCESSING: 1,
    TaskStatus.SUCCEEDED: 2,
    TaskStatus.FAILED: 2,
    TaskStatus.TIMED_OUT: 2,
}


class DownloadStatus(str, Enum):
    """Progress of copying vendor artifacts into our own storage."""
    PENDING = "pending"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _DOWNLOAD_RANK[self]


_DOWNLOAD_RANK = {
    DownloadStatus.PENDING: 0,
    DownloadStatus.DOWNLOADING: 1,
    DownloadStatus.COMPLETED: 2,
    DownloadStatus.FAILED: 2,
}


class ArtStyle(str, Enum):
    REALISTIC = "realistic"
    CARTOON = "cartoon"
    LOW_POLY = "low-poly"
    SCULPTURE = "sculpture"
    PBR = "pbr"


class Topology(str, Enum):
    QUAD = "quad"
    TRIANGLE = "triangle"


class TextureRichness(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class GenerationConfig(BaseModel):
    """
    Options forwarded to the vendor with a submission.

    Accepts both snake_case and camelCase keys (`art_style` / `artStyle`).
    Unknown keys are rejected.
    """

    art_style: ArtStyle = ArtStyle.REALISTIC
    ai_model: str = Field("meshy-5", min_length=1)
    topology: Topology = Topology.QUAD
    target_polycount: StrictInt = Field(20000, gt=0)
    texture_richness: TextureRichness = TextureRichness.HIGH
    moderation: StrictBool = True
    negative_prompt: Optional[str] = None

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_vendor_payload(self) -> dict[str, Any]:
        """Vendor request fields for this config (snake_case, enum values)."""
        payload: dict[str, Any] = {
            "ai_model": self.ai_model,
            "art_style": self.art_style.value,
            "topology": self.topology.value,
            "target_polycount": self.target_polycount,
            "texture_richness": self.texture_richness.value,
            "moderation": self.moderation,
        }
        if self.negative_prompt and self.negative_prompt.strip():
            payload["negative_prompt"] = self.negative_prompt.strip()
        return payload


TASK_COLUMNS = (
    "task_id",
    "owner_id",
    "kind",
    "status",
    "progress_percent",
    "source_ref",
    "config",
    "model_artifact_url",
    "thumbnail_artifact_url",
    "download_status",
    "persisted_model_url",
    "persisted_thumbnail_url",
    "attempts",
    "error",
    "created_at",
    "updated_at",
)


class ConversionTask(BaseModel):
    """
    The unit of work: one external generation job.

    Instances are immutable; `advance` and `advance_download` return
    updated copies and refuse backward moves.
    """

    task_id: str = Field(..., description="Vendor-assigned identifier")
    owner_id: str = Field(..., description="User who submitted the task")
    kind: TaskKind
    status: TaskStatus = TaskStatus.PENDING
    progress_percent: int = Field(0, ge=0, le=100)
    source_ref: str = Field(..., description="Image URL/digest or prompt text")
    config: GenerationConfig = Field(default_factory=GenerationConfig)
    model_artifact_url: Optional[str] = None
    thumbnail_artifact_url: Optional[str] = None
    download_status: DownloadStatus = DownloadStatus.PENDING
    persisted_model_url: Optional[str] = None
    persisted_thumbnail_url: Optional[str] = None
    attempts: int = Field(0, ge=0)
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(frozen=True)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def prompt(self) -> str | None:
        """The text prompt for text-to-3D tasks."""
        return self.source_ref if self.kind == TaskKind.TEXT_TO_3D else None

    def advance(self, status: TaskStatus, **changes: Any) -> "ConversionTask":
        """Return a copy moved to `status`.

        Staying in a non-terminal status is allowed (progress ticks). A
        terminal task only accepts a repeat of its own status with no
        changes.

        Raises:
            InvalidTransitionError: On a backward move or a change after a
                terminal status was reached.
        """
        if self.is_terminal:
            if status == self.status and not changes:
                return self
            raise InvalidTransitionError(
                f"Task {self.task_id} is already {self.status.value}; cannot move to {status.value}"
            )
        if status.rank < self.status.rank:
            raise InvalidTransitionError(
                f"Task {self.task_id} cannot move from {self.status.value} back to {status.value}"
            )
        if "progress_percent" in changes:
            changes["progress_percent"] = max(self.progress_percent, changes["progress_percent"])
        return self.model_copy(update={**changes, "status": status, "updated_at": utcnow()})

    def advance_download(self, download_status: DownloadStatus, **changes: Any) -> "ConversionTask":
        """Return a copy with a new download status.

        Only legal once the task has succeeded, and never backwards.
        Repeating COMPLETED is allowed so re-persisting converges.
        """
        if self.status != TaskStatus.SUCCEEDED:
            raise InvalidTransitionError(
                f"Task {self.task_id} is {self.status.value}; downloads start only after success"
            )
        current = self.download_status
        if download_status.rank < current.rank or (
            current.rank == 2 and download_status != current
        ):
            raise InvalidTransitionError(
                f"Task {self.task_id} download cannot move from {current.value} to {download_status.value}"
            )
        if "progress_percent" in changes:
            changes["progress_percent"] = max(self.progress_percent, changes["progress_percent"])
        return self.model_copy(
            update={**changes, "download_status": download_status, "updated_at": utcnow()}
        )

    def to_report(self) -> "StatusReport":
        """Caller-facing view of this task.

        `model_url` prefers our persisted copy and falls back to the vendor
        URL, so a degraded task still exposes a usable link.
        """
        return StatusReport(
            task_id=self.task_id,
            status=self.status,
            progress_percent=self.progress_percent,
            download_status=self.download_status,
            model_url=self.persisted_model_url or self.model_artifact_url,
            thumbnail_url=self.persisted_thumbnail_url or self.thumbnail_artifact_url,
            error=self.error,
        )

    @classmethod
    def from_db_row(cls, row: tuple) -> "ConversionTask":
        """Construct a ConversionTask from a row ordered as TASK_COLUMNS."""
        data = dict(zip(TASK_COLUMNS, row))
        data["config"] = GenerationConfig.model_validate(data.get("config") or {})
        return cls(**data)


class StatusReport(BaseModel):
    """What the poller reports upward to a UI or the CLI."""

    task_id: str
    status: TaskStatus
    progress_percent: int
    download_status: DownloadStatus
    model_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class OutcomeKind(str, Enum):
    SUCCEEDED = "succeeded"
    DEGRADED = "degraded"
    CANCELLED = "cancelled"


class DegradedReason(str, Enum):
    DOWNLOAD_FAILED = "download_failed"
    RECONCILIATION_FAILED = "reconciliation_failed"


class PollOutcome(BaseModel):
    """
    Result of a poll loop that did not fail.

    SUCCEEDED means the model is persisted and linked to a figurine.
    DEGRADED means generation succeeded but persistence or linking did
    not; `report.model_url` still holds a usable URL. CANCELLED means the
    caller stopped the loop before a terminal status.
    """

    kind: OutcomeKind
    report: StatusReport
    figurine_id: Optional[str] = None
    figurine_created: bool = False
    degraded_reason: Optional[DegradedReason] = None
    thumbnail_failed: bool = False
    detail: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.kind == OutcomeKind.DEGRADED

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


FIGURINE_COLUMNS = (
    "id",
    "owner_id",
    "title",
    "prompt",
    "style",
    "source_image_url",
    "model_url",
    "task_id",
    "created_at",
    "updated_at",
)


class Figurine(BaseModel):
    """The user-facing gallery record a finished task attaches to."""

    id: str
    owner_id: str
    title: str
    prompt: Optional[str] = None
    style: str = ArtStyle.REALISTIC.value
    source_image_url: Optional[str] = None
    model_url: Optional[str] = None
    task_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_db_row(cls, row: tuple) -> "Figurine":
        data = dict(zip(FIGURINE_COLUMNS, row))
        data["id"] = str(data["id"])
        return cls(**data)
