from __future__ import annotations
"""
Protocols for the conversion pipeline.

These protocols define the seams between the poller and its collaborators,
allowing for swappable implementations (Postgres vs. in-memory stores,
MinIO vs. local storage, the real vendor vs. testing doubles).
"""

from typing import Any, Protocol, runtime_checkable

from forge_core.conversions.models import (
    ConversionTask,
    DownloadStatus,
    Figurine,
    GenerationConfig,
    TaskKind,
    TaskStatus,
)
from forge_core.runtime.context import RunContext


@runtime_checkable
class JobClient(Protocol):
    """Protocol for the external conversion vendor."""

    async def submit(
        self,
        kind: TaskKind,
        source: str,
        config: GenerationConfig,
        context: RunContext,
    ) -> str:
        """Submit a job and return the vendor task id."""
        ...

    async def get_status(self, kind: TaskKind, task_id: str, context: RunContext) -> Any:
        """Fetch the vendor's current view of a job as a VendorStatus."""
        ...


@runtime_checkable
class TaskStore(Protocol):
    """Protocol for the durable conversion task table."""

    def create_task(self, task: ConversionTask) -> bool:
        """Insert the task; returns False if the id already existed."""
        ...

    def get_task(self, task_id: str) -> ConversionTask | None:
        ...

    def record_tick(
        self,
        task_id: str,
        status: TaskStatus,
        progress_percent: int,
        attempts: int,
        model_artifact_url: str | None = None,
        thumbnail_artifact_url: str | None = None,
        error: str | None = None,
        download_status: DownloadStatus | None = None,
    ) -> bool:
        """Apply one poll tick; returns False if the task was already terminal."""
        ...

    def record_download(
        self,
        task_id: str,
        download_status: DownloadStatus,
        progress_percent: int,
        persisted_model_url: str | None = None,
        persisted_thumbnail_url: str | None = None,
    ) -> bool:
        """Record download progress for a succeeded task."""
        ...

    def list_unfinished(self, owner_id: str | None = None) -> list[ConversionTask]:
        ...

    def list_persisted(self, owner_id: str) -> list[ConversionTask]:
        """Succeeded tasks whose model has been copied into our storage."""
        ...


@runtime_checkable
class ObjectStorage(Protocol):
    """Protocol for artifact object storage."""

    def put(self, bucket: str, object_name: str, content: bytes, content_type: str) -> str:
        """Write content at a deterministic name and return its public URL."""
        ...

    def public_url(self, bucket: str, object_name: str) -> str:
        ...


@runtime_checkable
class FigurineStore(Protocol):
    """Protocol for the figurine (gallery record) table."""

    def find_by_task_id(self, task_id: str) -> Figurine | None:
        ...

    def find_by_source_image(self, owner_id: str, source_image_url: str) -> Figurine | None:
        ...

    def find_by_model_url(self, owner_id: str, model_url: str) -> Figurine | None:
        ...

    def create(self, figurine: Figurine) -> bool:
        """Insert; returns False when a figurine for the same task already exists."""
        ...

    def attach_model(self, figurine_id: str, model_url: str, task_id: str) -> bool:
        """Set model_url and the task link only; False if another task owns the figurine."""
        ...
