"""
ArtifactStore: copies finished vendor artifacts into our own storage.

Object names are derived from (owner_id, task_id) only, so persisting the
same task twice overwrites the same objects instead of creating new ones.
"""

from __future__ import annotations

import asyncio
from typing import Optional
from urllib.parse import urlparse

from loguru import logger
from pydantic import BaseModel

from forge_core.config import settings
from forge_core.domain.exceptions import DownloadFailedError
from forge_core.runtime import (
    NO_RETRY_POLICY,
    RetryPolicy,
    RunContext,
    ServiceError,
    ServiceHttpClient,
    with_retry,
)

from app.conversion.protocols import ObjectStorage

MODEL_CONTENT_TYPES = {
    "glb": "model/gltf-binary",
    "obj": "model/obj",
}
THUMBNAIL_CONTENT_TYPE = "image/png"


def model_extension(model_url: str) -> str:
    """File extension for a vendor model URL; GLB unless the URL says OBJ."""
    path = urlparse(model_url).path.lower()
    return "obj" if path.endswith(".obj") else "glb"


def model_object_name(owner_id: str, task_id: str, extension: str = "glb") -> str:
    return f"{owner_id}/models/{task_id}.{extension}"


def thumbnail_object_name(owner_id: str, task_id: str) -> str:
    return f"{owner_id}/thumbnails/{task_id}_thumb.png"


class PersistResult(BaseModel):
    """Where the artifacts of one task ended up."""

    model_url: str
    thumbnail_url: Optional[str] = None
    thumbnail_failed: bool = False


class ArtifactStore:
    """
    Downloads model and thumbnail binaries and writes them to object storage.

    The model is mandatory: any failure fetching or writing it raises
    DownloadFailedError. The thumbnail is best-effort and only flips
    `thumbnail_failed` on the result.

    Usage:
        store = ArtifactStore(storage=get_storage_backend())
        result = await store.persist("user-1", task_id, "https://vendor/x.glb")
    """

    def __init__(
        self,
        storage: ObjectStorage,
        http_client: ServiceHttpClient | None = None,
        download_policy: RetryPolicy | None = None,
        download_timeout: float | None = None,
        models_bucket: str | None = None,
        images_bucket: str | None = None,
    ):
        self._storage = storage
        self._http = http_client or ServiceHttpClient()
        self.download_policy = download_policy or RetryPolicy(max_attempts=2, base_delay=1.0)
        self.download_timeout = download_timeout or settings.DOWNLOAD_TIMEOUT_SECONDS
        self.models_bucket = models_bucket or settings.MINIO_BUCKET_MODELS
        self.images_bucket = images_bucket or settings.MINIO_BUCKET_IMAGES

    async def close(self) -> None:
        await self._http.close()

    async def _download(self, url: str, context: RunContext) -> bytes:
        @with_retry(self.download_policy)
        async def fetch() -> bytes:
            response = await self._http.get(
                url,
                context,
                retry_policy=NO_RETRY_POLICY,
                timeout=self.download_timeout,
            )
            return response.content

        content = await fetch()
        if not content:
            raise ValueError(f"Empty response body from {url}")
        return content

    async def _write(self, bucket: str, object_name: str, content: bytes, content_type: str) -> str:
        return await asyncio.to_thread(self._storage.put, bucket, object_name, content, content_type)

    async def persist(
        self,
        owner_id: str,
        task_id: str,
        model_url: str,
        thumbnail_url: str | None = None,
    ) -> PersistResult:
        """
        Persist a task's artifacts.

        Args:
            owner_id: Owner of the task; first path segment.
            task_id: Vendor task id; names the objects.
            model_url: Vendor-hosted model URL.
            thumbnail_url: Optional vendor-hosted thumbnail URL.

        Returns:
            PersistResult: Public URLs of the stored artifacts.

        Raises:
            DownloadFailedError: The model could not be fetched or stored.
        """
        context = RunContext.for_task(task_id, owner_id)
        extension = model_extension(model_url)
        object_name = model_object_name(owner_id, task_id, extension)

        logger.info(f"[{task_id}] Downloading model from vendor")
        try:
            content = await self._download(model_url, context)
            persisted_model_url = await self._write(
                self.models_bucket, object_name, content, MODEL_CONTENT_TYPES[extension]
            )
        except ServiceError as e:
            logger.error(f"[{task_id}] Model download failed: {e}")
            raise DownloadFailedError(task_id, e.message_safe, cause=e) from e
        except Exception as e:
            # Storage clients raise their own error types (e.g. minio S3Error)
            logger.error(f"[{task_id}] Model persistence failed: {e}")
            raise DownloadFailedError(task_id, str(e), cause=e) from e

        logger.info(f"[{task_id}] Model stored at {self.models_bucket}/{object_name}")

        persisted_thumbnail_url = None
        thumbnail_failed = False
        if thumbnail_url:
            try:
                thumb = await self._download(thumbnail_url, context)
                persisted_thumbnail_url = await self._write(
                    self.images_bucket,
                    thumbnail_object_name(owner_id, task_id),
                    thumb,
                    THUMBNAIL_CONTENT_TYPE,
                )
            except Exception as e:
                logger.warning(f"[{task_id}] Thumbnail persistence failed, continuing: {e}")
                thumbnail_failed = True

        return PersistResult(
            model_url=persisted_model_url,
            thumbnail_url=persisted_thumbnail_url,
            thumbnail_failed=thumbnail_failed,
        )
