"""
Storage backends for artifact persistence.

This module provides:
- MinIOStorage: Production storage using MinIO object storage
- get_storage_backend: Factory function to get the appropriate backend

The storage backend is selected based on the USE_LOCAL_STORAGE setting.
Object names are chosen by the caller, so writing the same name twice
overwrites rather than duplicates.
"""

from __future__ import annotations

import io

from loguru import logger

from forge_core.config import settings
from forge_core.infrastructure.minio import get_minio_client

from app.conversion.protocols import ObjectStorage


class MinIOStorage:
    """
    MinIO-based storage for production deployments.

    Implements the ObjectStorage protocol.

    Usage:
        storage = MinIOStorage()
        url = storage.put("figurine-models", "user-1/models/abc.glb", data, "model/gltf-binary")
    """

    def __init__(self, public_base_url: str | None = None):
        """Initialize the MinIO storage service."""
        self._client = get_minio_client()
        self.public_base_url = (public_base_url or settings.MINIO_PUBLIC_URL).rstrip("/")
        self._known_buckets: set[str] = set()

    def ensure_bucket_exists(self, bucket_name: str) -> None:
        """Create bucket if it doesn't exist."""
        if bucket_name in self._known_buckets:
            return
        try:
            if not self._client.bucket_exists(bucket_name):
                self._client.make_bucket(bucket_name)
                logger.info(f"Created MinIO bucket '{bucket_name}'")
            self._known_buckets.add(bucket_name)
        except Exception as e:
            logger.warning(f"Could not ensure bucket '{bucket_name}' exists: {e}")

    def put(self, bucket: str, object_name: str, content: bytes, content_type: str) -> str:
        """
        Write content to MinIO, replacing any existing object.

        Args:
            bucket: Target bucket.
            object_name: Deterministic object key.
            content: Bytes to store.
            content_type: MIME type recorded on the object.

        Returns:
            str: Public URL of the object.
        """
        self.ensure_bucket_exists(bucket)

        logger.info(f"Uploading {len(content)} bytes to {bucket}/{object_name}")
        self._client.put_object(
            bucket_name=bucket,
            object_name=object_name,
            data=io.BytesIO(content),
            length=len(content),
            content_type=content_type,
        )
        return self.public_url(bucket, object_name)

    def public_url(self, bucket: str, object_name: str) -> str:
        return f"{self.public_base_url}/{bucket}/{object_name}"


def get_storage_backend() -> ObjectStorage:
    """
    Factory function to get the appropriate storage backend.

    Uses USE_LOCAL_STORAGE setting to determine which backend to use.
    Defaults to MinIO for production.

    Returns:
        ObjectStorage: The configured storage backend instance.
    """
    use_local = getattr(settings, "USE_LOCAL_STORAGE", False)

    if use_local:
        from .local_storage import LocalStorage

        logger.info("Using LocalStorage backend")
        return LocalStorage()
    else:
        logger.info("Using MinIOStorage backend")
        return MinIOStorage()
