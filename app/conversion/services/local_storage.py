"""
Local filesystem storage backend.

This implementation stores files on the local filesystem,
useful for development and testing without MinIO.
"""

from __future__ import annotations

import os
from pathlib import Path

from loguru import logger

from forge_core.config import settings


class LocalStorage:
    """
    File-system based storage for local development.

    Stores files under `base_path/bucket/object_name`. Provides the same
    interface as MinIOStorage.

    Usage:
        storage = LocalStorage(base_path="/tmp/figurine-forge-storage")
        url = storage.put("figurine-models", "user-1/models/abc.glb", data, "model/gltf-binary")
    """

    def __init__(self, base_path: str | None = None, public_base_url: str | None = None):
        """
        Initialize local storage.

        Args:
            base_path: Root directory for all stored files.
            public_base_url: URL prefix reported for stored files.
        """
        self.base_path = Path(base_path or settings.LOCAL_STORAGE_PATH)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = (
            public_base_url or settings.LOCAL_STORAGE_PUBLIC_URL or self.base_path.as_uri()
        ).rstrip("/")
        logger.info(f"LocalStorage initialized at {self.base_path}")

    def _resolve(self, bucket: str, object_name: str) -> Path:
        target = (self.base_path / bucket / object_name).resolve()
        if self.base_path.resolve() not in target.parents:
            raise ValueError(f"Invalid object name: {object_name}")
        return target

    def put(self, bucket: str, object_name: str, content: bytes, content_type: str) -> str:
        """
        Write content to the local filesystem.

        The file is written to a temporary sibling and renamed into place, so
        concurrent writers of the same name leave one complete file.
        """
        target = self._resolve(bucket, object_name)
        target.parent.mkdir(parents=True, exist_ok=True)

        tmp = target.with_name(f".{target.name}.{os.getpid()}.{id(content)}.tmp")
        tmp.write_bytes(content)
        os.replace(tmp, target)

        logger.info(f"Stored {len(content)} bytes ({content_type}) at {bucket}/{object_name}")
        return self.public_url(bucket, object_name)

    def public_url(self, bucket: str, object_name: str) -> str:
        return f"{self.public_base_url}/{bucket}/{object_name}"

    def read(self, bucket: str, object_name: str) -> bytes:
        """Read a stored object back."""
        target = self._resolve(bucket, object_name)
        if not target.exists():
            raise FileNotFoundError(f"File not found: {bucket}/{object_name}")
        return target.read_bytes()
