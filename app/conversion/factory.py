"""
Conversion module factory.

This module provides factory functions to create instances of conversion services,
handling dependency injection and configuration.
"""

from __future__ import annotations

from functools import lru_cache

from forge_core.config import settings
from forge_core.conversions.models import StatusReport
from forge_core.runtime import TTLCache

from app.conversion.protocols import FigurineStore, JobClient, ObjectStorage, TaskStore
from app.conversion.services.artifact_store import ArtifactStore
from app.conversion.services.figurine_repository import FigurineRepository
from app.conversion.services.poller import PollerRegistry, StatusPoller
from app.conversion.services.reconciler import FigurineReconciler
from app.conversion.services.recovery import RecoveryService
from app.conversion.services.storage import get_storage_backend
from app.conversion.services.submitter import TaskSubmitter
from app.conversion.services.task_ledger import TaskLedgerService
from app.conversion.services.vendor_client import VendorJobClient


def get_vendor_client() -> JobClient:
    """Get a vendor client. Each call owns its own connection pool."""
    return VendorJobClient()


@lru_cache()
def get_task_ledger() -> TaskStore:
    """Get the task ledger service instance."""
    return TaskLedgerService()


@lru_cache()
def get_figurine_store() -> FigurineStore:
    """Get the figurine repository instance."""
    return FigurineRepository()


@lru_cache()
def get_object_storage() -> ObjectStorage:
    """Get the configured storage backend (MinIO or local)."""
    return get_storage_backend()


@lru_cache()
def get_poller_registry() -> PollerRegistry:
    """Get the process-wide registry of active poll loops."""
    return PollerRegistry()


@lru_cache()
def get_status_cache() -> TTLCache[str, StatusReport]:
    """Get the status report cache."""
    return TTLCache(
        ttl_seconds=settings.STATUS_CACHE_TTL_SECONDS,
        max_entries=settings.STATUS_CACHE_MAX_ENTRIES,
    )


def get_reconciler() -> FigurineReconciler:
    return FigurineReconciler(figurines=get_figurine_store())


def get_submitter(vendor: JobClient | None = None) -> TaskSubmitter:
    """
    Get a task submitter.

    Wires up dependencies: vendor client, task ledger.
    """
    return TaskSubmitter(vendor=vendor or get_vendor_client(), ledger=get_task_ledger())


def get_status_poller(vendor: JobClient | None = None) -> StatusPoller:
    """
    Get a status poller.

    Wires up dependencies: vendor client, task ledger, artifact store,
    reconciler, status cache, poller registry.
    """
    return StatusPoller(
        vendor=vendor or get_vendor_client(),
        ledger=get_task_ledger(),
        artifact_store=ArtifactStore(storage=get_object_storage()),
        reconciler=get_reconciler(),
        cache=get_status_cache(),
        registry=get_poller_registry(),
    )


def get_recovery_service() -> RecoveryService:
    return RecoveryService(
        ledger=get_task_ledger(),
        figurines=get_figurine_store(),
        reconciler=get_reconciler(),
    )
