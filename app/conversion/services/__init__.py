# Conversion services

from .artifact_store import ArtifactStore, PersistResult
from .figurine_repository import FigurineRepository
from .local_storage import LocalStorage
from .poller import PollerRegistry, StatusPoller
from .reconciler import FigurineReconciler, ReconcileResult, derive_title
from .recovery import RecoveryResult, RecoveryService
from .storage import MinIOStorage, get_storage_backend
from .submitter import SubmitRequest, TaskSubmitter
from .task_ledger import TaskLedgerService
from .vendor_client import VendorJobClient, VendorStatus

__all__ = [
    # Vendor
    "VendorJobClient",
    "VendorStatus",
    # Storage backends
    "MinIOStorage",
    "LocalStorage",
    "get_storage_backend",
    "ArtifactStore",
    "PersistResult",
    # Records
    "TaskLedgerService",
    "FigurineRepository",
    "FigurineReconciler",
    "ReconcileResult",
    "derive_title",
    # Lifecycle
    "TaskSubmitter",
    "SubmitRequest",
    "StatusPoller",
    "PollerRegistry",
    "RecoveryService",
    "RecoveryResult",
]
