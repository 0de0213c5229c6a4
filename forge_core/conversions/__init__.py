"""
Conversion task domain module.

Exports:
    - TaskKind, TaskStatus, DownloadStatus: closed enums for the lifecycle
    - GenerationConfig: validated vendor options
    - ConversionTask, Figurine: stored records
    - StatusReport, PollOutcome: caller-facing results
    - normalize_vendor_status: the vendor boundary mapping
    - ProgressScale, ProgressTracker: progress bar sub-ranges
"""

from forge_core.conversions.models import (
    ArtStyle,
    ConversionTask,
    DegradedReason,
    DownloadStatus,
    Figurine,
    GenerationConfig,
    OutcomeKind,
    PollOutcome,
    StatusReport,
    TaskKind,
    TaskStatus,
    TextureRichness,
    Topology,
)
from forge_core.conversions.progress import ProgressScale, ProgressTracker
from forge_core.conversions.status_mapping import VENDOR_STATUS_MAP, normalize_vendor_status

__all__ = [
    "ArtStyle",
    "ConversionTask",
    "DegradedReason",
    "DownloadStatus",
    "Figurine",
    "GenerationConfig",
    "OutcomeKind",
    "PollOutcome",
    "ProgressScale",
    "ProgressTracker",
    "StatusReport",
    "TaskKind",
    "TaskStatus",
    "TextureRichness",
    "Topology",
    "VENDOR_STATUS_MAP",
    "normalize_vendor_status",
]
