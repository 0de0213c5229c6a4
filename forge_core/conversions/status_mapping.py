"""
Boundary mapping from vendor status strings to TaskStatus.

The vendor does not normalize its status strings across endpoints and API
versions. This table is the only place that knows about them.
"""

from __future__ import annotations

from loguru import logger

from forge_core.conversions.models import TaskStatus

VENDOR_STATUS_MAP: dict[str, TaskStatus] = {
    "SUCCEEDED": TaskStatus.SUCCEEDED,
    "succeeded": TaskStatus.SUCCEEDED,
    "completed": TaskStatus.SUCCEEDED,
    "COMPLETED": TaskStatus.SUCCEEDED,
    "IN_PROGRESS": TaskStatus.PROCESSING,
    "in_progress": TaskStatus.PROCESSING,
    "PENDING": TaskStatus.PROCESSING,
    "pending": TaskStatus.PROCESSING,
    "processing": TaskStatus.PROCESSING,
    "PROCESSING": TaskStatus.PROCESSING,
    "FAILED": TaskStatus.FAILED,
    "failed": TaskStatus.FAILED,
    "EXPIRED": TaskStatus.FAILED,
    "CANCELED": TaskStatus.FAILED,
}


def normalize_vendor_status(raw: str | None) -> TaskStatus:
    """Map a raw vendor status onto TaskStatus.

    Unknown values map to PROCESSING with a warning: an unrecognized string
    is more likely a new intermediate state than a failure, and the attempt
    budget still bounds the loop.
    """
    status = VENDOR_STATUS_MAP.get((raw or "").strip())
    if status is None:
        logger.warning(f"Unrecognized vendor status {raw!r}; treating as processing")
        return TaskStatus.PROCESSING
    return status
