"""
Progress scaling for the caller-facing progress bar.

Three phases contribute to one bar: submission owns 0..submitted, the
vendor owns submitted..vendor_ceiling, and download/persist owns the rest.
"""

from __future__ import annotations

from pydantic import BaseModel, model_validator

from forge_core.config import settings


class ProgressScale(BaseModel):
    """Reserved sub-ranges of the 0-100 progress bar."""

    submitted: int = 30
    vendor_ceiling: int = 90
    persisted: int = 95
    complete: int = 100

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_order(self) -> "ProgressScale":
        if not 0 <= self.submitted < self.vendor_ceiling <= self.persisted <= self.complete <= 100:
            raise ValueError("progress ranges must be ordered within 0..100")
        return self

    @classmethod
    def from_settings(cls) -> "ProgressScale":
        return cls(
            submitted=settings.PROGRESS_SUBMITTED,
            vendor_ceiling=settings.PROGRESS_VENDOR_CEILING,
        )

    @property
    def downloading(self) -> int:
        return self.vendor_ceiling

    def vendor(self, vendor_percent: float | int | None) -> int:
        """Scale a vendor percentage (0-100) into submitted..vendor_ceiling."""
        pct = min(max(float(vendor_percent or 0), 0.0), 100.0)
        span = self.vendor_ceiling - self.submitted
        return int(self.submitted + pct * span / 100)


class ProgressTracker:
    """Keeps the reported value from ever going down."""

    def __init__(self, floor: int = 0):
        self.value = floor

    def advance(self, candidate: int) -> int:
        self.value = max(self.value, min(candidate, 100))
        return self.value
