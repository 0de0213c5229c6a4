"""
FigurineReconciler: attaches a persisted model to exactly one figurine.
"""

from __future__ import annotations

import uuid

from loguru import logger
from pydantic import BaseModel

from forge_core.conversions.models import ConversionTask, Figurine, TaskKind
from forge_core.domain.exceptions import ReconciliationError

from app.conversion.protocols import FigurineStore

TITLE_MAX_LENGTH = 50


def derive_title(task: ConversionTask) -> str:
    """Title for a figurine created from a task."""
    prompt = (task.prompt or "").strip()
    if prompt:
        if len(prompt) <= TITLE_MAX_LENGTH:
            return prompt
        return prompt[: TITLE_MAX_LENGTH - 3] + "..."
    return f"3D Model - {task.task_id[:8]}..."


class ReconcileResult(BaseModel):
    figurine_id: str
    created: bool


class FigurineReconciler:
    """
    Finds or creates the figurine a finished task belongs to.

    Lookup order:
    1. A figurine already linked to the task (a re-run after a crash).
    2. A figurine of the same owner whose source image is the task's source.
    3. Otherwise a new figurine is created with the model attached.

    An existing figurine only ever gets its model URL (and a missing task
    link) updated. If another task links it first, a new figurine is created.
    """

    def __init__(self, figurines: FigurineStore):
        self._figurines = figurines

    def reconcile(self, task: ConversionTask, persisted_model_url: str) -> ReconcileResult:
        """
        Link `persisted_model_url` to a figurine.

        Raises:
            ReconciliationError: Lookup or write failed. The error carries
                the persisted model URL.
        """
        try:
            return self._reconcile(task, persisted_model_url)
        except ReconciliationError:
            raise
        except Exception as e:
            logger.error(f"[{task.task_id}] Figurine reconciliation failed: {e}")
            raise ReconciliationError(task.task_id, persisted_model_url, cause=e) from e

    def _reconcile(self, task: ConversionTask, model_url: str) -> ReconcileResult:
        existing = self._figurines.find_by_task_id(task.task_id)
        if existing is None and task.kind == TaskKind.IMAGE_TO_3D:
            candidate = self._figurines.find_by_source_image(task.owner_id, task.source_ref)
            # Never steal a figurine that belongs to another conversion
            if candidate is not None and candidate.task_id in (None, task.task_id):
                existing = candidate

        if existing is not None:
            attached = True
            if existing.model_url != model_url or existing.task_id != task.task_id:
                attached = self._figurines.attach_model(existing.id, model_url, task.task_id)
            if attached:
                logger.info(f"[{task.task_id}] Linked model to existing figurine {existing.id}")
                return ReconcileResult(figurine_id=existing.id, created=False)
            logger.info(f"[{task.task_id}] Figurine {existing.id} was linked elsewhere meanwhile")

        figurine = Figurine(
            id=str(uuid.uuid4()),
            owner_id=task.owner_id,
            title=derive_title(task),
            prompt=task.prompt,
            style=task.config.art_style.value,
            source_image_url=task.source_ref if task.kind == TaskKind.IMAGE_TO_3D else None,
            model_url=model_url,
            task_id=task.task_id,
        )
        if self._figurines.create(figurine):
            return ReconcileResult(figurine_id=figurine.id, created=True)

        # Lost a race with another writer for the same task
        winner = self._figurines.find_by_task_id(task.task_id)
        if winner is None:
            raise ReconciliationError(task.task_id, model_url)
        return ReconcileResult(figurine_id=winner.id, created=False)
