"""
RecoveryService: links persisted models that never got a figurine.

A task ends up orphaned when its model was stored but linking failed or
the poll loop stopped before the link step.
"""

from __future__ import annotations

from loguru import logger
from pydantic import BaseModel, Field

from forge_core.conversions.models import ConversionTask
from forge_core.domain.exceptions import ReconciliationError

from app.conversion.protocols import FigurineStore, TaskStore
from app.conversion.services.reconciler import FigurineReconciler


class RecoveryResult(BaseModel):
    found: int = 0
    linked: int = 0
    failed: list[str] = Field(default_factory=list)
    figurine_ids: dict[str, str] = Field(default_factory=dict)


class RecoveryService:
    """
    Finds an owner's orphaned models and reconciles them.

    Usage:
        result = RecoveryService(ledger, figurines, reconciler).recover_orphans("user-1")
    """

    def __init__(self, ledger: TaskStore, figurines: FigurineStore, reconciler: FigurineReconciler):
        self.ledger = ledger
        self.figurines = figurines
        self.reconciler = reconciler

    def find_orphans(self, owner_id: str) -> list[ConversionTask]:
        """Succeeded, persisted tasks with no figurine pointing at them."""
        orphans = []
        for task in self.ledger.list_persisted(owner_id):
            if self.figurines.find_by_task_id(task.task_id) is not None:
                continue
            if self.figurines.find_by_model_url(owner_id, task.persisted_model_url) is not None:
                continue
            orphans.append(task)
        return orphans

    def recover_orphans(self, owner_id: str) -> RecoveryResult:
        orphans = self.find_orphans(owner_id)
        result = RecoveryResult(found=len(orphans))
        if not orphans:
            logger.info(f"No orphaned models for owner {owner_id}")
            return result

        logger.info(f"Found {len(orphans)} orphaned model(s) for owner {owner_id}")
        for task in orphans:
            try:
                reconciled = self.reconciler.reconcile(task, task.persisted_model_url)
            except ReconciliationError as e:
                logger.error(f"[{task.task_id}] Could not recover orphaned model: {e}")
                result.failed.append(task.task_id)
                continue
            result.linked += 1
            result.figurine_ids[task.task_id] = reconciled.figurine_id

        logger.info(f"Recovered {result.linked}/{result.found} orphaned model(s) for owner {owner_id}")
        return result
