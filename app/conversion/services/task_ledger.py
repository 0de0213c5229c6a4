"""
TaskLedgerService: durable record of conversion tasks.

This service handles:
- Creating the pending task row after a vendor accepts a job
- Applying poll ticks without ever moving a task backwards
- Recording artifact download progress once a task has succeeded

Every write is a single-row statement. The forward-only rules live in the
WHERE clauses, so a late or duplicate writer updates zero rows instead of
corrupting a terminal task.
"""

import json
from datetime import datetime, timezone

from loguru import logger

from forge_core.conversions.models import (
    TASK_COLUMNS,
    ConversionTask,
    DownloadStatus,
    TaskStatus,
)
from forge_core.infrastructure.postgres import get_db_connection

_SELECT_COLUMNS = ", ".join(TASK_COLUMNS)
_TERMINAL = "('succeeded', 'failed', 'timed_out')"


class TaskLedgerService:
    """
    Service for tracking conversion tasks in PostgreSQL.

    Usage:
        ledger = TaskLedgerService()
        ledger.create_task(task)
        ledger.record_tick(task_id, TaskStatus.PROCESSING, progress_percent=45, attempts=3)
        ledger.record_download(task_id, DownloadStatus.COMPLETED, 100, persisted_model_url=url)
    """

    def create_task(self, task: ConversionTask) -> bool:
        """
        Insert a new task row.

        Args:
            task: The task to store, normally in `pending` status.

        Returns:
            bool: False if a row with this task id already existed.
        """
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                INSERT INTO conversion_tasks ({_SELECT_COLUMNS})
                VALUES ({", ".join(["%s"] * len(TASK_COLUMNS))})
                ON CONFLICT (task_id) DO NOTHING
                """,
                (
                    task.task_id,
                    task.owner_id,
                    task.kind.value,
                    task.status.value,
                    task.progress_percent,
                    task.source_ref,
                    json.dumps(task.config.model_dump(mode="json")),
                    task.model_artifact_url,
                    task.thumbnail_artifact_url,
                    task.download_status.value,
                    task.persisted_model_url,
                    task.persisted_thumbnail_url,
                    task.attempts,
                    task.error,
                    task.created_at,
                    task.updated_at,
                ),
            )
            created = cursor.rowcount == 1
            conn.commit()

        if created:
            logger.info(f"Created conversion task {task.task_id} ({task.kind.value})")
        else:
            logger.warning(f"Conversion task {task.task_id} already exists, keeping stored row")
        return created

    def get_task(self, task_id: str) -> ConversionTask | None:
        """Get a task by id."""
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {_SELECT_COLUMNS} FROM conversion_tasks WHERE task_id = %s",
                (task_id,),
            )
            row = cursor.fetchone()

        if not row:
            return None
        return ConversionTask.from_db_row(row)

    def record_tick(
        self,
        task_id: str,
        status: TaskStatus,
        progress_percent: int,
        attempts: int,
        model_artifact_url: str | None = None,
        thumbnail_artifact_url: str | None = None,
        error: str | None = None,
        download_status: DownloadStatus | None = None,
    ) -> bool:
        """
        Apply the result of one poll tick.

        Progress and attempts only ever grow. A task already in a terminal
        status is left untouched, and `pending` is never written over
        `processing`.

        Returns:
            bool: True if the row was updated.
        """
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                UPDATE conversion_tasks
                SET status = %s,
                    progress_percent = GREATEST(progress_percent, %s),
                    attempts = GREATEST(attempts, %s),
                    model_artifact_url = COALESCE(%s, model_artifact_url),
                    thumbnail_artifact_url = COALESCE(%s, thumbnail_artifact_url),
                    error = COALESCE(%s, error),
                    download_status = COALESCE(%s, download_status),
                    updated_at = %s
                WHERE task_id = %s
                  AND status NOT IN {_TERMINAL}
                  AND (%s <> 'pending' OR status = 'pending')
                """,
                (
                    status.value,
                    progress_percent,
                    attempts,
                    model_artifact_url,
                    thumbnail_artifact_url,
                    error,
                    download_status.value if download_status else None,
                    datetime.now(timezone.utc),
                    task_id,
                    status.value,
                ),
            )
            updated = cursor.rowcount == 1
            conn.commit()

        if updated:
            logger.debug(
                f"Task {task_id}: status={status.value}, progress={progress_percent}, attempts={attempts}"
            )
        else:
            logger.warning(f"Task {task_id}: ignored {status.value} tick, task is missing or terminal")
        return updated

    def record_download(
        self,
        task_id: str,
        download_status: DownloadStatus,
        progress_percent: int,
        persisted_model_url: str | None = None,
        persisted_thumbnail_url: str | None = None,
    ) -> bool:
        """
        Record artifact download progress for a succeeded task.

        Once the download is completed or failed, only a repeat of the same
        value is accepted, so re-persisting a task converges.

        Returns:
            bool: True if the row was updated.
        """
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE conversion_tasks
                SET download_status = %s,
                    progress_percent = GREATEST(progress_percent, %s),
                    persisted_model_url = COALESCE(%s, persisted_model_url),
                    persisted_thumbnail_url = COALESCE(%s, persisted_thumbnail_url),
                    updated_at = %s
                WHERE task_id = %s
                  AND status = 'succeeded'
                  AND (download_status NOT IN ('completed', 'failed') OR download_status = %s)
                """,
                (
                    download_status.value,
                    progress_percent,
                    persisted_model_url,
                    persisted_thumbnail_url,
                    datetime.now(timezone.utc),
                    task_id,
                    download_status.value,
                ),
            )
            updated = cursor.rowcount == 1
            conn.commit()

        if updated:
            logger.info(f"Task {task_id}: download {download_status.value}")
        else:
            logger.warning(
                f"Task {task_id}: ignored download {download_status.value}, task not succeeded "
                "or download already final"
            )
        return updated

    def list_unfinished(self, owner_id: str | None = None) -> list[ConversionTask]:
        """Tasks still pending or processing, oldest first."""
        query = f"SELECT {_SELECT_COLUMNS} FROM conversion_tasks WHERE status IN ('pending', 'processing')"
        params: tuple = ()
        if owner_id:
            query += " AND owner_id = %s"
            params = (owner_id,)
        query += " ORDER BY created_at"

        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            rows = cursor.fetchall()

        return [ConversionTask.from_db_row(row) for row in rows]

    def list_persisted(self, owner_id: str) -> list[ConversionTask]:
        """Succeeded tasks whose model was copied into our storage."""
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {_SELECT_COLUMNS} FROM conversion_tasks
                WHERE owner_id = %s
                  AND status = 'succeeded'
                  AND persisted_model_url IS NOT NULL
                ORDER BY created_at DESC
                """,
                (owner_id,),
            )
            rows = cursor.fetchall()

        return [ConversionTask.from_db_row(row) for row in rows]
