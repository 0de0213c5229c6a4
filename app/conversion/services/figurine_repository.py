"""
FigurineRepository: CRUD operations for figurine records.

A figurine is linked to at most one conversion task; the UNIQUE constraint
on figurines.task_id backs that up at the database level.
"""

from __future__ import annotations

from datetime import datetime, timezone

from loguru import logger

from forge_core.conversions.models import FIGURINE_COLUMNS, Figurine
from forge_core.infrastructure.postgres import get_db_connection

_SELECT_COLUMNS = ", ".join(FIGURINE_COLUMNS)


class FigurineRepository:
    """Repository for figurine records in PostgreSQL."""

    def _find_one(self, where: str, params: tuple) -> Figurine | None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT {_SELECT_COLUMNS} FROM figurines
                WHERE {where}
                ORDER BY created_at
                LIMIT 1
                """,
                params,
            )
            row = cursor.fetchone()

        if not row:
            return None
        return Figurine.from_db_row(row)

    def find_by_task_id(self, task_id: str) -> Figurine | None:
        """Get the figurine already linked to a task."""
        return self._find_one("task_id = %s", (task_id,))

    def find_by_source_image(self, owner_id: str, source_image_url: str) -> Figurine | None:
        """Get the owner's oldest figurine generated from this source image."""
        return self._find_one(
            "owner_id = %s AND source_image_url = %s", (owner_id, source_image_url)
        )

    def find_by_model_url(self, owner_id: str, model_url: str) -> Figurine | None:
        return self._find_one("owner_id = %s AND model_url = %s", (owner_id, model_url))

    def create(self, figurine: Figurine) -> bool:
        """
        Insert a figurine.

        Returns:
            bool: False if a figurine for the same task already exists.
        """
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                INSERT INTO figurines ({_SELECT_COLUMNS})
                VALUES ({", ".join(["%s"] * len(FIGURINE_COLUMNS))})
                ON CONFLICT (task_id) DO NOTHING
                """,
                (
                    figurine.id,
                    figurine.owner_id,
                    figurine.title,
                    figurine.prompt,
                    figurine.style,
                    figurine.source_image_url,
                    figurine.model_url,
                    figurine.task_id,
                    figurine.created_at,
                    figurine.updated_at,
                ),
            )
            created = cursor.rowcount == 1
            conn.commit()

        if created:
            logger.info(f"Created figurine {figurine.id} for task {figurine.task_id}")
        return created

    def attach_model(self, figurine_id: str, model_url: str, task_id: str) -> bool:
        """
        Set the model URL on an existing figurine.

        Title, prompt and style are never touched. Only a figurine that is
        unlinked or already linked to `task_id` is updated.

        Returns:
            bool: False if the figurine is gone or belongs to another task.
        """
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE figurines
                SET model_url = %s,
                    task_id = COALESCE(task_id, %s),
                    updated_at = %s
                WHERE id = %s
                  AND (task_id IS NULL OR task_id = %s)
                """,
                (model_url, task_id, datetime.now(timezone.utc), figurine_id, task_id),
            )
            attached = cursor.rowcount == 1
            conn.commit()

        if attached:
            logger.info(f"Attached model for task {task_id} to figurine {figurine_id}")
        else:
            logger.warning(f"Figurine {figurine_id} was claimed by another task, not attaching {task_id}")
        return attached
