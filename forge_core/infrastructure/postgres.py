"""
PostgreSQL connection helper for figurine-forge.

This module provides a simple connection function for PostgreSQL access.
Uses psycopg for the connection.
"""

from pathlib import Path

import psycopg
from loguru import logger

from forge_core.config import settings

SCHEMA_PATH = Path(__file__).with_name("schema.sql")


def get_db_connection():
    """
    Get a PostgreSQL database connection.

    Returns a context manager that can be used with 'with' statement.
    The connection is automatically closed when the context exits.

    Usage:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM conversion_tasks")

    Returns:
        psycopg.Connection: A PostgreSQL connection.
    """
    try:
        conn = psycopg.connect(settings.POSTGRES_DSN)
        logger.debug("Connected to PostgreSQL")
        return conn
    except Exception as e:
        logger.error(f"Failed to connect to PostgreSQL: {e}")
        raise


def ensure_schema() -> None:
    """Create the conversion_tasks and figurines tables if missing."""
    ddl = SCHEMA_PATH.read_text()
    with get_db_connection() as conn:
        conn.execute(ddl)
        conn.commit()
    logger.info("Database schema is up to date")
