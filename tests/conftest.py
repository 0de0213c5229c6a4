"""
Shared pytest fixtures.

Database and object storage access is mocked at the connection level, so
service tests exercise their real SQL and storage calls without a server.
"""

from unittest.mock import MagicMock, patch

import pytest


@pytest.fixture
def mock_postgres():
    """Patch psycopg.connect used by get_db_connection.

    Yields a dict with the mocked "connect", "conn" and "cursor". The cursor
    reports one affected row by default.
    """
    with patch("forge_core.infrastructure.postgres.psycopg.connect") as mock_connect:
        mock_conn = MagicMock()
        mock_cursor = MagicMock()

        mock_conn.__enter__.return_value = mock_conn
        mock_conn.__exit__.return_value = False
        mock_conn.cursor.return_value = mock_cursor
        mock_cursor.rowcount = 1
        mock_cursor.fetchone.return_value = None
        mock_cursor.fetchall.return_value = []
        mock_connect.return_value = mock_conn

        yield {"connect": mock_connect, "conn": mock_conn, "cursor": mock_cursor}


@pytest.fixture
def mock_minio_connector():
    """Provides a mock MinIO client via the connector."""
    with patch("app.conversion.services.storage.get_minio_client") as mock_get:
        mock_client = MagicMock()
        mock_get.return_value = mock_client

        # Default behaviors
        mock_client.bucket_exists.return_value = True
        mock_client.put_object.return_value = None

        yield mock_client
