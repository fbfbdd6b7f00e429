"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from docket.db.connection import Database


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path, migrated on connect, closed after test."""
    conn = Database(tmp_path / ".docket.db").connect()
    yield conn
    conn.close()
