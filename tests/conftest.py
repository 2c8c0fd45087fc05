"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from plantops.db.connection import Database


@pytest.fixture(autouse=True)
def _no_global_config(tmp_path, monkeypatch):
    """Keep the developer's ~/.plantops/config.yaml out of every test."""
    monkeypatch.setattr("plantops.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml")


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with migrations applied, closed after test."""
    db = Database(tmp_path / ".plantops.db")
    conn = db.connect()
    yield conn
    conn.close()
