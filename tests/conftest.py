"""
Shared pytest fixtures and configuration for ratchet tests.

This module provides:
- Open SQLite stores, fresh and with v1 tracking tables
- A throwaway PKI on disk for the TLS and MySQL tests
- Sample migration files

Usage:
    Fixtures are auto-discovered by pytest. Use them as function arguments:

    def test_something(ready_store, sample_files):
        ...
"""

import sys
from pathlib import Path
from typing import Generator

import pytest

# Ensure ratchet and the test support package are importable
ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT / "src"))
sys.path.insert(0, str(ROOT))

from ratchet.core.migrations import MigrationFile
from ratchet.core.stores import SCHEMA_VERSION, SQLiteStore
from tests._support import PKI


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark every test without an explicit marker as a unit test."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def sqlite_store() -> Generator[SQLiteStore, None, None]:
    """Open in-memory SQLite store with no tracking tables."""
    store = SQLiteStore(path=":memory:")
    store.open()
    yield store
    store.close()


@pytest.fixture
def ready_store(sqlite_store: SQLiteStore) -> SQLiteStore:
    """SQLite store with v1 tracking tables in place."""
    sqlite_store.ensure_version_table(SCHEMA_VERSION)
    sqlite_store.ensure_migrations_table()
    sqlite_store.ensure_checkpoints_table()
    return sqlite_store


# =============================================================================
# TLS Fixtures
# =============================================================================


@pytest.fixture
def pki(tmp_path: Path) -> PKI:
    """Root CA, intermediate, server leaf and client key pair on disk."""
    return PKI.build(tmp_path)


# =============================================================================
# Sample Migrations
# =============================================================================


@pytest.fixture
def sample_files() -> list[MigrationFile]:
    """Three migrations supplied out of order."""
    return [
        MigrationFile(
            "10_add_index.sql",
            "CREATE INDEX idx_users_email ON users (email);",
        ),
        MigrationFile(
            "1_create_users.sql",
            "CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT);\n"
            "INSERT INTO users (email) VALUES ('root@example.com');",
        ),
        MigrationFile(
            "2_create_posts.sql",
            "-- posts belong to users\n"
            "CREATE TABLE posts (id INTEGER PRIMARY KEY, user_id INTEGER, body TEXT);",
        ),
    ]
