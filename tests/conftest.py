from __future__ import annotations

import os
from unittest.mock import AsyncMock, MagicMock

import pytest

from feedcurator.models.types import DeduplicationVerdict, Locale
from feedcurator.storage.database import Database
from feedcurator.storage.stores import SqliteContentRecordStore, SqlitePublishedItemStore


@pytest.fixture
def us_locale() -> Locale:
    return Locale("US", "EN")


@pytest.fixture
def fr_locale() -> Locale:
    return Locale("FR", "FR")


@pytest.fixture
def temp_database(tmp_path):
    """A Database backed by a temporary SQLite file, cleaned up after the test."""
    db_file = str(tmp_path / "test_feedcurator.db")
    db = Database(db_path=db_file)
    yield db
    db.close()
    if os.path.exists(db_file):
        os.remove(db_file)


@pytest.fixture
def record_store(temp_database) -> SqliteContentRecordStore:
    return SqliteContentRecordStore(temp_database)


@pytest.fixture
def item_store(temp_database) -> SqlitePublishedItemStore:
    return SqlitePublishedItemStore(temp_database)


@pytest.fixture
def unique_oracle() -> MagicMock:
    """A deduplication oracle that never finds a duplicate."""
    oracle = MagicMock()
    oracle.run = AsyncMock(return_value=DeduplicationVerdict(duplicate_of_id=None))
    return oracle
