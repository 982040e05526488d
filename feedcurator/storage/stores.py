"""Async store ports for the pipeline and their SQLite-backed implementations.

The pipeline only ever awaits these methods; blocking SQLite work is moved to
a worker thread so that concurrent locales keep making progress while one of
them waits on the database. Read errors surface as :class:`FetchFailure`,
write errors as :class:`PersistenceFailure`.
"""
from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime
from typing import Protocol

from feedcurator.models.errors import FetchFailure, PersistenceFailure
from feedcurator.models.types import ContentRecord, Locale, PublishedItem, Tier
from feedcurator.storage.database import Database

logger = logging.getLogger(__name__)


class ContentRecordStore(Protocol):
    async def create(self, record: ContentRecord) -> ContentRecord: ...

    async def update(self, record: ContentRecord) -> ContentRecord: ...

    async def get(self, record_id: str) -> ContentRecord | None: ...

    async def find_pending_deduplication(
        self, limit: int, locale: Locale | None = None
    ) -> list[ContentRecord]: ...

    async def find_recent_settled(
        self, locale: Locale, since: datetime, exclude_ids: list[str], limit: int
    ) -> list[ContentRecord]: ...

    async def add_source_references(self, record_id: str, new_ids: list[str]) -> list[str]: ...

    async def mark_duplicate(self, record_id: str, duplicate_of_id: str) -> None: ...

    async def find_pending_classification(self, limit: int) -> list[ContentRecord]: ...

    async def all_source_references(self, locale: Locale, limit: int) -> list[str]: ...

    async def find_unpublished(
        self, locale: Locale, tiers: list[Tier], limit: int
    ) -> list[ContentRecord]: ...


class PublishedItemStore(Protocol):
    async def create_many(self, items: list[PublishedItem]) -> None: ...

    async def count_by_locale(self, locale: Locale) -> int: ...

    async def find_recent_by_locale(self, locale: Locale, limit: int) -> list[PublishedItem]: ...

    async def find_without_quiz(self, locale: Locale, limit: int) -> list[PublishedItem]: ...

    async def update_many(self, items: list[PublishedItem]) -> None: ...


async def _read(what: str, func, *args):
    try:
        return await asyncio.to_thread(func, *args)
    except sqlite3.Error as exc:
        raise FetchFailure(f"Could not load {what}: {exc}") from exc


async def _write(what: str, func, *args):
    try:
        return await asyncio.to_thread(func, *args)
    except sqlite3.Error as exc:
        raise PersistenceFailure(f"Could not {what}: {exc}") from exc


class SqliteContentRecordStore:
    def __init__(self, database: Database) -> None:
        self._db = database

    async def create(self, record: ContentRecord) -> ContentRecord:
        await _write(f"create record {record.id}", self._db.insert_record, record)
        return record

    async def update(self, record: ContentRecord) -> ContentRecord:
        found = await _write(f"update record {record.id}", self._db.update_record, record)
        if not found:
            raise PersistenceFailure(f"Record {record.id} does not exist")
        return record

    async def get(self, record_id: str) -> ContentRecord | None:
        return await _read(f"record {record_id}", self._db.get_record, record_id)

    async def find_pending_deduplication(
        self, limit: int, locale: Locale | None = None
    ) -> list[ContentRecord]:
        return await _read(
            "records pending deduplication", self._db.find_pending_deduplication, limit, locale
        )

    async def find_recent_settled(
        self, locale: Locale, since: datetime, exclude_ids: list[str], limit: int
    ) -> list[ContentRecord]:
        return await _read(
            "recently settled records",
            self._db.find_recent_settled,
            locale,
            since,
            list(exclude_ids),
            limit,
        )

    async def add_source_references(self, record_id: str, new_ids: list[str]) -> list[str]:
        added = await _write(
            f"add source references to {record_id}",
            self._db.add_source_references,
            record_id,
            list(new_ids),
        )
        if added is None:
            raise PersistenceFailure(f"Record {record_id} does not exist")
        return added

    async def mark_duplicate(self, record_id: str, duplicate_of_id: str) -> None:
        changed = await _write(
            f"mark {record_id} as duplicate", self._db.mark_duplicate, record_id, duplicate_of_id
        )
        if not changed:
            raise PersistenceFailure(
                f"Record {record_id} is missing or its deduplication is already settled"
            )

    async def find_pending_classification(self, limit: int) -> list[ContentRecord]:
        return await _read(
            "records pending classification", self._db.find_pending_classification, limit
        )

    async def all_source_references(self, locale: Locale, limit: int) -> list[str]:
        return await _read(
            f"source references for {locale}", self._db.all_source_references, locale, limit
        )

    async def find_unpublished(
        self, locale: Locale, tiers: list[Tier], limit: int
    ) -> list[ContentRecord]:
        return await _read(
            f"unpublished records for {locale}",
            self._db.find_unpublished,
            locale,
            list(tiers),
            limit,
        )


class SqlitePublishedItemStore:
    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_many(self, items: list[PublishedItem]) -> None:
        if not items:
            return
        await _write(f"persist {len(items)} published items", self._db.insert_items, items)
        logger.debug("Persisted %d published items", len(items))

    async def count_by_locale(self, locale: Locale) -> int:
        return await _read(f"item count for {locale}", self._db.count_items, locale)

    async def find_recent_by_locale(self, locale: Locale, limit: int) -> list[PublishedItem]:
        return await _read(
            f"recent items for {locale}", self._db.find_recent_items, locale, limit
        )

    async def find_without_quiz(self, locale: Locale, limit: int) -> list[PublishedItem]:
        return await _read(
            f"items without quiz for {locale}", self._db.find_items_without_quiz, locale, limit
        )

    async def update_many(self, items: list[PublishedItem]) -> None:
        if not items:
            return
        updated = await _write(
            f"update {len(items)} published items", self._db.update_item_quizzes, items
        )
        if updated != len(items):
            raise PersistenceFailure(
                f"Only {updated} of {len(items)} published items exist and were updated"
            )
        logger.debug("Updated %d published items", len(items))
