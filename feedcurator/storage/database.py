from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime

from feedcurator.models.errors import ValidationError
from feedcurator.models.types import (
    Angle,
    Authenticity,
    AuthenticityStatus,
    Category,
    ClassificationState,
    ContentRecord,
    DeduplicationState,
    Frame,
    Locale,
    PublishedItem,
    QuizQuestion,
    Tier,
    utcnow,
)

logger = logging.getLogger(__name__)

_RECORD_COLUMNS = (
    "id, country, language, narrative, background, category, angles_json, dateline, "
    "dedup_state, duplicate_of, tier, classification_state, created_at, updated_at"
)

_ITEM_COLUMNS = (
    "id, country, language, published_at, headline, body, category, "
    "authenticity, clarification, frames_json, quiz_json"
)


def _ts(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value)


class Database:
    def __init__(self, db_path: str = "feedcurator.db") -> None:
        self._db_path = db_path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._create_tables()

    def _create_tables(self) -> None:
        with self._lock:
            cursor = self._conn.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS content_records (
                    id TEXT PRIMARY KEY,
                    country TEXT NOT NULL,
                    language TEXT NOT NULL,
                    narrative TEXT NOT NULL,
                    background TEXT,
                    category TEXT,
                    angles_json TEXT,
                    dateline TEXT,
                    dedup_state TEXT NOT NULL,
                    duplicate_of TEXT,
                    tier TEXT,
                    classification_state TEXT NOT NULL,
                    created_at TEXT,
                    updated_at TEXT
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS record_sources (
                    record_id TEXT NOT NULL REFERENCES content_records(id),
                    source_id TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    PRIMARY KEY (record_id, source_id)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS published_items (
                    id TEXT PRIMARY KEY,
                    country TEXT NOT NULL,
                    language TEXT NOT NULL,
                    published_at TEXT NOT NULL,
                    headline TEXT,
                    body TEXT,
                    category TEXT,
                    authenticity TEXT NOT NULL,
                    clarification TEXT,
                    frames_json TEXT,
                    quiz_json TEXT,
                    created_at TEXT
                )
                """
            )
            item_columns = {
                row["name"] for row in cursor.execute("PRAGMA table_info(published_items)")
            }
            if "quiz_json" not in item_columns:
                cursor.execute("ALTER TABLE published_items ADD COLUMN quiz_json TEXT")
                logger.info("Added quiz_json column to published_items")
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS published_item_records (
                    item_id TEXT NOT NULL REFERENCES published_items(id),
                    record_id TEXT NOT NULL REFERENCES content_records(id),
                    PRIMARY KEY (item_id, record_id)
                )
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_records_locale "
                "ON content_records (country, language, created_at)"
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_items_locale "
                "ON published_items (country, language, published_at)"
            )
            self._conn.commit()

    # -- content records -------------------------------------------------

    def insert_record(self, record: ContentRecord) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                f"INSERT INTO content_records ({_RECORD_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.locale.country,
                    record.locale.language,
                    record.narrative,
                    record.background,
                    record.category.value,
                    json.dumps([angle.narrative for angle in record.angles]),
                    _ts(record.dateline),
                    record.deduplication_state.value,
                    record.duplicate_of,
                    record.tier.value if record.tier else None,
                    record.classification_state.value,
                    _ts(record.created_at),
                    _ts(record.updated_at),
                ),
            )
            self._conn.executemany(
                "INSERT INTO record_sources (record_id, source_id, position) VALUES (?, ?, ?)",
                [
                    (record.id, source_id, position)
                    for position, source_id in enumerate(record.source_references)
                ],
            )

    def update_record(self, record: ContentRecord) -> bool:
        """Write back the mutable state of *record*.

        State columns only move forward: a write that would turn a COMPLETE
        state back into PENDING, or reassign a duplicate link, is rejected.
        """
        with self._lock, self._conn:
            row = self._conn.execute(
                "SELECT dedup_state, duplicate_of, classification_state "
                "FROM content_records WHERE id = ?",
                (record.id,),
            ).fetchone()
            if row is None:
                return False
            if (
                row["dedup_state"] == DeduplicationState.COMPLETE.value
                and record.deduplication_state is DeduplicationState.PENDING
            ):
                raise ValidationError(f"Deduplication state of {record.id} cannot move backward")
            if row["duplicate_of"] is not None and row["duplicate_of"] != record.duplicate_of:
                raise ValidationError(f"Duplicate link of {record.id} cannot be changed")
            if (
                row["classification_state"] == ClassificationState.COMPLETE.value
                and record.classification_state is ClassificationState.PENDING
            ):
                raise ValidationError(f"Classification state of {record.id} cannot move backward")
            self._conn.execute(
                "UPDATE content_records SET narrative = ?, background = ?, category = ?, "
                "angles_json = ?, dedup_state = ?, duplicate_of = ?, tier = ?, "
                "classification_state = ?, updated_at = ? WHERE id = ?",
                (
                    record.narrative,
                    record.background,
                    record.category.value,
                    json.dumps([angle.narrative for angle in record.angles]),
                    record.deduplication_state.value,
                    record.duplicate_of,
                    record.tier.value if record.tier else None,
                    record.classification_state.value,
                    _ts(record.updated_at),
                    record.id,
                ),
            )
            return True

    def get_record(self, record_id: str) -> ContentRecord | None:
        records = self._select_records("WHERE id = ?", (record_id,))
        return records[0] if records else None

    def add_source_references(self, record_id: str, source_ids: list[str]) -> list[str] | None:
        """Append unseen *source_ids* to a record; ``None`` when the record is unknown."""
        with self._lock, self._conn:
            exists = self._conn.execute(
                "SELECT 1 FROM content_records WHERE id = ?", (record_id,)
            ).fetchone()
            if exists is None:
                return None
            rows = self._conn.execute(
                "SELECT source_id, position FROM record_sources WHERE record_id = ?",
                (record_id,),
            ).fetchall()
            known = {row["source_id"] for row in rows}
            next_position = max((row["position"] for row in rows), default=-1) + 1
            added: list[str] = []
            for source_id in source_ids:
                if source_id in known:
                    continue
                known.add(source_id)
                added.append(source_id)
            self._conn.executemany(
                "INSERT INTO record_sources (record_id, source_id, position) VALUES (?, ?, ?)",
                [
                    (record_id, source_id, next_position + offset)
                    for offset, source_id in enumerate(added)
                ],
            )
            if added:
                self._conn.execute(
                    "UPDATE content_records SET updated_at = ? WHERE id = ?",
                    (_ts(utcnow()), record_id),
                )
            return added

    def mark_duplicate(self, record_id: str, duplicate_of_id: str) -> bool:
        if record_id == duplicate_of_id:
            raise ValidationError("A content record cannot duplicate itself")
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "UPDATE content_records SET dedup_state = ?, duplicate_of = ?, updated_at = ? "
                "WHERE id = ? AND dedup_state = ? AND duplicate_of IS NULL",
                (
                    DeduplicationState.COMPLETE.value,
                    duplicate_of_id,
                    _ts(utcnow()),
                    record_id,
                    DeduplicationState.PENDING.value,
                ),
            )
            return cursor.rowcount > 0

    def find_pending_deduplication(
        self, limit: int, locale: Locale | None = None
    ) -> list[ContentRecord]:
        clause = "WHERE dedup_state = ? AND duplicate_of IS NULL"
        params: list = [DeduplicationState.PENDING.value]
        if locale is not None:
            clause += " AND country = ? AND language = ?"
            params.extend([locale.country, locale.language])
        clause += " ORDER BY created_at, id LIMIT ?"
        params.append(limit)
        return self._select_records(clause, tuple(params))

    def find_recent_settled(
        self,
        locale: Locale,
        since: datetime,
        exclude_ids: list[str],
        limit: int,
    ) -> list[ContentRecord]:
        clause = (
            "WHERE country = ? AND language = ? AND dedup_state = ? "
            "AND duplicate_of IS NULL AND created_at >= ?"
        )
        params: list = [
            locale.country,
            locale.language,
            DeduplicationState.COMPLETE.value,
            _ts(since),
        ]
        if exclude_ids:
            clause += f" AND id NOT IN ({', '.join('?' for _ in exclude_ids)})"
            params.extend(exclude_ids)
        clause += " ORDER BY created_at DESC, id LIMIT ?"
        params.append(limit)
        return self._select_records(clause, tuple(params))

    def find_pending_classification(self, limit: int) -> list[ContentRecord]:
        return self._select_records(
            "WHERE classification_state = ? AND dedup_state = ? AND duplicate_of IS NULL "
            "ORDER BY created_at, id LIMIT ?",
            (ClassificationState.PENDING.value, DeduplicationState.COMPLETE.value, limit),
        )

    def find_unpublished(
        self, locale: Locale, tiers: list[Tier], limit: int
    ) -> list[ContentRecord]:
        placeholders = ", ".join("?" for _ in tiers)
        return self._select_records(
            f"WHERE country = ? AND language = ? AND tier IN ({placeholders}) "
            "AND duplicate_of IS NULL "
            "AND id NOT IN (SELECT record_id FROM published_item_records) "
            "ORDER BY created_at, id LIMIT ?",
            (locale.country, locale.language, *[tier.value for tier in tiers], limit),
        )

    def all_source_references(self, locale: Locale, limit: int) -> list[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT s.source_id FROM record_sources s "
                "JOIN content_records r ON r.id = s.record_id "
                "WHERE r.country = ? AND r.language = ? "
                "ORDER BY r.created_at DESC, s.position LIMIT ?",
                (locale.country, locale.language, limit),
            ).fetchall()
        return [row["source_id"] for row in rows]

    def _select_records(self, clause: str, params: tuple) -> list[ContentRecord]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM content_records {clause}", params
            ).fetchall()
            if not rows:
                return []
            ids = [row["id"] for row in rows]
            source_rows = self._conn.execute(
                "SELECT record_id, source_id FROM record_sources "
                f"WHERE record_id IN ({', '.join('?' for _ in ids)}) "
                "ORDER BY record_id, position",
                ids,
            ).fetchall()
        sources: dict[str, list[str]] = {}
        for source_row in source_rows:
            sources.setdefault(source_row["record_id"], []).append(source_row["source_id"])
        return [_row_to_record(row, sources.get(row["id"], [])) for row in rows]

    # -- published items -------------------------------------------------

    def insert_items(self, items: list[PublishedItem]) -> None:
        created_at = _ts(utcnow())
        with self._lock, self._conn:
            self._conn.executemany(
                f"INSERT INTO published_items ({_ITEM_COLUMNS}, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        item.id,
                        item.locale.country,
                        item.locale.language,
                        _ts(item.published_at),
                        item.headline,
                        item.body,
                        item.category.value,
                        item.authenticity.status.value,
                        item.authenticity.clarification,
                        json.dumps(
                            [{"headline": f.headline, "body": f.body} for f in item.frames]
                        ),
                        _quiz_json(item.quiz),
                        created_at,
                    )
                    for item in items
                ],
            )
            self._conn.executemany(
                "INSERT INTO published_item_records (item_id, record_id) VALUES (?, ?)",
                [(item.id, record_id) for item in items for record_id in item.record_ids],
            )

    def update_item_quizzes(self, items: list[PublishedItem]) -> int:
        """Write the quiz of each item; returns how many items exist and were updated."""
        with self._lock, self._conn:
            updated = 0
            for item in items:
                cursor = self._conn.execute(
                    "UPDATE published_items SET quiz_json = ? WHERE id = ?",
                    (_quiz_json(item.quiz), item.id),
                )
                updated += cursor.rowcount
            return updated

    def find_items_without_quiz(self, locale: Locale, limit: int) -> list[PublishedItem]:
        """Newest authentic items of *locale* that have no quiz yet."""
        return self._select_items(
            "WHERE country = ? AND language = ? AND authenticity = ? "
            "AND (quiz_json IS NULL OR quiz_json = '[]') "
            "ORDER BY published_at DESC, id LIMIT ?",
            (locale.country, locale.language, AuthenticityStatus.AUTHENTIC.value, limit),
        )

    def count_items(self, locale: Locale) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) AS total FROM published_items WHERE country = ? AND language = ?",
                (locale.country, locale.language),
            ).fetchone()
        return int(row["total"])

    def find_recent_items(self, locale: Locale, limit: int) -> list[PublishedItem]:
        return self._select_items(
            "WHERE country = ? AND language = ? ORDER BY published_at DESC, id LIMIT ?",
            (locale.country, locale.language, limit),
        )

    def get_item(self, item_id: str) -> PublishedItem | None:
        items = self._select_items("WHERE id = ?", (item_id,))
        return items[0] if items else None

    def _select_items(self, clause: str, params: tuple) -> list[PublishedItem]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_ITEM_COLUMNS} FROM published_items {clause}", params
            ).fetchall()
            if not rows:
                return []
            ids = [row["id"] for row in rows]
            link_rows = self._conn.execute(
                "SELECT item_id, record_id FROM published_item_records "
                f"WHERE item_id IN ({', '.join('?' for _ in ids)})",
                ids,
            ).fetchall()
        links: dict[str, list[str]] = {}
        for link in link_rows:
            links.setdefault(link["item_id"], []).append(link["record_id"])
        return [_row_to_item(row, links.get(row["id"], [])) for row in rows]

    def close(self) -> None:
        with self._lock:
            try:
                self._conn.commit()
                self._conn.close()
                logger.info("Database connection closed")
            except sqlite3.Error as exc:
                logger.error("Error closing database: %s", exc)


def _row_to_record(row: sqlite3.Row, source_references: list[str]) -> ContentRecord:
    return ContentRecord(
        id=row["id"],
        locale=Locale(row["country"], row["language"]),
        narrative=row["narrative"],
        background=row["background"] or "",
        category=Category.parse(row["category"]),
        angles=[Angle(narrative=text) for text in json.loads(row["angles_json"] or "[]")],
        dateline=_parse_ts(row["dateline"]),
        source_references=source_references,
        deduplication_state=DeduplicationState(row["dedup_state"]),
        duplicate_of=row["duplicate_of"],
        tier=Tier(row["tier"]) if row["tier"] else None,
        classification_state=ClassificationState(row["classification_state"]),
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
    )


def _row_to_item(row: sqlite3.Row, record_ids: list[str]) -> PublishedItem:
    return PublishedItem(
        id=row["id"],
        locale=Locale(row["country"], row["language"]),
        published_at=_parse_ts(row["published_at"]),
        headline=row["headline"],
        body=row["body"] or "",
        category=Category.parse(row["category"]),
        authenticity=Authenticity(
            AuthenticityStatus(row["authenticity"]), row["clarification"]
        ),
        frames=[Frame(**frame) for frame in json.loads(row["frames_json"] or "[]")],
        record_ids=record_ids,
        quiz=[QuizQuestion(**question) for question in json.loads(row["quiz_json"] or "[]")],
    )


def _quiz_json(quiz: list[QuizQuestion]) -> str:
    return json.dumps(
        [
            {
                "question": question.question,
                "answers": list(question.answers),
                "correct_index": question.correct_index,
            }
            for question in quiz
        ]
    )
