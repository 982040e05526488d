"""Semantic deduplication of content records.

Two policies share one decision procedure:

* ``MERGE`` runs while a fresh batch is ingested. A candidate cluster that the
  oracle matches to a known record is folded into it (its article ids are added
  to that record's source references) and no new record is created. Anything
  else becomes a new pending record that later candidates of the same run are
  compared against.
* ``RECONCILE`` runs over records that are already persisted and still pending.
  A match links the record to the canonical one through ``duplicate_of`` and
  keeps its content; either way the record's deduplication is settled, even when
  the oracle fails, so that no record is retried forever.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable

from feedcurator.models.types import (
    ContentRecord,
    DeduplicationState,
    IngestionDigest,
    Locale,
    RawCluster,
    utcnow,
)
from feedcurator.oracles.base import (
    DeduplicationCandidate,
    DeduplicationOracle,
    IngestionOracle,
)
from feedcurator.storage.stores import ContentRecordStore

logger = logging.getLogger(__name__)


class DeduplicationMode(str, Enum):
    MERGE = "merge"
    RECONCILE = "reconcile"


@dataclass
class Resolution:
    """Outcome of resolving one candidate."""

    merged: bool = False
    duplicate_of: str | None = None
    record: ContentRecord | None = None
    oracle_failed: bool = False


@dataclass
class ReconciliationSummary:
    processed: int = 0
    duplicates: int = 0
    failures: int = 0


class ComparisonCorpus:
    """Records a candidate is compared against during one ingest invocation.

    Holds the recently settled records loaded when the invocation starts plus
    every record created by it, in creation order.
    """

    def __init__(self, locale: Locale, settled: list[ContentRecord] | None = None) -> None:
        self.locale = locale
        self._settled = list(settled or [])
        self._created: list[ContentRecord] = []

    def add(self, record: ContentRecord) -> None:
        self._created.append(record)

    def find(self, record_id: str) -> ContentRecord | None:
        for record in self.entries():
            if record.id == record_id:
                return record
        return None

    def entries(self) -> list[ContentRecord]:
        return [*self._settled, *self._created]

    @property
    def created(self) -> list[ContentRecord]:
        return list(self._created)

    def __len__(self) -> int:
        return len(self._settled) + len(self._created)


class DeduplicationEngine:
    def __init__(
        self,
        records: ContentRecordStore,
        oracle: DeduplicationOracle,
        ingestion_oracle: IngestionOracle | None = None,
        window_days: int = 7,
        corpus_limit: int = 1000,
        batch_size: int = 50,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self._records = records
        self._oracle = oracle
        self._ingestion_oracle = ingestion_oracle
        self._window = timedelta(days=window_days)
        self._corpus_limit = corpus_limit
        self._batch_size = batch_size
        self._clock = clock
        self._new_id = id_factory

    async def resolve(
        self,
        mode: DeduplicationMode,
        candidate: DeduplicationCandidate,
        corpus: ComparisonCorpus | list[ContentRecord],
    ) -> Resolution:
        """Decide whether *candidate* duplicates something in *corpus* and act on it."""
        mode = DeduplicationMode(mode)
        if mode is DeduplicationMode.MERGE:
            if not isinstance(candidate, RawCluster) or not isinstance(corpus, ComparisonCorpus):
                raise TypeError("Merge mode resolves a RawCluster against a ComparisonCorpus")
            return await self._merge(candidate, corpus)
        if not isinstance(candidate, ContentRecord):
            raise TypeError("Reconciliation mode resolves a persisted ContentRecord")
        entries = corpus.entries() if isinstance(corpus, ComparisonCorpus) else list(corpus)
        return await self._reconcile_one(candidate, entries)

    async def load_settled(
        self, locale: Locale, exclude_ids: list[str] | None = None
    ) -> list[ContentRecord]:
        since = self._clock() - self._window
        return await self._records.find_recent_settled(
            locale, since, list(exclude_ids or []), self._corpus_limit
        )

    async def load_corpus(self, locale: Locale) -> ComparisonCorpus:
        return ComparisonCorpus(locale, await self.load_settled(locale))

    async def create_record(self, cluster: RawCluster, locale: Locale) -> ContentRecord:
        """Persist *cluster* as a new record pending deduplication and classification."""
        digest = await self._digest(cluster)
        now = self._clock()
        record = ContentRecord(
            id=self._new_id(),
            locale=locale,
            narrative=digest.narrative,
            background=digest.background,
            angles=list(digest.angles),
            category=digest.category,
            source_references=cluster.article_ids,
            dateline=cluster.published_at,
            created_at=now,
            updated_at=now,
        )
        await self._records.create(record)
        logger.info(
            "Created record %s for %s from %d articles",
            record.id,
            locale,
            len(record.source_references),
        )
        return record

    async def reconcile(
        self, locale: Locale | None = None, limit: int | None = None
    ) -> ReconciliationSummary:
        """Settle a batch of persisted records still pending deduplication.

        Failing to list the pending records aborts the pass. Oracle failures are
        counted per record and never stop the pass.
        """
        scope = str(locale) if locale else "all"
        pending = await self._records.find_pending_deduplication(
            limit or self._batch_size, locale
        )
        summary = ReconciliationSummary()
        if not pending:
            logger.info("No records pending deduplication (%s)", scope)
            return summary

        logger.info("Reconciling %d pending records (%s)", len(pending), scope)
        for record in pending:
            corpus = await self.load_settled(record.locale, exclude_ids=[record.id])
            resolution = await self.resolve(DeduplicationMode.RECONCILE, record, corpus)
            summary.processed += 1
            if resolution.duplicate_of:
                summary.duplicates += 1
            if resolution.oracle_failed:
                summary.failures += 1

        logger.info(
            "Reconciliation finished (%s): %d processed, %d duplicates, %d failures",
            scope,
            summary.processed,
            summary.duplicates,
            summary.failures,
        )
        return summary

    async def _merge(self, cluster: RawCluster, corpus: ComparisonCorpus) -> Resolution:
        duplicate_of, failed = await self._consult(corpus.entries(), cluster)
        target = corpus.find(duplicate_of) if duplicate_of else None
        if duplicate_of and target is None:
            logger.warning("Oracle named unknown record %s; treating cluster as new", duplicate_of)

        if target is not None:
            added = await self._records.add_source_references(target.id, cluster.article_ids)
            target.add_source_references(cluster.article_ids)
            logger.info(
                "Merged cluster into record %s (%d new source references)",
                target.id,
                len(added),
            )
            return Resolution(merged=True, duplicate_of=target.id)

        record = await self.create_record(cluster, corpus.locale)
        corpus.add(record)
        return Resolution(record=record, oracle_failed=failed)

    async def _reconcile_one(
        self, record: ContentRecord, corpus: list[ContentRecord]
    ) -> Resolution:
        if record.is_duplicate or record.deduplication_state is DeduplicationState.COMPLETE:
            return Resolution(duplicate_of=record.duplicate_of, record=record)

        others = [entry for entry in corpus if entry.id != record.id]
        duplicate_of, failed = await self._consult(others, record)
        if duplicate_of and not any(entry.id == duplicate_of for entry in others):
            logger.warning(
                "Oracle named unknown record %s for %s; marking unique", duplicate_of, record.id
            )
            duplicate_of = None

        if duplicate_of:
            await self._records.mark_duplicate(record.id, duplicate_of)
            record.complete_deduplication(duplicate_of)
            logger.info("Record %s marked as duplicate of %s", record.id, duplicate_of)
            return Resolution(duplicate_of=duplicate_of, record=record)

        record.complete_deduplication()
        await self._records.update(record)
        logger.debug("Record %s marked as unique", record.id)
        return Resolution(record=record, oracle_failed=failed)

    async def _consult(
        self, corpus: list[ContentRecord], candidate: DeduplicationCandidate
    ) -> tuple[str | None, bool]:
        """Ask the oracle; returns ``(duplicate id or None, whether it failed)``."""
        if not corpus:
            return None, False
        try:
            verdict = await self._oracle.run(corpus, candidate)
        except Exception as exc:
            logger.warning("Deduplication oracle failed: %s", exc)
            return None, True
        if verdict is None:
            logger.warning("Deduplication oracle returned no result")
            return None, True
        return verdict.duplicate_of_id or None, False

    async def _digest(self, cluster: RawCluster) -> IngestionDigest:
        if self._ingestion_oracle is not None:
            try:
                digest = await self._ingestion_oracle.run(cluster)
            except Exception as exc:
                logger.warning("Ingestion oracle failed, using article text: %s", exc)
                digest = None
            if digest is not None and digest.narrative.strip():
                return digest
            if digest is not None:
                logger.warning("Ingestion oracle returned an empty narrative, using article text")
        return digest_from_articles(cluster)


def digest_from_articles(cluster: RawCluster) -> IngestionDigest:
    """Plain-text digest: first headline as narrative, the other headlines as background."""
    headlines = [a.headline.strip() for a in cluster.articles if a.headline and a.headline.strip()]
    if headlines:
        narrative = headlines[0]
    else:
        bodies = [a.body.strip() for a in cluster.articles if a.body and a.body.strip()]
        narrative = bodies[0][:500] if bodies else f"Untitled cluster of {len(cluster)} articles"
    background = "\n".join(headlines[1:])
    return IngestionDigest(narrative=narrative, background=background)
