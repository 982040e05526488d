from __future__ import annotations

import logging
from dataclasses import dataclass

from feedcurator.models.types import Locale
from feedcurator.oracles.base import NewsSource
from feedcurator.pipeline.deduplication import (
    ComparisonCorpus,
    DeduplicationEngine,
    DeduplicationMode,
)
from feedcurator.pipeline.filtering import filter_clusters
from feedcurator.storage.stores import ContentRecordStore

logger = logging.getLogger(__name__)


@dataclass
class IngestionSummary:
    fetched: int = 0
    kept: int = 0
    created: int = 0
    merged: int = 0
    settled: int = 0


class ReportIngestor:
    """Turns one locale's fresh news clusters into pending content records."""

    def __init__(
        self,
        news_source: NewsSource,
        records: ContentRecordStore,
        engine: DeduplicationEngine,
        merge_on_ingest: bool = True,
        settle_on_ingest: bool = False,
        known_sources_limit: int = 5000,
    ) -> None:
        self._news_source = news_source
        self._records = records
        self._engine = engine
        self._merge_on_ingest = merge_on_ingest
        self._settle_on_ingest = settle_on_ingest
        self._known_sources_limit = known_sources_limit

    async def run(self, locale: Locale) -> IngestionSummary:
        logger.info("Starting ingestion for %s", locale)
        summary = IngestionSummary()

        known_ids = await self._records.all_source_references(locale, self._known_sources_limit)
        clusters = await self._news_source.fetch(locale)
        summary.fetched = len(clusters)
        if not clusters:
            logger.warning("No news clusters fetched for %s", locale)
            return summary

        survivors = filter_clusters(clusters, known_ids)
        summary.kept = len(survivors)
        logger.info(
            "%s: %d clusters fetched, %d kept after filtering (%d known sources)",
            locale,
            summary.fetched,
            summary.kept,
            len(known_ids),
        )
        if not survivors:
            return summary

        if not self._merge_on_ingest:
            for cluster in survivors:
                await self._engine.create_record(cluster, locale)
                summary.created += 1
            logger.info("%s: created %d records, deduplication deferred", locale, summary.created)
            return summary

        corpus: ComparisonCorpus = await self._engine.load_corpus(locale)
        for cluster in survivors:
            resolution = await self._engine.resolve(DeduplicationMode.MERGE, cluster, corpus)
            if resolution.merged:
                summary.merged += 1
            elif resolution.record is not None:
                summary.created += 1

        if self._settle_on_ingest:
            summary.settled = await self._settle(corpus)

        logger.info(
            "%s: ingestion finished, %d created, %d merged into existing records",
            locale,
            summary.created,
            summary.merged,
        )
        return summary

    async def _settle(self, corpus: ComparisonCorpus) -> int:
        """Complete deduplication of the records this run created.

        Each of them was already compared against the settled records and the
        ones created before it, so no reconciliation pass is needed.
        """
        settled = 0
        for record in corpus.created:
            record.complete_deduplication()
            await self._records.update(record)
            settled += 1
        if settled:
            logger.info("%s: settled %d new records at ingestion", corpus.locale, settled)
        return settled
