"""Tests for feedcurator.pipeline.ingestion.ReportIngestor."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from factories import NOW, FakeNewsSource, make_cluster, make_record
from feedcurator.models.errors import FetchFailure
from feedcurator.models.types import DeduplicationState, DeduplicationVerdict
from feedcurator.pipeline.deduplication import DeduplicationEngine
from feedcurator.pipeline.ingestion import ReportIngestor


def _ingestor(
    record_store, source, oracle, merge_on_ingest=True, settle_on_ingest=False
) -> ReportIngestor:
    engine = DeduplicationEngine(record_store, oracle, clock=lambda: NOW)
    return ReportIngestor(
        source,
        record_store,
        engine,
        merge_on_ingest=merge_on_ingest,
        settle_on_ingest=settle_on_ingest,
    )


class TestReportIngestor:
    def test_fresh_clusters_become_pending_records(self, record_store, us_locale, unique_oracle):
        source = FakeNewsSource({us_locale: [make_cluster("a1", "a2"), make_cluster("b1", "b2")]})
        ingestor = _ingestor(record_store, source, unique_oracle)

        summary = asyncio.run(ingestor.run(us_locale))

        assert summary.fetched == 2
        assert summary.kept == 2
        assert summary.created == 2
        pending = asyncio.run(record_store.find_pending_deduplication(10, us_locale))
        assert len(pending) == 2
        assert all(r.deduplication_state is DeduplicationState.PENDING for r in pending)
        assert sorted(ref for r in pending for ref in r.source_references) == [
            "a1", "a2", "b1", "b2",
        ]

    def test_known_article_filters_its_cluster(self, record_store, us_locale, unique_oracle):
        asyncio.run(record_store.create(make_record("seen", source_references=["b1"])))
        source = FakeNewsSource({us_locale: [make_cluster("a1", "a2"), make_cluster("b1", "b2")]})
        ingestor = _ingestor(record_store, source, unique_oracle)

        summary = asyncio.run(ingestor.run(us_locale))

        assert summary.kept == 1
        assert summary.created == 1
        assert "a1" in asyncio.run(record_store.all_source_references(us_locale, 100))

    def test_rerun_does_not_ingest_the_same_articles_twice(
        self, record_store, us_locale, unique_oracle
    ):
        source = FakeNewsSource({us_locale: [make_cluster("a1", "a2"), make_cluster("b1", "b2")]})
        ingestor = _ingestor(record_store, source, unique_oracle)

        asyncio.run(ingestor.run(us_locale))
        second = asyncio.run(ingestor.run(us_locale))

        assert second.kept == 0
        assert len(asyncio.run(record_store.find_pending_deduplication(10))) == 2

    def test_merge_folds_duplicate_clusters(self, record_store, us_locale):
        oracle = MagicMock()

        async def judge(corpus, candidate):
            return DeduplicationVerdict(duplicate_of_id=corpus[0].id)

        oracle.run = AsyncMock(side_effect=judge)
        source = FakeNewsSource({us_locale: [make_cluster("a1", "a2"), make_cluster("b1", "b2")]})
        ingestor = _ingestor(record_store, source, oracle)

        summary = asyncio.run(ingestor.run(us_locale))

        assert summary.created == 1
        assert summary.merged == 1
        records = asyncio.run(record_store.find_pending_deduplication(10))
        assert len(records) == 1
        assert records[0].source_references == ["a1", "a2", "b1", "b2"]

    def test_settle_on_ingest_completes_new_records(self, record_store, us_locale, unique_oracle):
        source = FakeNewsSource({us_locale: [make_cluster("a1", "a2"), make_cluster("b1", "b2")]})
        ingestor = _ingestor(record_store, source, unique_oracle, settle_on_ingest=True)

        summary = asyncio.run(ingestor.run(us_locale))

        assert summary.created == 2
        assert summary.settled == 2
        assert asyncio.run(record_store.find_pending_deduplication(10)) == []
        ready = asyncio.run(record_store.find_pending_classification(10))
        assert len(ready) == 2
        assert all(record.is_settled for record in ready)
        # the second cluster was compared against the record created for the first
        corpus, _ = unique_oracle.run.await_args.args
        assert len(corpus) == 1

    def test_settled_records_join_the_next_run_corpus(self, record_store, us_locale, unique_oracle):
        source = FakeNewsSource({us_locale: [make_cluster("a1", "a2")]})
        ingestor = _ingestor(record_store, source, unique_oracle, settle_on_ingest=True)
        asyncio.run(ingestor.run(us_locale))

        source.clusters[us_locale] = [make_cluster("c1", "c2")]
        asyncio.run(ingestor.run(us_locale))

        corpus, candidate = unique_oracle.run.await_args.args
        assert [record.source_references for record in corpus] == [["a1", "a2"]]
        assert candidate.article_ids == ["c1", "c2"]

    def test_deferred_mode_never_consults_the_oracle(self, record_store, us_locale, unique_oracle):
        source = FakeNewsSource({us_locale: [make_cluster("a1", "a2"), make_cluster("b1", "b2")]})
        ingestor = _ingestor(record_store, source, unique_oracle, merge_on_ingest=False)

        summary = asyncio.run(ingestor.run(us_locale))

        assert summary.created == 2
        unique_oracle.run.assert_not_awaited()

    def test_empty_fetch_creates_nothing(self, record_store, us_locale, unique_oracle):
        ingestor = _ingestor(record_store, FakeNewsSource(), unique_oracle)

        summary = asyncio.run(ingestor.run(us_locale))
        assert summary.fetched == 0
        assert summary.created == 0

    def test_fetch_failure_propagates(self, record_store, us_locale, unique_oracle):
        source = MagicMock()
        source.fetch = AsyncMock(side_effect=FetchFailure("api down"))
        ingestor = _ingestor(record_store, source, unique_oracle)

        with pytest.raises(FetchFailure):
            asyncio.run(ingestor.run(us_locale))
