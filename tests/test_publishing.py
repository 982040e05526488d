"""Tests for feedcurator.pipeline.publishing.ReportPublisher."""
from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from factories import NOW, make_item, make_record
from feedcurator.models.errors import OracleFailure, PersistenceFailure
from feedcurator.models.types import Category, CompositionDraft, Frame, Tier
from feedcurator.pipeline.publishing import ReportPublisher


def _classified(record_store, record_id, tier, minutes=0, **overrides):
    record = make_record(record_id, created_at=NOW + timedelta(minutes=minutes), **overrides)
    asyncio.run(record_store.create(record))
    record.complete_deduplication()
    record.complete_classification(tier)
    asyncio.run(record_store.update(record))
    return record


def _composer(*results) -> MagicMock:
    oracle = MagicMock()
    oracle.run = AsyncMock(side_effect=list(results))
    return oracle


def _balancer(result=None) -> MagicMock:
    balancer = MagicMock()
    balancer.run = AsyncMock(return_value=list(result or []))
    return balancer


def _draft(headline="Summit ends with a deal") -> CompositionDraft:
    return CompositionDraft(
        headline=headline,
        body="Leaders agreed on a framework.",
        frames=[Frame("Critics unconvinced", "Opponents call it symbolic.")],
    )


class TestReportPublisher:
    def test_publishes_standard_and_niche_records(self, record_store, item_store, us_locale):
        _classified(
            record_store,
            "std",
            Tier.STANDARD,
            0,
            category=Category.POLITICS,
            dateline=NOW - timedelta(hours=3),
        )
        _classified(record_store, "niche", Tier.NICHE, 1)
        _classified(record_store, "arch", Tier.ARCHIVED, 2)
        composer = _composer(_draft(), _draft("Chip exports rise"))
        balancer = _balancer()
        publisher = ReportPublisher(record_store, item_store, composer, balancer)

        published = asyncio.run(publisher.run(us_locale))

        assert [item.headline for item in published] == [
            "Summit ends with a deal",
            "Chip exports rise",
        ]
        first = published[0]
        assert first.record_ids == ["std"]
        assert first.published_at == NOW - timedelta(hours=3)
        assert first.category is Category.POLITICS
        assert first.frames == [Frame("Critics unconvinced", "Opponents call it symbolic.")]
        assert not first.is_fabricated
        assert asyncio.run(item_store.count_by_locale(us_locale)) == 2
        balancer.run.assert_awaited_once_with(us_locale)

    def test_published_records_are_not_picked_again(self, record_store, item_store, us_locale):
        _classified(record_store, "std", Tier.STANDARD)
        publisher = ReportPublisher(
            record_store, item_store, _composer(_draft()), _balancer()
        )
        asyncio.run(publisher.run(us_locale))

        again = ReportPublisher(record_store, item_store, _composer(), _balancer())
        assert asyncio.run(again.run(us_locale)) == []

    def test_composition_failures_are_skipped(self, record_store, item_store, us_locale):
        _classified(record_store, "r1", Tier.STANDARD, 0)
        _classified(record_store, "r2", Tier.STANDARD, 1)
        _classified(record_store, "r3", Tier.STANDARD, 2)
        composer = _composer(OracleFailure("timeout"), None, _draft())
        publisher = ReportPublisher(record_store, item_store, composer, _balancer())

        published = asyncio.run(publisher.run(us_locale))

        assert [item.record_ids for item in published] == [["r3"]]
        remaining = asyncio.run(
            record_store.find_unpublished(us_locale, [Tier.STANDARD, Tier.NICHE], 10)
        )
        assert sorted(record.id for record in remaining) == ["r1", "r2"]

    def test_fabricated_items_are_appended(self, record_store, item_store, us_locale):
        _classified(record_store, "std", Tier.STANDARD)
        fake = make_item("fake", NOW, fabricated=True)
        publisher = ReportPublisher(
            record_store, item_store, _composer(_draft()), _balancer([fake])
        )

        published = asyncio.run(publisher.run(us_locale))
        assert [item.is_fabricated for item in published] == [False, True]

    def test_balancer_runs_even_without_new_records(self, record_store, item_store, us_locale):
        balancer = _balancer()
        publisher = ReportPublisher(record_store, item_store, _composer(), balancer)

        assert asyncio.run(publisher.run(us_locale)) == []
        balancer.run.assert_awaited_once_with(us_locale)

    def test_persistence_failure_propagates(self, record_store, us_locale):
        _classified(record_store, "std", Tier.STANDARD)
        items = MagicMock()
        items.create_many = AsyncMock(side_effect=PersistenceFailure("disk full"))
        balancer = _balancer()
        publisher = ReportPublisher(record_store, items, _composer(_draft()), balancer)

        with pytest.raises(PersistenceFailure):
            asyncio.run(publisher.run(us_locale))
        balancer.run.assert_not_awaited()
