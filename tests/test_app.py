"""Tests for the wiring in feedcurator.app."""
from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

from factories import FakeNewsSource, make_cluster
from feedcurator.app import create_news_source, create_orchestrator
from feedcurator.config.settings import Settings
from feedcurator.fetchers.cached import CachedNewsSource
from feedcurator.fetchers.world_news import WorldNewsSource
from feedcurator.models.types import Locale
from feedcurator.oracles.llm import (
    CLASSIFICATION_PROMPT,
    COMPOSITION_PROMPT,
    DEDUPLICATION_PROMPT,
    QUIZ_PROMPT,
)


def _settings(**overrides) -> Settings:
    fields = {
        "world_news_api_key": "world-key",
        "openrouter_api_key": "router-key",
        "locales": [Locale("US", "EN")],
    }
    fields.update(overrides)
    return Settings(**fields)


class TestCreateNewsSource:
    def test_plain_source_by_default(self):
        assert isinstance(create_news_source(_settings()), WorldNewsSource)

    def test_cache_wraps_the_source(self, tmp_path):
        source = create_news_source(_settings(use_news_cache=True, news_cache_dir=str(tmp_path)))
        assert isinstance(source, CachedNewsSource)


class TestCreateOrchestrator:
    def test_full_run_with_unavailable_models(self, temp_database):
        locale = Locale("US", "EN")
        source = FakeNewsSource({locale: [make_cluster("a1", "a2"), make_cluster("b1", "b2")]})
        client = MagicMock()
        client.with_model.return_value = client
        client.complete_json.return_value = None

        orchestrator = create_orchestrator(
            _settings(), temp_database, news_source=source, client=client
        )
        report = asyncio.run(orchestrator.run())

        assert report.errors == {}
        assert report.ingestion.results["US/EN"].created == 2
        assert report.classification.failed == 2
        assert report.publication.results["US/EN"] == []
        assert len(temp_database.find_pending_classification(10)) == 2


def _scripted_client() -> MagicMock:
    """A client whose replies depend on which oracle is asking."""

    def reply(system, user):
        if system.startswith(DEDUPLICATION_PROMPT):
            return {"duplicateOfReportId": None, "reason": "different events"}
        if system.startswith(CLASSIFICATION_PROMPT):
            return {"classification": "STANDARD", "reason": "broad interest"}
        if system.startswith(COMPOSITION_PROMPT):
            return {"headline": "Composed headline", "body": "Composed body.", "frames": []}
        if system.startswith(QUIZ_PROMPT):
            return {
                "questions": [
                    {
                        "question": "What was composed?",
                        "answers": ["A headline", "A song", "A poem", "A letter"],
                    }
                ]
            }
        return None

    client = MagicMock()
    client.with_model.return_value = client
    client.complete_json.side_effect = reply
    return client


class TestFullPipeline:
    def test_records_are_published_and_quizzed(self, temp_database):
        locale = Locale("US", "EN")
        source = FakeNewsSource({locale: [make_cluster("a1", "a2"), make_cluster("b1", "b2")]})

        orchestrator = create_orchestrator(
            _settings(), temp_database, news_source=source, client=_scripted_client()
        )
        report = asyncio.run(orchestrator.run())

        assert report.ok
        assert report.classification.classified == 2
        published = report.publication.results["US/EN"]
        assert [item.headline for item in published] == ["Composed headline"] * 2
        quizzed = report.challenges.results["US/EN"]
        assert len(quizzed) == 2
        stored = temp_database.get_item(quizzed[0].id)
        assert stored.quiz[0].correct_answer == "A headline"

    def test_merge_without_reconciliation_still_reaches_publication(self, temp_database):
        locale = Locale("US", "EN")
        source = FakeNewsSource({locale: [make_cluster("a1", "a2"), make_cluster("b1", "b2")]})

        orchestrator = create_orchestrator(
            _settings(reconcile_enabled=False),
            temp_database,
            news_source=source,
            client=_scripted_client(),
        )
        report = asyncio.run(orchestrator.run())

        assert report.reconciliation is None
        assert report.ingestion.results["US/EN"].settled == 2
        assert temp_database.find_pending_deduplication(10) == []
        assert report.classification.classified == 2
        assert len(report.publication.results["US/EN"]) == 2

    def test_quiz_step_can_be_disabled(self, temp_database):
        orchestrator = create_orchestrator(
            _settings(quiz_enabled=False),
            temp_database,
            news_source=FakeNewsSource(),
            client=_scripted_client(),
        )
        report = asyncio.run(orchestrator.run())
        assert report.challenges is None
