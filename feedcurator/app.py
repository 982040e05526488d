from __future__ import annotations

import asyncio
import logging
import signal
import sys

from feedcurator.config.logging import setup_logging
from feedcurator.config.settings import Settings, load_settings
from feedcurator.fetchers.cached import CachedNewsSource
from feedcurator.fetchers.world_news import WorldNewsSource
from feedcurator.oracles.base import NewsSource
from feedcurator.oracles.llm import (
    LLMClassificationOracle,
    LLMCompositionOracle,
    LLMDeduplicationOracle,
    LLMFabricationOracle,
    LLMIngestionOracle,
    LLMQuizOracle,
)
from feedcurator.oracles.openrouter import OpenRouterClient
from feedcurator.pipeline.challenges import ChallengeGenerator
from feedcurator.pipeline.classification import ClassificationCoordinator
from feedcurator.pipeline.deduplication import DeduplicationEngine
from feedcurator.pipeline.fabrication import FabricationBalancer
from feedcurator.pipeline.ingestion import ReportIngestor
from feedcurator.pipeline.orchestrator import PipelineOrchestrator
from feedcurator.pipeline.publishing import ReportPublisher
from feedcurator.scheduler import PipelineScheduler
from feedcurator.storage.database import Database
from feedcurator.storage.stores import SqliteContentRecordStore, SqlitePublishedItemStore

logger = logging.getLogger(__name__)


def create_news_source(settings: Settings) -> NewsSource:
    source: NewsSource = WorldNewsSource(settings.world_news_api_key)
    if settings.use_news_cache:
        source = CachedNewsSource(
            source,
            cache_dir=settings.news_cache_dir,
            ttl_minutes=settings.news_cache_ttl_minutes,
        )
    return source


def create_orchestrator(
    settings: Settings,
    database: Database,
    news_source: NewsSource | None = None,
    client: OpenRouterClient | None = None,
) -> PipelineOrchestrator:
    records = SqliteContentRecordStore(database)
    items = SqlitePublishedItemStore(database)
    client = client or OpenRouterClient(settings.openrouter_api_key, settings.openrouter_model)

    def model(oracle: str) -> OpenRouterClient:
        return client.with_model(settings.model_for(oracle))

    engine = DeduplicationEngine(
        records,
        LLMDeduplicationOracle(model("deduplication")),
        ingestion_oracle=LLMIngestionOracle(model("ingestion")),
        window_days=settings.dedup_window_days,
        corpus_limit=settings.dedup_corpus_limit,
        batch_size=settings.reconcile_batch_size,
    )
    ingestor = ReportIngestor(
        news_source or create_news_source(settings),
        records,
        engine,
        merge_on_ingest=settings.ingest_dedup_mode == "merge",
        settle_on_ingest=not settings.reconcile_enabled,
        known_sources_limit=settings.known_sources_limit,
    )
    classifier = ClassificationCoordinator(
        records,
        LLMClassificationOracle(model("classification")),
        batch_size=settings.classification_batch_size,
    )
    balancer = FabricationBalancer(
        items,
        LLMFabricationOracle(model("fabrication")),
        min_baseline=settings.fabrication_min_baseline,
        sample_size=settings.fabrication_sample_size,
        max_per_run=settings.fabrication_max_per_run,
    )
    publisher = ReportPublisher(
        records,
        items,
        LLMCompositionOracle(model("composition")),
        balancer,
        batch_size=settings.publish_batch_size,
    )
    challenges = None
    if settings.quiz_enabled:
        challenges = ChallengeGenerator(
            items, LLMQuizOracle(model("quiz")), batch_size=settings.quiz_batch_size
        )
    return PipelineOrchestrator(
        settings.locales,
        ingestor,
        engine,
        classifier,
        publisher,
        challenges=challenges,
        reconcile_enabled=settings.reconcile_enabled,
    )


async def main() -> None:
    settings = load_settings()
    setup_logging(settings.log_level, settings.log_file)
    logger.info(
        "Starting feedcurator for %s", ", ".join(str(locale) for locale in settings.locales)
    )

    if sys.platform == "win32":
        try:
            sys.stdout.reconfigure(encoding="utf-8")
            sys.stderr.reconfigure(encoding="utf-8")
        except (AttributeError, OSError) as exc:
            logger.debug("Could not reconfigure console encoding: %s", exc)

    database = Database(settings.database_path)
    orchestrator = create_orchestrator(settings, database)
    scheduler = PipelineScheduler(orchestrator, interval_hours=settings.schedule_interval_hours)

    def _shutdown(sig: int, _frame: object) -> None:
        logger.info("Received signal %s, shutting down after the current run...", sig)
        scheduler.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    try:
        await scheduler.run_forever()
    except Exception as exc:
        logger.error("Main loop error: %s", exc)
        raise
    finally:
        database.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
