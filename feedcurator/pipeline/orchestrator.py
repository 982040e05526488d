"""Staged execution of one full pipeline run across every configured locale.

Stages run in order with a barrier between them. Inside a per-locale stage the
locales run concurrently and a failure in one of them is logged and recorded
without stopping the others.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

from feedcurator.models.types import Locale, utcnow
from feedcurator.pipeline.challenges import ChallengeGenerator
from feedcurator.pipeline.classification import ClassificationCoordinator, ClassificationSummary
from feedcurator.pipeline.deduplication import DeduplicationEngine
from feedcurator.pipeline.ingestion import ReportIngestor
from feedcurator.pipeline.publishing import ReportPublisher

logger = logging.getLogger(__name__)


@dataclass
class StageOutcome:
    """Per-locale results and errors of one fan-out stage."""

    name: str
    results: dict[str, Any] = field(default_factory=dict)
    errors: dict[str, BaseException] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class RunReport:
    started_at: datetime
    finished_at: datetime | None = None
    ingestion: StageOutcome | None = None
    reconciliation: StageOutcome | None = None
    classification: ClassificationSummary | None = None
    publication: StageOutcome | None = None
    challenges: StageOutcome | None = None

    @property
    def stages(self) -> list[StageOutcome]:
        return [
            stage
            for stage in (self.ingestion, self.reconciliation, self.publication, self.challenges)
            if stage is not None
        ]

    @property
    def ok(self) -> bool:
        return all(stage.ok for stage in self.stages)

    @property
    def errors(self) -> dict[str, BaseException]:
        collected: dict[str, BaseException] = {}
        for stage in self.stages:
            for locale, error in stage.errors.items():
                collected[f"{stage.name}:{locale}"] = error
        return collected


class PipelineOrchestrator:
    def __init__(
        self,
        locales: list[Locale],
        ingestor: ReportIngestor,
        engine: DeduplicationEngine,
        classifier: ClassificationCoordinator,
        publisher: ReportPublisher,
        challenges: ChallengeGenerator | None = None,
        reconcile_enabled: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._locales = list(locales)
        self._ingestor = ingestor
        self._engine = engine
        self._classifier = classifier
        self._publisher = publisher
        self._challenges = challenges
        self._reconcile_enabled = reconcile_enabled
        self._clock = clock

    async def run(self) -> RunReport:
        report = RunReport(started_at=self._clock())
        logger.info(
            "Pipeline run started for %s", ", ".join(str(locale) for locale in self._locales)
        )

        report.ingestion = await self._fan_out("ingest", self._ingestor.run)

        if self._reconcile_enabled:
            report.reconciliation = await self._fan_out("reconcile", self._engine.reconcile)
        else:
            logger.info("Reconciliation disabled, skipping")

        report.classification = await self._classifier.run()

        report.publication = await self._fan_out("publish", self._publisher.run)

        if self._challenges is not None:
            report.challenges = await self._fan_out("challenge", self._challenges.run)

        report.finished_at = self._clock()
        if not report.ok:
            failed = [stage.name for stage in report.stages if not stage.ok]
            logger.warning(
                "Pipeline run finished with errors in stages %s: %s",
                ", ".join(failed),
                ", ".join(sorted(report.errors)),
            )
        else:
            logger.info("Pipeline run finished successfully")
        return report

    async def _fan_out(
        self, name: str, step: Callable[[Locale], Awaitable[Any]]
    ) -> StageOutcome:
        logger.info("Stage %s: starting for %d locales", name, len(self._locales))
        results = await asyncio.gather(
            *(step(locale) for locale in self._locales), return_exceptions=True
        )

        outcome = StageOutcome(name=name)
        for locale, result in zip(self._locales, results):
            key = str(locale)
            if isinstance(result, BaseException):
                logger.error("Stage %s failed for %s: %s", name, key, result, exc_info=result)
                outcome.errors[key] = result
            else:
                outcome.results[key] = result
        logger.info(
            "Stage %s: %d succeeded, %d failed", name, len(outcome.results), len(outcome.errors)
        )
        return outcome
