from __future__ import annotations

import logging
from dataclasses import dataclass

from feedcurator.oracles.base import ClassificationOracle
from feedcurator.storage.stores import ContentRecordStore

logger = logging.getLogger(__name__)


@dataclass
class ClassificationSummary:
    classified: int = 0
    failed: int = 0


class ClassificationCoordinator:
    """Assigns an editorial tier to records whose deduplication is settled.

    Records the oracle cannot classify stay pending and are picked up again
    on the next scheduled run.
    """

    def __init__(
        self,
        records: ContentRecordStore,
        oracle: ClassificationOracle,
        batch_size: int = 50,
    ) -> None:
        self._records = records
        self._oracle = oracle
        self._batch_size = batch_size

    async def run(self) -> ClassificationSummary:
        logger.info("Starting record classification")
        summary = ClassificationSummary()

        pending = await self._records.find_pending_classification(self._batch_size)
        if not pending:
            logger.info("No records pending classification")
            return summary

        logger.info("Classifying %d records", len(pending))
        for record in pending:
            try:
                verdict = await self._oracle.run(record)
            except Exception as exc:
                logger.error("Error classifying record %s: %s", record.id, exc)
                summary.failed += 1
                continue

            if verdict is None:
                logger.warning("Classification oracle returned no result for %s", record.id)
                summary.failed += 1
                continue

            record.complete_classification(verdict.tier)
            await self._records.update(record)
            summary.classified += 1
            logger.info(
                "Record %s classified as %s: %s", record.id, verdict.tier.value, verdict.reason
            )

        logger.info(
            "Classification finished: %d classified, %d failed",
            summary.classified,
            summary.failed,
        )
        return summary
