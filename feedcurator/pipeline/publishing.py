from __future__ import annotations

import logging
import uuid
from typing import Callable

from feedcurator.models.types import ContentRecord, Locale, PublishedItem, Tier
from feedcurator.oracles.base import CompositionOracle
from feedcurator.pipeline.fabrication import FabricationBalancer
from feedcurator.storage.stores import ContentRecordStore, PublishedItemStore

logger = logging.getLogger(__name__)

PUBLISHABLE_TIERS = [Tier.STANDARD, Tier.NICHE]


class ReportPublisher:
    """Composes reader-facing items from classified records, then tops up
    the locale's stream with fabricated items."""

    def __init__(
        self,
        records: ContentRecordStore,
        items: PublishedItemStore,
        oracle: CompositionOracle,
        balancer: FabricationBalancer,
        batch_size: int = 20,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self._records = records
        self._items = items
        self._oracle = oracle
        self._balancer = balancer
        self._batch_size = batch_size
        self._new_id = id_factory

    async def run(self, locale: Locale) -> list[PublishedItem]:
        logger.info("Starting publication for %s", locale)
        records = await self._records.find_unpublished(
            locale, PUBLISHABLE_TIERS, self._batch_size
        )

        authentic: list[PublishedItem] = []
        for record in records:
            item = await self._compose(record, locale)
            if item is not None:
                authentic.append(item)

        if authentic:
            await self._items.create_many(authentic)
        logger.info(
            "%s: published %d of %d eligible records", locale, len(authentic), len(records)
        )

        fabricated = await self._balancer.run(locale)
        return authentic + fabricated

    async def _compose(self, record: ContentRecord, locale: Locale) -> PublishedItem | None:
        try:
            draft = await self._oracle.run(record, locale)
        except Exception as exc:
            logger.error("Error composing item for record %s: %s", record.id, exc)
            return None
        if draft is None:
            logger.warning("Composition oracle returned no result for %s", record.id)
            return None
        if not draft.headline or not draft.headline.strip():
            logger.warning("Composition for record %s has no headline, skipping", record.id)
            return None

        return PublishedItem(
            id=self._new_id(),
            locale=locale,
            published_at=record.dateline,
            headline=draft.headline,
            body=draft.body,
            category=record.category,
            frames=list(draft.frames),
            record_ids=[record.id],
        )
