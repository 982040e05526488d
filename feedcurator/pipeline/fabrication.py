"""Blending synthetic items into a locale's published stream.

The balancer keeps roughly one fabricated item for every nine authentic ones
among a locale's most recent items, and slots each new fabricated item into
the existing timeline so that it does not stand out chronologically.
"""
from __future__ import annotations

import logging
import math
import random
import uuid
from datetime import datetime, timedelta
from typing import Callable

from feedcurator.models.errors import ValidationError
from feedcurator.models.types import Authenticity, Locale, PublishedItem, utcnow
from feedcurator.oracles.base import FabricationContext, FabricationOracle
from feedcurator.storage.stores import PublishedItemStore

logger = logging.getLogger(__name__)

MIN_BASELINE = 10
SAMPLE_SIZE = 10
MAX_PER_RUN = 3
REAL_PER_FABRICATED = 9

MIN_OFFSET_MINUTES = 2
MAX_OFFSET_MINUTES = 10
FALLBACK_WINDOW = timedelta(hours=24)
FUTURE_GUARD = timedelta(minutes=1)


def fabrication_quota(real: int, fake: int, max_per_run: int = MAX_PER_RUN) -> int:
    """How many fabricated items to add given the recent real/fake split."""
    desired_total = math.ceil(real / REAL_PER_FABRICATED)
    return max(0, min(desired_total - fake, max_per_run))


def place_fabricated(
    recent: list[PublishedItem],
    insert_after_index: int | None,
    now: datetime,
    rng: random.Random,
) -> datetime:
    """Pick the publication time of a fabricated item.

    *recent* is newest first. With an index, the item lands 2 to 10 minutes
    after the indexed item (after the first one for ``-1``), never later than
    a minute before *now*. Without one, it lands somewhere in the last 24 hours.
    """
    if recent and insert_after_index is not None:
        index = max(-1, min(insert_after_index, len(recent) - 1))
        base = recent[0].published_at if index == -1 else recent[index].published_at
        offset = MIN_OFFSET_MINUTES + rng.random() * (MAX_OFFSET_MINUTES - MIN_OFFSET_MINUTES)
        placed = base + timedelta(minutes=offset)
        if placed > now:
            placed = now - FUTURE_GUARD
        return placed
    return now - rng.random() * FALLBACK_WINDOW


class FabricationBalancer:
    def __init__(
        self,
        items: PublishedItemStore,
        oracle: FabricationOracle,
        min_baseline: int = MIN_BASELINE,
        sample_size: int = SAMPLE_SIZE,
        max_per_run: int = MAX_PER_RUN,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self._items = items
        self._oracle = oracle
        self._min_baseline = min_baseline
        self._sample_size = sample_size
        self._max_per_run = max_per_run
        self._rng = rng or random.Random()
        self._clock = clock
        self._new_id = id_factory

    async def run(self, locale: Locale) -> list[PublishedItem]:
        total = await self._items.count_by_locale(locale)
        if total < self._min_baseline:
            logger.info(
                "Skipping fabrication for %s: %d items, %d needed",
                locale,
                total,
                self._min_baseline,
            )
            return []

        recent = await self._items.find_recent_by_locale(locale, self._sample_size)
        fake = sum(1 for item in recent if item.is_fabricated)
        real = len(recent) - fake
        count = fabrication_quota(real, fake, self._max_per_run)
        if count == 0:
            logger.info(
                "Skipping fabrication for %s: ratio satisfied (%d real, %d fabricated)",
                locale,
                real,
                fake,
            )
            return []

        logger.info("Fabricating %d items for %s (%d real, %d fabricated)", count, locale, real, fake)
        generated: list[PublishedItem] = []
        for _ in range(count):
            item = await self._fabricate_one(locale, recent)
            if item is not None:
                generated.append(item)

        if generated:
            await self._items.create_many(generated)
            logger.info("Persisted %d fabricated items for %s", len(generated), locale)
        return generated

    async def _fabricate_one(
        self, locale: Locale, recent: list[PublishedItem]
    ) -> PublishedItem | None:
        now = self._clock()
        context = FabricationContext(locale=locale, current_time=now, recent_items=list(recent))
        try:
            draft = await self._oracle.run(context)
        except Exception as exc:
            logger.warning("Fabrication oracle failed for %s: %s", locale, exc)
            return None
        if draft is None:
            logger.warning("Fabrication oracle returned no result for %s", locale)
            return None

        try:
            item = PublishedItem(
                id=self._new_id(),
                locale=locale,
                published_at=place_fabricated(recent, draft.insert_after_index, now, self._rng),
                headline=draft.headline,
                body=draft.body,
                category=draft.category,
                authenticity=Authenticity.fabricated(draft.clarification),
            )
        except ValidationError as exc:
            logger.warning("Discarding malformed fabricated item for %s: %s", locale, exc)
            return None

        logger.info(
            "Fabricated item %s for %s (%s): %s",
            item.id,
            locale,
            item.category.value,
            item.headline[:80],
        )
        return item
