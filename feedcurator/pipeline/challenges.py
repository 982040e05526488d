from __future__ import annotations

import logging

from feedcurator.models.types import Locale, PublishedItem
from feedcurator.oracles.base import QuizOracle
from feedcurator.storage.stores import PublishedItemStore

logger = logging.getLogger(__name__)


class ChallengeGenerator:
    """Attaches comprehension quizzes to authentic items that do not have one yet."""

    def __init__(self, items: PublishedItemStore, oracle: QuizOracle, batch_size: int = 20) -> None:
        self._items = items
        self._oracle = oracle
        self._batch_size = batch_size

    async def run(self, locale: Locale) -> list[PublishedItem]:
        logger.info("Starting quiz generation for %s", locale)
        candidates = await self._items.find_without_quiz(locale, self._batch_size)
        pending = [item for item in candidates if not item.is_fabricated and not item.has_quiz]
        if not pending:
            logger.info("%s: no authentic items without a quiz", locale)
            return []

        updated: list[PublishedItem] = []
        for item in pending:
            try:
                questions = await self._oracle.run(item, locale)
            except Exception as exc:
                logger.warning("Error generating quiz for item %s: %s", item.id, exc)
                continue
            if not questions:
                logger.warning("Quiz oracle returned no questions for item %s", item.id)
                continue
            item.quiz = list(questions)
            updated.append(item)
            logger.debug("Generated %d quiz questions for item %s", len(questions), item.id)

        if updated:
            await self._items.update_many(updated)
        logger.info(
            "%s: generated quizzes for %d of %d items", locale, len(updated), len(pending)
        )
        return updated
