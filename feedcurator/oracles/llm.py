"""Language-model backed implementations of the oracle ports.

Each oracle builds a short prompt, asks :class:`OpenRouterClient` for a JSON
object and converts it into the matching result type. Replies that do not fit
the expected shape yield ``None``; transport errors propagate as
:class:`OracleFailure`.
"""
from __future__ import annotations

import asyncio
import json
import logging
import random

from feedcurator.models.errors import ValidationError
from feedcurator.models.types import (
    Angle,
    Category,
    ClassificationVerdict,
    CompositionDraft,
    ContentRecord,
    DeduplicationVerdict,
    FabricationDraft,
    Frame,
    IngestionDigest,
    Locale,
    PublishedItem,
    QuizQuestion,
    RawCluster,
    Tier,
)
from feedcurator.oracles.base import DeduplicationCandidate, FabricationContext
from feedcurator.oracles.openrouter import OpenRouterClient

logger = logging.getLogger(__name__)

MAX_ARTICLE_CHARS = 2000
CATEGORIES = ", ".join(category.value for category in Category)

INGESTION_PROMPT = (
    "You are a news analyst. Several articles describe the same event. "
    "Extract the verified facts and the distinct viewpoints. Reply with JSON: "
    '{"narrative": "neutral summary of the undisputed facts", '
    '"background": "context a reader needs", '
    '"angles": [{"narrative": "one viewpoint on the event"}], '
    f'"category": "one of {CATEGORIES}"}}'
)

DEDUPLICATION_PROMPT = (
    "You detect duplicate news coverage. Decide whether the candidate describes "
    "the same underlying event as one of the existing reports. Different events "
    "on the same topic are not duplicates. Reply with JSON: "
    '{"duplicateOfReportId": "<id of the existing report>" or null, "reason": "short explanation"}'
)

CLASSIFICATION_PROMPT = (
    "You are a news editor choosing where a report belongs. STANDARD means broad "
    "public interest, NICHE means relevant to a specialised audience, ARCHIVED "
    "means not worth publishing. Reply with JSON: "
    '{"classification": "STANDARD|NICHE|ARCHIVED", "reason": "short explanation"}'
)

COMPOSITION_PROMPT = (
    "You are an editorial writer for a mobile news app. Write a neutral main "
    "article of 50 to 100 words with only the verified facts, and one frame per "
    "angle that expands on the facts from that viewpoint without repeating them. "
    'Reply with JSON: {"headline": "...", "body": "...", '
    '"frames": [{"headline": "...", "body": "..."}]}'
)

FABRICATION_PROMPT = (
    "You write a plausible but fictional news article for a spot-the-fake game. "
    "It must match the tone and topics of the recent articles yet contain a "
    "subtle, verifiable falsehood. Reply with JSON: "
    '{"headline": "...", "body": "...", "clarification": "why the article is fake", '
    f'"category": "one of {CATEGORIES}", '
    '"insertAfterIndex": index of the recent article to follow or -1, '
    '"tone": "short description"}'
)

QUIZ_ANSWER_COUNT = 4

QUIZ_PROMPT = (
    "You write comprehension quizzes for news articles. Create 2 to 4 multiple "
    "choice questions about the key facts, implications and viewpoints of the "
    "article. Only ask what you are certain about. Each question has exactly "
    f"{QUIZ_ANSWER_COUNT} short answers of 2 to 5 words and the correct answer is "
    "always the first one. Reply with JSON: "
    '{"questions": [{"question": "...", "answers": ["correct", "wrong", "wrong", "wrong"]}]}'
)


def _text(value: object) -> str:
    return value.strip() if isinstance(value, str) else ""


def _record_payload(record: ContentRecord) -> dict:
    return {
        "id": record.id,
        "narrative": record.narrative,
        "background": record.background,
        "category": record.category.value,
    }


class _LLMOracle:
    name = "oracle"

    def __init__(self, client: OpenRouterClient) -> None:
        self._client = client

    async def _ask(self, system: str, user: str) -> dict | None:
        data = await asyncio.to_thread(self._client.complete_json, system, user)
        if data is None:
            logger.warning("%s oracle got no usable reply", self.name)
        return data


class LLMIngestionOracle(_LLMOracle):
    name = "ingestion"

    async def run(self, cluster: RawCluster) -> IngestionDigest | None:
        articles = [
            {"headline": article.headline, "body": article.body[:MAX_ARTICLE_CHARS]}
            for article in cluster.articles
        ]
        data = await self._ask(INGESTION_PROMPT, json.dumps({"articles": articles}, ensure_ascii=False))
        if data is None:
            return None

        narrative = _text(data.get("narrative"))
        if not narrative:
            return None
        angles = [
            Angle(narrative=_text(angle.get("narrative")))
            for angle in data.get("angles") or []
            if isinstance(angle, dict) and _text(angle.get("narrative"))
        ]
        return IngestionDigest(
            narrative=narrative,
            background=_text(data.get("background")),
            angles=angles,
            category=Category.parse(data.get("category")),
        )


class LLMDeduplicationOracle(_LLMOracle):
    name = "deduplication"

    async def run(
        self, corpus: list[ContentRecord], candidate: DeduplicationCandidate
    ) -> DeduplicationVerdict | None:
        if isinstance(candidate, RawCluster):
            described = {"headlines": [article.headline for article in candidate.articles]}
        else:
            described = {"narrative": candidate.narrative, "background": candidate.background}
        user = json.dumps(
            {
                "existingReports": [
                    {"id": record.id, "narrative": record.narrative} for record in corpus
                ],
                "candidate": described,
            },
            ensure_ascii=False,
        )
        data = await self._ask(DEDUPLICATION_PROMPT, user)
        if data is None or "duplicateOfReportId" not in data:
            return None

        duplicate_of = data.get("duplicateOfReportId")
        if duplicate_of is not None and not isinstance(duplicate_of, str):
            return None
        logger.debug("Deduplication verdict %s: %s", duplicate_of, data.get("reason", ""))
        return DeduplicationVerdict(duplicate_of_id=duplicate_of or None)


class LLMClassificationOracle(_LLMOracle):
    name = "classification"

    async def run(self, record: ContentRecord) -> ClassificationVerdict | None:
        payload = _record_payload(record)
        payload["angles"] = [angle.narrative for angle in record.angles]
        data = await self._ask(CLASSIFICATION_PROMPT, json.dumps(payload, ensure_ascii=False))
        if data is None:
            return None
        try:
            tier = Tier(_text(data.get("classification")).upper())
        except ValueError:
            logger.warning("Unknown classification %r for record %s", data.get("classification"), record.id)
            return None
        return ClassificationVerdict(tier=tier, reason=_text(data.get("reason")))


class LLMCompositionOracle(_LLMOracle):
    name = "composition"

    async def run(self, record: ContentRecord, locale: Locale) -> CompositionDraft | None:
        payload = _record_payload(record)
        payload["angles"] = [angle.narrative for angle in record.angles]
        payload["dateline"] = record.dateline.isoformat()
        system = f"{COMPOSITION_PROMPT} Write everything in language {locale.language}."
        data = await self._ask(system, json.dumps(payload, ensure_ascii=False))
        if data is None:
            return None

        headline, body = _text(data.get("headline")), _text(data.get("body"))
        if not headline or not body:
            return None
        frames = [
            Frame(headline=_text(frame.get("headline")), body=_text(frame.get("body")))
            for frame in data.get("frames") or []
            if isinstance(frame, dict)
        ]
        if len(frames) != len(record.angles):
            logger.warning(
                "Composition returned %d frames for %d angles (record %s)",
                len(frames),
                len(record.angles),
                record.id,
            )
            return None
        return CompositionDraft(headline=headline, body=body, frames=frames)


class LLMFabricationOracle(_LLMOracle):
    name = "fabrication"

    async def run(self, context: FabricationContext) -> FabricationDraft | None:
        recent = [
            {
                "index": index,
                "headline": item.headline,
                "category": item.category.value,
                "publishedAt": item.published_at.isoformat(),
            }
            for index, item in enumerate(context.recent_items)
        ]
        system = f"{FABRICATION_PROMPT} Write everything in language {context.locale.language}."
        user = json.dumps(
            {"currentTime": context.current_time.isoformat(), "recentArticles": recent},
            ensure_ascii=False,
        )
        data = await self._ask(system, user)
        if data is None:
            return None

        headline = _text(data.get("headline"))
        body = _text(data.get("body"))
        clarification = _text(data.get("clarification"))
        if not (headline and body and clarification):
            return None
        index = data.get("insertAfterIndex")
        if isinstance(index, bool) or not isinstance(index, int):
            index = None
        logger.debug("Fabricated draft tone: %s", data.get("tone", ""))
        return FabricationDraft(
            headline=headline,
            body=body,
            clarification=clarification,
            category=Category.parse(data.get("category")),
            insert_after_index=index,
        )


class LLMQuizOracle(_LLMOracle):
    """Asks for questions with the correct answer first, then shuffles the answers."""

    name = "quiz"

    def __init__(self, client: OpenRouterClient, rng: random.Random | None = None) -> None:
        super().__init__(client)
        self._rng = rng or random.Random()

    async def run(self, item: PublishedItem, locale: Locale) -> list[QuizQuestion] | None:
        payload = {
            "headline": item.headline,
            "body": item.body,
            "frames": [{"headline": frame.headline, "body": frame.body} for frame in item.frames],
        }
        system = f"{QUIZ_PROMPT} Write every question and answer in language {locale.language}."
        data = await self._ask(system, json.dumps(payload, ensure_ascii=False))
        if data is None:
            return None

        questions: list[QuizQuestion] = []
        for entry in data.get("questions") or []:
            if not isinstance(entry, dict):
                continue
            answers = [_text(answer) for answer in entry.get("answers") or []]
            if len(answers) != QUIZ_ANSWER_COUNT:
                logger.warning(
                    "Quiz question for item %s has %d answers, skipping", item.id, len(answers)
                )
                continue
            order = list(range(len(answers)))
            self._rng.shuffle(order)
            try:
                questions.append(
                    QuizQuestion(
                        question=_text(entry.get("question")),
                        answers=[answers[index] for index in order],
                        correct_index=order.index(0),
                    )
                )
            except ValidationError as exc:
                logger.warning("Invalid quiz question for item %s: %s", item.id, exc)

        if not questions:
            logger.warning("No usable quiz questions for item %s", item.id)
            return None
        return questions
