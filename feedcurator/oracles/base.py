"""Capability ports for the external judgment services the pipeline relies on.

Every oracle is awaited and may return ``None`` when it has no usable answer.
Callers treat both ``None`` and a raised exception as an item-level failure.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, Union

from feedcurator.models.types import (
    ClassificationVerdict,
    CompositionDraft,
    ContentRecord,
    DeduplicationVerdict,
    FabricationDraft,
    IngestionDigest,
    Locale,
    PublishedItem,
    QuizQuestion,
    RawCluster,
)

DeduplicationCandidate = Union[RawCluster, ContentRecord]


@dataclass
class FabricationContext:
    """What the fabrication oracle sees: the clock and the locale's recent stream."""

    locale: Locale
    current_time: datetime
    recent_items: list[PublishedItem] = field(default_factory=list)


class NewsSource(Protocol):
    async def fetch(self, locale: Locale) -> list[RawCluster]: ...


class IngestionOracle(Protocol):
    async def run(self, cluster: RawCluster) -> IngestionDigest | None: ...


class DeduplicationOracle(Protocol):
    async def run(
        self, corpus: list[ContentRecord], candidate: DeduplicationCandidate
    ) -> DeduplicationVerdict | None: ...


class ClassificationOracle(Protocol):
    async def run(self, record: ContentRecord) -> ClassificationVerdict | None: ...


class CompositionOracle(Protocol):
    async def run(self, record: ContentRecord, locale: Locale) -> CompositionDraft | None: ...


class FabricationOracle(Protocol):
    async def run(self, context: FabricationContext) -> FabricationDraft | None: ...


class QuizOracle(Protocol):
    async def run(self, item: PublishedItem, locale: Locale) -> list[QuizQuestion] | None: ...
