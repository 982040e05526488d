from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from feedcurator.models.errors import ValidationError

SUPPORTED_COUNTRIES = ("FR", "US")
SUPPORTED_LANGUAGES = ("EN", "FR")


class DeduplicationState(str, Enum):
    PENDING = "PENDING"
    COMPLETE = "COMPLETE"


class ClassificationState(str, Enum):
    PENDING = "PENDING"
    COMPLETE = "COMPLETE"


class Tier(str, Enum):
    STANDARD = "STANDARD"
    NICHE = "NICHE"
    ARCHIVED = "ARCHIVED"


class AuthenticityStatus(str, Enum):
    AUTHENTIC = "AUTHENTIC"
    FABRICATED = "FABRICATED"


class Category(str, Enum):
    POLITICS = "POLITICS"
    BUSINESS = "BUSINESS"
    TECHNOLOGY = "TECHNOLOGY"
    SCIENCE = "SCIENCE"
    HEALTH = "HEALTH"
    ENVIRONMENT = "ENVIRONMENT"
    SOCIETY = "SOCIETY"
    ENTERTAINMENT = "ENTERTAINMENT"
    SPORTS = "SPORTS"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, value: Any) -> "Category":
        """Case-insensitive lookup; anything unknown becomes OTHER."""
        if isinstance(value, Category):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.OTHER


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class Locale:
    """A (country, language) target the pipeline runs for."""

    country: str
    language: str

    def __post_init__(self) -> None:
        country = str(self.country).upper()
        language = str(self.language).upper()
        if country not in SUPPORTED_COUNTRIES:
            raise ValidationError(
                f"Invalid country: {self.country}. "
                f"Supported countries are: {', '.join(SUPPORTED_COUNTRIES)}"
            )
        if language not in SUPPORTED_LANGUAGES:
            raise ValidationError(
                f"Invalid language: {self.language}. "
                f"Supported languages are: {', '.join(SUPPORTED_LANGUAGES)}"
            )
        object.__setattr__(self, "country", country)
        object.__setattr__(self, "language", language)

    def __str__(self) -> str:
        return f"{self.country}/{self.language}"


@dataclass
class RawArticle:
    """One source article as delivered by a news feed."""

    id: str
    headline: str
    body: str


@dataclass
class RawCluster:
    """A group of source articles believed to cover one event."""

    articles: list[RawArticle]
    published_at: datetime

    @property
    def article_ids(self) -> list[str]:
        return [article.id for article in self.articles]

    def __len__(self) -> int:
        return len(self.articles)


@dataclass
class Angle:
    """An independent-viewpoint narrative extracted from a cluster."""

    narrative: str


@dataclass
class ContentRecord:
    """The persisted, deduplicated unit of news coverage (a "report")."""

    id: str
    locale: Locale
    narrative: str
    background: str
    source_references: list[str]
    dateline: datetime
    category: Category = Category.OTHER
    angles: list[Angle] = field(default_factory=list)
    deduplication_state: DeduplicationState = DeduplicationState.PENDING
    duplicate_of: str | None = None
    tier: Tier | None = None
    classification_state: ClassificationState = ClassificationState.PENDING
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.source_references = _unique(self.source_references)
        if not self.source_references:
            raise ValidationError("A content record needs at least one source reference")
        if not self.narrative or not self.narrative.strip():
            raise ValidationError("A content record needs a narrative")
        if self.duplicate_of is not None:
            if self.duplicate_of == self.id:
                raise ValidationError("A content record cannot duplicate itself")
            if self.deduplication_state is not DeduplicationState.COMPLETE:
                raise ValidationError("A duplicate record must have completed deduplication")
        has_tier = self.tier is not None
        is_classified = self.classification_state is ClassificationState.COMPLETE
        if has_tier != is_classified:
            raise ValidationError("Tier must be present exactly when classification is complete")

    @property
    def is_duplicate(self) -> bool:
        return self.duplicate_of is not None

    @property
    def is_settled(self) -> bool:
        return (
            self.deduplication_state is DeduplicationState.COMPLETE
            and self.duplicate_of is None
        )

    def add_source_references(self, source_ids: list[str]) -> list[str]:
        """Union *source_ids* into the references; returns the ids actually added."""
        added = [sid for sid in _unique(source_ids) if sid not in self.source_references]
        self.source_references.extend(added)
        if added:
            self.updated_at = utcnow()
        return added

    def complete_deduplication(self, duplicate_of: str | None = None) -> None:
        if self.deduplication_state is DeduplicationState.COMPLETE:
            raise ValidationError(f"Deduplication of record {self.id} is already complete")
        if duplicate_of is not None and duplicate_of == self.id:
            raise ValidationError("A content record cannot duplicate itself")
        self.deduplication_state = DeduplicationState.COMPLETE
        self.duplicate_of = duplicate_of
        self.updated_at = utcnow()

    def complete_classification(self, tier: Tier) -> None:
        if self.classification_state is ClassificationState.COMPLETE:
            raise ValidationError(f"Record {self.id} is already classified")
        self.tier = Tier(tier)
        self.classification_state = ClassificationState.COMPLETE
        self.updated_at = utcnow()


@dataclass(frozen=True)
class Authenticity:
    """Whether a published item is real; fabricated items must say why."""

    status: AuthenticityStatus = AuthenticityStatus.AUTHENTIC
    clarification: str | None = None

    def __post_init__(self) -> None:
        status = AuthenticityStatus(self.status)
        object.__setattr__(self, "status", status)
        if status is AuthenticityStatus.FABRICATED:
            if not self.clarification or not self.clarification.strip():
                raise ValidationError("Fabricated items must include a clarification")
        elif self.clarification is not None:
            raise ValidationError("Authentic items cannot carry a clarification")

    @classmethod
    def fabricated(cls, clarification: str) -> "Authenticity":
        return cls(AuthenticityStatus.FABRICATED, clarification)

    @property
    def is_fabricated(self) -> bool:
        return self.status is AuthenticityStatus.FABRICATED


@dataclass
class Frame:
    """A short reader-facing variant of a published item."""

    headline: str
    body: str


MIN_QUIZ_ANSWERS = 2
MAX_QUIZ_ANSWERS = 6


@dataclass
class QuizQuestion:
    """A multiple-choice comprehension question attached to a published item."""

    question: str
    answers: list[str]
    correct_index: int

    def __post_init__(self) -> None:
        if not self.question or not self.question.strip():
            raise ValidationError("A quiz question needs text")
        if not MIN_QUIZ_ANSWERS <= len(self.answers) <= MAX_QUIZ_ANSWERS:
            raise ValidationError(
                f"A quiz question needs {MIN_QUIZ_ANSWERS} to {MAX_QUIZ_ANSWERS} answers, "
                f"got {len(self.answers)}"
            )
        if any(not answer or not answer.strip() for answer in self.answers):
            raise ValidationError("Quiz answers cannot be empty")
        if isinstance(self.correct_index, bool) or not 0 <= self.correct_index < len(self.answers):
            raise ValidationError(
                f"correct_index ({self.correct_index}) must point into the "
                f"{len(self.answers)} answers"
            )

    @property
    def correct_answer(self) -> str:
        return self.answers[self.correct_index]


@dataclass
class PublishedItem:
    """A reader-facing article, either composed from records or synthetic."""

    id: str
    locale: Locale
    published_at: datetime
    headline: str
    body: str
    authenticity: Authenticity = field(default_factory=Authenticity)
    category: Category = Category.OTHER
    frames: list[Frame] = field(default_factory=list)
    record_ids: list[str] = field(default_factory=list)
    quiz: list[QuizQuestion] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.headline or not self.headline.strip():
            raise ValidationError("A published item needs a headline")
        if self.authenticity.is_fabricated and self.record_ids:
            raise ValidationError("Fabricated items cannot link to content records")

    @property
    def is_fabricated(self) -> bool:
        return self.authenticity.is_fabricated

    @property
    def has_quiz(self) -> bool:
        return bool(self.quiz)


@dataclass
class DeduplicationVerdict:
    duplicate_of_id: str | None = None


@dataclass
class ClassificationVerdict:
    tier: Tier
    reason: str = ""


@dataclass
class CompositionDraft:
    headline: str
    body: str
    frames: list[Frame] = field(default_factory=list)


@dataclass
class FabricationDraft:
    headline: str
    body: str
    clarification: str
    category: Category = Category.OTHER
    insert_after_index: int | None = None


@dataclass
class IngestionDigest:
    """Narrative content extracted from a cluster before it becomes a record."""

    narrative: str
    background: str = ""
    angles: list[Angle] = field(default_factory=list)
    category: Category = Category.OTHER


def _unique(values: list[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered
