"""
Domain model for documents, predictions and corrections.

Manifesto:
    Every record the pipeline touches is an immutable dataclass. State
    changes (a document completing, a prediction gaining its summary)
    produce new instances via :func:`dataclasses.replace`; nothing mutates a
    stored record in place.

Architecture:
    ::

        Document ──< DocumentRow
            │
            └──< Prediction ──< PredictionResult ──< PredictionCorrection

        Prediction.performance_summary   computed on read, never stored
        PredictionResult.agree           computed once at write time

Tags:
    domain-model, dataclasses, immutability, pagination

Doc-Types:
    api-reference
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, TypeVar
from urllib.parse import quote

from docpredict.core.compare import canonical_key, compare
from docpredict.core.summary import PerformanceSummary, classify, Bucket

T = TypeVar("T")


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── URL helpers ──────────────────────────────────────────────────────────


def build_original_url(document_id: str, name: str) -> str:
    return f"/csv-document/{document_id}/{quote(name)}"


def build_prediction_url(document_id: str, prediction_id: str) -> str:
    return f"/csv-document/{document_id}/prediction/{prediction_id}/result.csv"


# ── Enums ────────────────────────────────────────────────────────────────


class DocumentStatus(str, Enum):
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    ERROR = "Error"
    DELETED = "Deleted"


class PredictionResultFilter(str, Enum):
    """Subsets of prediction results, keyed on agreement and confidence."""

    ALL = "All"
    ALL_DISAGREE = "AllDisagree"
    ALL_BELOW_CONFIDENCE = "AllBelowConfidence"
    AGREE_BELOW_CONFIDENCE = "AgreeBelowConfidence"
    DISAGREE_ABOVE_CONFIDENCE = "DisagreeAboveConfidence"
    DISAGREE_BELOW_CONFIDENCE = "DisagreeBelowConfidence"

    def matches(self, result: PredictionResult, threshold: float) -> bool:
        if self is PredictionResultFilter.ALL:
            return True
        bucket = classify(result.agree, result.confidence, threshold)
        if self is PredictionResultFilter.ALL_DISAGREE:
            return not result.agree
        if self is PredictionResultFilter.ALL_BELOW_CONFIDENCE:
            return bucket in (Bucket.AGREE_BELOW, Bucket.DISAGREE_BELOW)
        if self is PredictionResultFilter.AGREE_BELOW_CONFIDENCE:
            return bucket is Bucket.AGREE_BELOW
        if self is PredictionResultFilter.DISAGREE_ABOVE_CONFIDENCE:
            return bucket is Bucket.DISAGREE_ABOVE
        return bucket is Bucket.DISAGREE_BELOW


# ── Inputs ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DocumentInput:
    name: str
    description: str | None = None
    worksheet_name: str | None = None
    worksheet_start_row: int | None = None
    predict_field: str | None = None


@dataclass(frozen=True)
class CorrectedDocumentInput:
    name: str
    document_id: str
    prediction_id: str
    description: str | None = None


@dataclass(frozen=True)
class CorrectionRow:
    """One edited row of an exported prediction."""

    prediction_record_id: str
    prediction_value: Any
    confidence: float | None = None


@dataclass(frozen=True)
class BatchPredictionValue:
    row_id: str
    prediction_value: Any
    confidence: float
    provided_value: Any = None


@dataclass(frozen=True)
class BatchPredictionResult:
    """What a prediction client returns for one page of rows."""

    model: str
    date: datetime
    prediction_field: str
    results: list[BatchPredictionValue] = field(default_factory=list)


@dataclass(frozen=True)
class PredictionInput:
    """Metadata and accumulated results of one orchestration run."""

    model: str
    date: datetime
    prediction_field: str
    results: list[BatchPredictionValue] = field(default_factory=list)


# ── Stored records ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class Document:
    id: str
    name: str
    status: DocumentStatus
    original_url: str
    description: str | None = None
    worksheet_name: str | None = None
    worksheet_start_row: int | None = None
    predict_field: str | None = None
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def create(cls, input: DocumentInput, predict_field: str | None = None) -> Document:
        document_id = new_id()
        return cls(
            id=document_id,
            name=input.name,
            status=DocumentStatus.IN_PROGRESS,
            original_url=build_original_url(document_id, input.name),
            description=input.description,
            worksheet_name=input.worksheet_name,
            worksheet_start_row=input.worksheet_start_row,
            predict_field=predict_field or input.predict_field,
        )

    def with_status(self, status: DocumentStatus) -> Document:
        return replace(self, status=status)


@dataclass(frozen=True)
class DocumentRow:
    id: str
    document_id: str
    data: str
    row_number: int
    provided_value: Any = None

    @property
    def record(self) -> dict[str, Any]:
        """The source columns of this row."""
        return json.loads(self.data)

    @classmethod
    def from_record(
        cls,
        document_id: str,
        record: dict[str, Any],
        row_number: int,
        predict_field: str | None = None,
    ) -> DocumentRow:
        provided = record.get(predict_field) if predict_field else None
        return cls(
            id=new_id(),
            document_id=document_id,
            data=json.dumps(record, default=str),
            row_number=row_number,
            provided_value=provided,
        )


@dataclass(frozen=True)
class Prediction:
    id: str
    document_id: str
    model: str
    date: datetime
    prediction_field: str
    performance_summary: PerformanceSummary | None = None

    @property
    def prediction_url(self) -> str:
        return build_prediction_url(self.document_id, self.id)

    def with_summary(self, summary: PerformanceSummary) -> Prediction:
        return replace(self, performance_summary=summary)


@dataclass(frozen=True)
class PredictionResult:
    id: str
    document_id: str
    prediction_id: str
    row_id: str
    prediction_value: Any
    confidence: float
    agree: bool
    provided_value: Any = None


@dataclass(frozen=True)
class PredictionCorrection:
    id: str
    document_id: str
    prediction_id: str
    prediction_record_id: str
    prediction_value: Any
    agree: bool
    confidence: float
    provided_value: Any = None

    @property
    def key(self) -> tuple[str, str, str]:
        """Identity used to keep re-submitted corrections from duplicating.

        Values are keyed canonically, so ``"15%"`` and ``"0.15"`` are the same correction.
        """
        return (self.prediction_id, self.prediction_record_id, canonical_key(self.prediction_value))


def to_prediction_results(
    values: Iterable[BatchPredictionValue],
    document_id: str,
    prediction_id: str,
) -> list[PredictionResult]:
    """Turn client values into stored results, fixing ``agree`` once."""
    return [
        PredictionResult(
            id=new_id(),
            document_id=document_id,
            prediction_id=prediction_id,
            row_id=value.row_id,
            prediction_value=value.prediction_value,
            confidence=value.confidence,
            agree=compare(value.prediction_value, value.provided_value),
            provided_value=value.provided_value,
        )
        for value in values
    ]


# ── Pagination ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a listing. Pages are 1-based; ``page_size == -1`` is everything."""

    items: list[T]
    page: int
    page_size: int
    total_count: int

    @property
    def has_more(self) -> bool:
        if self.page_size < 0:
            return False
        return self.page * self.page_size < self.total_count

    @classmethod
    def slice(cls, items: Sequence[T], page: int, page_size: int) -> Page[T]:
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")
        if page_size == 0 or page_size < -1:
            raise ValueError(f"page_size must be positive or -1, got {page_size}")
        if page_size == -1:
            return cls(items=list(items), page=page, page_size=page_size, total_count=len(items))
        start = (page - 1) * page_size
        return cls(
            items=list(items[start:start + page_size]),
            page=page,
            page_size=page_size,
            total_count=len(items),
        )


__all__ = [
    "BatchPredictionResult",
    "BatchPredictionValue",
    "CorrectedDocumentInput",
    "CorrectionRow",
    "Document",
    "DocumentInput",
    "DocumentRow",
    "DocumentStatus",
    "Page",
    "Prediction",
    "PredictionCorrection",
    "PredictionInput",
    "PredictionResult",
    "PredictionResultFilter",
    "build_original_url",
    "build_prediction_url",
    "new_id",
    "to_prediction_results",
    "utcnow",
]
