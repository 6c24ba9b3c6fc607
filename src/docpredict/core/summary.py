"""
Performance summary engine.

Turns a set of ``(provided, predicted, confidence, agree)`` tuples into the
agreement/confidence counters shown next to every prediction.

Manifesto:
    The summary is computed on read from the stored per-row results, never
    stored next to them, so the two can never drift apart. Large documents
    are aggregated page by page, so the aggregation has to be order
    independent: counting is a commutative monoid and :meth:`merge` is its
    operation.

Architecture:
    ::

        records ──► classify(agree, confidence, threshold) ──► Bucket
                                                                │
        PerformanceSummary.add() ◄──────────────────────────────┘
              │
              ├── merge(other)          page summaries combine in any order
              ├── corrected_records     count of PredictionCorrection rows
              └── grand_total           rows in the document (gap detection)

Invariants:
    - exactly one bucket counter increments per tuple
    - sum of the four buckets == total_count == number of tuples

Examples:
    >>> records = [
    ...     {"provided_value": "A", "prediction_value": "A", "confidence": 0.9},
    ...     {"provided_value": "B", "prediction_value": "X", "confidence": 0.9},
    ...     {"provided_value": "C", "prediction_value": "C", "confidence": 0.5},
    ... ]
    >>> s = summarize(records, 0.8)
    >>> (s.agree_above_threshold, s.agree_below_threshold, s.disagree_above_threshold)
    (1, 1, 1)

Tags:
    aggregation, statistics, confidence, agreement
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from docpredict.core.compare import compare
from docpredict.core.settings import DEFAULT_CONFIDENCE_THRESHOLD

if TYPE_CHECKING:
    from docpredict.core.protocols import Repository


class Bucket(str, Enum):
    AGREE_ABOVE = "agree_above_threshold"
    AGREE_BELOW = "agree_below_threshold"
    DISAGREE_ABOVE = "disagree_above_threshold"
    DISAGREE_BELOW = "disagree_below_threshold"


def classify(agree: bool, confidence: float | None, threshold: float) -> Bucket:
    """Pick the single bucket for one result."""
    above = (confidence or 0.0) >= threshold
    if agree:
        return Bucket.AGREE_ABOVE if above else Bucket.AGREE_BELOW
    return Bucket.DISAGREE_ABOVE if above else Bucket.DISAGREE_BELOW


def _field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def record_agrees(record: Any) -> bool:
    """Stored ``agree`` flag, or the compare result for tuples without one."""
    agree = _field(record, "agree")
    if agree is None:
        return compare(_field(record, "prediction_value"), _field(record, "provided_value"))
    return bool(agree)


@dataclass
class PerformanceSummary:
    """Agreement/confidence counters for one prediction."""

    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD
    total_count: int = 0
    agree_above_threshold: int = 0
    agree_below_threshold: int = 0
    disagree_above_threshold: int = 0
    disagree_below_threshold: int = 0
    corrected_records: int = 0
    grand_total: int = 0

    def add(self, *, agree: bool, confidence: float | None) -> PerformanceSummary:
        bucket = classify(agree, confidence, self.confidence_threshold)
        setattr(self, bucket.value, getattr(self, bucket.value) + 1)
        self.total_count += 1
        return self

    def add_record(self, record: Any) -> PerformanceSummary:
        return self.add(agree=record_agrees(record), confidence=_field(record, "confidence"))

    def merge(self, other: PerformanceSummary) -> PerformanceSummary:
        """Combine two summaries computed with the same threshold."""
        if other.confidence_threshold != self.confidence_threshold:
            raise ValueError(
                "Cannot merge summaries with different confidence thresholds: "
                f"{self.confidence_threshold} != {other.confidence_threshold}"
            )
        return PerformanceSummary(
            confidence_threshold=self.confidence_threshold,
            total_count=self.total_count + other.total_count,
            agree_above_threshold=self.agree_above_threshold + other.agree_above_threshold,
            agree_below_threshold=self.agree_below_threshold + other.agree_below_threshold,
            disagree_above_threshold=self.disagree_above_threshold + other.disagree_above_threshold,
            disagree_below_threshold=self.disagree_below_threshold + other.disagree_below_threshold,
            corrected_records=self.corrected_records + other.corrected_records,
            grand_total=self.grand_total + other.grand_total,
        )

    @property
    def bucket_total(self) -> int:
        return (
            self.agree_above_threshold
            + self.agree_below_threshold
            + self.disagree_above_threshold
            + self.disagree_below_threshold
        )

    @property
    def missing_count(self) -> int:
        """Document rows without a result (skipped pages)."""
        return max(self.grand_total - self.total_count, 0)

    def to_dict(self) -> dict[str, Any]:
        """camelCase view matching the external summary model."""
        return {
            "totalCount": self.total_count,
            "grandTotal": self.grand_total,
            "confidenceThreshold": self.confidence_threshold,
            "agreeAboveThreshold": self.agree_above_threshold,
            "agreeBelowThreshold": self.agree_below_threshold,
            "disagreeAboveThreshold": self.disagree_above_threshold,
            "disagreeBelowThreshold": self.disagree_below_threshold,
            "correctedRecords": self.corrected_records,
        }


def summarize(
    records: Iterable[Any],
    threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    *,
    corrected_records: int = 0,
    grand_total: int | None = None,
) -> PerformanceSummary:
    """Aggregate records (mappings or objects) into a summary."""
    summary = PerformanceSummary(confidence_threshold=threshold)
    for record in records:
        summary.add_record(record)
    summary.corrected_records = corrected_records
    summary.grand_total = summary.total_count if grand_total is None else grand_total
    return summary


async def summarize_prediction(
    repository: Repository,
    prediction_id: str,
    threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    *,
    page_size: int = 30000,
) -> PerformanceSummary:
    """Aggregate a stored prediction page by page.

    Raises:
        PredictionNotFoundError: if the prediction does not exist
    """
    prediction = await repository.get_prediction(prediction_id)

    summary = PerformanceSummary(confidence_threshold=threshold)
    page = 1
    while True:
        result_page = await repository.list_prediction_results(prediction_id, page, page_size)
        summary = summary.merge(summarize(result_page.items, threshold, grand_total=0))
        if not result_page.has_more:
            break
        page += 1

    summary.corrected_records = await repository.count_prediction_corrections(prediction_id)
    summary.grand_total = await repository.count_document_rows(prediction.document_id)
    return summary


__all__ = [
    "Bucket",
    "PerformanceSummary",
    "classify",
    "record_agrees",
    "summarize",
    "summarize_prediction",
]
