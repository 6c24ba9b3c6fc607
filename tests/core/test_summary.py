"""Tests for docpredict.core.summary: buckets, merging and stored-prediction summaries."""

import random
from datetime import datetime, timezone

import pytest

from docpredict.core.models import BatchPredictionValue, PredictionInput
from docpredict.core.summary import (
    Bucket,
    PerformanceSummary,
    classify,
    record_agrees,
    summarize,
    summarize_prediction,
)


def _records(n: int, seed: int = 7) -> list[dict]:
    rng = random.Random(seed)
    values = ["A", "B", "C"]
    return [
        {
            "provided_value": rng.choice(values),
            "prediction_value": rng.choice(values),
            "confidence": rng.random(),
        }
        for _ in range(n)
    ]


class TestClassify:
    def test_threshold_is_inclusive(self):
        assert classify(True, 0.8, 0.8) is Bucket.AGREE_ABOVE
        assert classify(False, 0.8, 0.8) is Bucket.DISAGREE_ABOVE

    def test_below(self):
        assert classify(True, 0.79, 0.8) is Bucket.AGREE_BELOW
        assert classify(False, 0.1, 0.8) is Bucket.DISAGREE_BELOW

    def test_missing_confidence_counts_as_zero(self):
        assert classify(True, None, 0.8) is Bucket.AGREE_BELOW


class TestSummarize:
    def test_three_row_example(self):
        records = [
            {"provided_value": "A", "prediction_value": "A", "confidence": 0.9},
            {"provided_value": "B", "prediction_value": "X", "confidence": 0.9},
            {"provided_value": "C", "prediction_value": "C", "confidence": 0.5},
        ]
        summary = summarize(records, 0.8)

        assert summary.total_count == 3
        assert summary.agree_above_threshold == 1
        assert summary.agree_below_threshold == 1
        assert summary.disagree_above_threshold == 1
        assert summary.disagree_below_threshold == 0

    def test_empty(self):
        summary = summarize([], 0.8)
        assert summary.total_count == 0
        assert summary.bucket_total == 0

    @pytest.mark.parametrize("n", [1, 10, 257])
    def test_buckets_sum_to_total(self, n):
        summary = summarize(_records(n), 0.5)
        assert summary.bucket_total == summary.total_count == n

    def test_stored_agree_flag_wins(self):
        assert record_agrees({"provided_value": "A", "prediction_value": "B", "agree": True}) is True
        assert record_agrees({"provided_value": "25%", "prediction_value": "0.25"}) is True

    def test_grand_total_defaults_to_total(self):
        assert summarize(_records(4)).grand_total == 4
        assert summarize(_records(4), grand_total=10).missing_count == 6


class TestMerge:
    def test_order_independent(self):
        records = _records(120)
        whole = summarize(records, 0.6)

        chunks = [records[i:i + 25] for i in range(0, len(records), 25)]
        forward = PerformanceSummary(confidence_threshold=0.6)
        for chunk in chunks:
            forward = forward.merge(summarize(chunk, 0.6))
        backward = PerformanceSummary(confidence_threshold=0.6)
        for chunk in reversed(chunks):
            backward = backward.merge(summarize(chunk, 0.6))

        assert forward == backward == whole

    def test_threshold_mismatch(self):
        with pytest.raises(ValueError, match="different confidence thresholds"):
            PerformanceSummary(confidence_threshold=0.5).merge(PerformanceSummary(confidence_threshold=0.8))


class TestToDict:
    def test_camel_case_keys(self):
        data = summarize([{"provided_value": "A", "prediction_value": "A", "confidence": 1.0}]).to_dict()
        assert data == {
            "totalCount": 1,
            "grandTotal": 1,
            "confidenceThreshold": 0.8,
            "agreeAboveThreshold": 1,
            "agreeBelowThreshold": 0,
            "disagreeAboveThreshold": 0,
            "disagreeBelowThreshold": 0,
            "correctedRecords": 0,
        }


class TestSummarizePrediction:
    @pytest.mark.asyncio
    async def test_pages_through_results(self, repository, ingest_rows):
        document = await ingest_rows(["A", "B", "C", "D", "E"])
        rows = (await repository.list_document_rows(document.id, 1, -1)).items
        values = [
            BatchPredictionValue(row_id=row.id, prediction_value="A", confidence=0.9, provided_value=row.provided_value)
            for row in rows[:4]
        ]
        prediction = await repository.insert_prediction(
            document,
            PredictionInput(model="wht_v4", date=datetime.now(timezone.utc), prediction_field="WHT_PER", results=values),
        )

        summary = await summarize_prediction(repository, prediction.id, 0.8, page_size=2)

        assert summary.total_count == 4
        assert summary.agree_above_threshold == 1
        assert summary.disagree_above_threshold == 3
        assert summary.grand_total == 5
        assert summary.missing_count == 1
        assert summary.corrected_records == 0

    @pytest.mark.asyncio
    async def test_unknown_prediction(self, repository):
        from docpredict.core.errors import PredictionNotFoundError

        with pytest.raises(PredictionNotFoundError):
            await summarize_prediction(repository, "missing")
