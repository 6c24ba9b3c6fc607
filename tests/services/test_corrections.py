"""Tests for docpredict.services.corrections."""

import pytest

from docpredict.core.errors import MalformedInputError, PredictionNotFoundError
from docpredict.core.models import CorrectedDocumentInput, CorrectionRow
from docpredict.core.summary import summarize_prediction
from docpredict.services import BatchOrchestrator, CorrectionIngestor, correction_rows_from_records


@pytest.fixture
async def predicted(repository, registry, bus, ingest_rows, scripted_client, fast_retry):
    """A document with provided values A, B, C predicted as A, X, C."""
    document = await ingest_rows(["A", "B", "C"])
    client = scripted_client({"B": ("X", 0.9), "C": ("C", 0.5)})
    orchestrator = BatchOrchestrator(repository, client, registry, bus, retry_strategy=fast_retry)
    prediction = await orchestrator.create_prediction(document.id)
    results = (await repository.list_prediction_results(prediction.id, 1, -1)).items
    return document, prediction, results


def _input(document, prediction) -> CorrectedDocumentInput:
    return CorrectedDocumentInput(name="fixed.csv", document_id=document.id, prediction_id=prediction.id)


class TestCorrectionRows:
    def test_maps_export_columns(self):
        rows = correction_rows_from_records([
            {"predictionRecordId": " r1 ", "predictionValue": "15%", "confidence": "0.7", "MCO_NO": "M1"},
            {"predictionRecordId": "r2", "predictionValue": "B", "confidence": ""},
        ])
        assert rows == [
            CorrectionRow(prediction_record_id="r1", prediction_value="15%", confidence=0.7),
            CorrectionRow(prediction_record_id="r2", prediction_value="B", confidence=None),
        ]

    def test_blank_ids_are_skipped(self):
        assert correction_rows_from_records([{"predictionRecordId": "", "predictionValue": "x"}]) == []

    def test_missing_column(self):
        with pytest.raises(MalformedInputError) as exc_info:
            correction_rows_from_records([{"predictionValue": "x"}])
        assert exc_info.value.context.metadata["line"] == 1


class TestCorrectionIngestor:
    @pytest.mark.asyncio
    async def test_changed_value_is_stored(self, repository, predicted):
        document, prediction, results = predicted
        disagreeing = results[1]

        await CorrectionIngestor(repository).ingest(
            _input(document, prediction),
            [CorrectionRow(prediction_record_id=disagreeing.id, prediction_value="B")],
        )

        [correction] = await repository.list_prediction_corrections(prediction.id)
        assert correction.prediction_record_id == disagreeing.id
        assert correction.prediction_value == "B"
        assert correction.agree is True
        assert correction.confidence == disagreeing.confidence
        assert correction.provided_value == "B"

    @pytest.mark.asyncio
    async def test_unchanged_value_is_not_stored(self, repository, predicted):
        document, prediction, results = predicted

        await CorrectionIngestor(repository).ingest(
            _input(document, prediction),
            [
                CorrectionRow(prediction_record_id=results[0].id, prediction_value=" A "),
                CorrectionRow(prediction_record_id=results[1].id, prediction_value="X"),
            ],
        )

        assert await repository.count_prediction_corrections(prediction.id) == 0

    @pytest.mark.asyncio
    async def test_resubmission_is_idempotent(self, repository, predicted):
        document, prediction, results = predicted
        rows = [CorrectionRow(prediction_record_id=results[1].id, prediction_value="B", confidence=1.0)]
        ingestor = CorrectionIngestor(repository)

        await ingestor.ingest(_input(document, prediction), rows)
        await ingestor.ingest(_input(document, prediction), rows)

        assert await repository.count_prediction_corrections(prediction.id) == 1

    @pytest.mark.asyncio
    async def test_unknown_record_ids_are_ignored(self, repository, predicted):
        document, prediction, _ = predicted
        await CorrectionIngestor(repository).ingest(
            _input(document, prediction),
            [CorrectionRow(prediction_record_id="not-a-result", prediction_value="B")],
        )
        assert await repository.count_prediction_corrections(prediction.id) == 0

    @pytest.mark.asyncio
    async def test_original_results_untouched(self, repository, predicted):
        document, prediction, results = predicted
        before = await summarize_prediction(repository, prediction.id)

        await CorrectionIngestor(repository, page_size=1).ingest(
            _input(document, prediction),
            [CorrectionRow(prediction_record_id=results[2].id, prediction_value="Z")],
        )

        after = await summarize_prediction(repository, prediction.id)
        assert after.corrected_records == 1
        assert (after.total_count, after.agree_below_threshold) == (before.total_count, before.agree_below_threshold)

    @pytest.mark.asyncio
    async def test_unknown_prediction(self, repository, predicted):
        document, _, _ = predicted
        with pytest.raises(PredictionNotFoundError):
            await CorrectionIngestor(repository).ingest(
                CorrectedDocumentInput(name="x.csv", document_id=document.id, prediction_id="missing"), []
            )
