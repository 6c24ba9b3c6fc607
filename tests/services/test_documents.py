"""Tests for docpredict.services.documents: ingestion, summaries, export and corrections end to end."""

import csv
import io

import pytest

from docpredict.core.errors import DocumentNotFoundError, ParseError, SourceNotFoundError
from docpredict.core.events import DOCUMENT_EVENTS, EventAction
from docpredict.core.models import (
    CorrectedDocumentInput,
    DocumentInput,
    DocumentStatus,
    PredictionResultFilter,
)
from docpredict.registry import InMemoryModelRegistry
from docpredict.services import BatchOrchestrator, DocumentService
from docpredict.sources import FileRowSource
from docpredict.storage import OriginalFileStore


@pytest.fixture
def csv_file(tmp_path):
    path = tmp_path / "withholding.csv"
    path.write_text(
        "MCO_NO,NEC_DESCRIPTION,WHT_PER\n"
        "M1,Dividend,A\n"
        "M2,Interest,B\n"
        "M3,Royalty,C\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def service(repository, registry, bus, tmp_path):
    return DocumentService(
        repository,
        registry,
        bus,
        originals=OriginalFileStore(tmp_path / "originals"),
        confidence_threshold=0.8,
        row_batch_size=2,
        page_size=2,
    )


@pytest.fixture
async def orchestrator(repository, registry, bus, scripted_client, fast_retry):
    client = scripted_client({"B": ("X", 0.9), "C": ("C", 0.5)})
    orchestrator = BatchOrchestrator(repository, client, registry, bus, page_size=2, retry_strategy=fast_retry)
    await orchestrator.start()
    yield orchestrator
    await orchestrator.stop()


class TestAddDocument:
    @pytest.mark.asyncio
    async def test_rows_then_event(self, service, repository, bus, csv_file):
        events = bus.subscribe(DOCUMENT_EVENTS)

        document = await service.add_document(DocumentInput(name="withholding.csv"), FileRowSource(csv_file))

        assert document.predict_field == "WHT_PER"
        assert document.status is DocumentStatus.IN_PROGRESS
        event = await events.get()
        assert event.action is EventAction.ADD
        assert event.target.id == document.id

        rows = await service.list_document_rows(document.id)
        assert [r.row_number for r in rows.items] == [1, 2, 3]
        assert [r.provided_value for r in rows.items] == ["A", "B", "C"]

    @pytest.mark.asyncio
    async def test_explicit_predict_field(self, service, csv_file):
        document = await service.add_document(
            DocumentInput(name="w.csv", predict_field="MCO_NO"), FileRowSource(csv_file)
        )
        rows = await service.list_document_rows(document.id)
        assert rows.items[0].provided_value == "M1"

    @pytest.mark.asyncio
    async def test_no_models_leaves_predict_field_empty(self, repository, bus, csv_file):
        service = DocumentService(repository, InMemoryModelRegistry(), bus)
        document = await service.add_document(DocumentInput(name="w.csv"), FileRowSource(csv_file))
        assert document.predict_field is None

    @pytest.mark.asyncio
    async def test_source_failure_marks_error(self, service, repository, bus, tmp_path):
        path = tmp_path / "bad.csv"
        path.write_text("A,B\n" + "x" * 200_000 + ",2\n", encoding="utf-8")
        events = bus.subscribe(DOCUMENT_EVENTS)

        with pytest.raises(ParseError):
            await service.add_document(DocumentInput(name="bad.csv"), FileRowSource(path))

        [document] = (await service.list_documents()).items
        assert document.status is DocumentStatus.ERROR
        assert (await events.get()).action is EventAction.UPDATE

    @pytest.mark.asyncio
    async def test_original_is_kept(self, service, csv_file):
        document = await service.add_document(DocumentInput(name="withholding.csv"), FileRowSource(csv_file))
        csv_file.write_text("replaced\n", encoding="utf-8")

        original = await service.get_original_document(document.id)

        assert original.name == "withholding.csv"
        assert original.read_text(encoding="utf-8").startswith("MCO_NO,NEC_DESCRIPTION,WHT_PER\n")
        assert document.original_url == f"/csv-document/{document.id}/withholding.csv"

    @pytest.mark.asyncio
    async def test_missing_source_marks_error(self, service, tmp_path):
        with pytest.raises(SourceNotFoundError):
            await service.add_document(DocumentInput(name="nope.csv"), FileRowSource(tmp_path / "nope.csv"))

        [document] = (await service.list_documents()).items
        assert document.status is DocumentStatus.ERROR
        with pytest.raises(SourceNotFoundError):
            await service.get_original_document(document.id)

    @pytest.mark.asyncio
    async def test_original_without_store(self, repository, registry, bus, csv_file):
        service = DocumentService(repository, registry, bus)
        document = await service.add_document(DocumentInput(name="w.csv"), FileRowSource(csv_file))

        with pytest.raises(SourceNotFoundError):
            await service.get_original_document(document.id)
        with pytest.raises(DocumentNotFoundError):
            await service.get_original_document("missing")

    @pytest.mark.asyncio
    async def test_delete_is_soft(self, service, bus, csv_file):
        document = await service.add_document(DocumentInput(name="w.csv"), FileRowSource(csv_file))
        events = bus.subscribe(DOCUMENT_EVENTS)

        deleted = await service.delete_document(document.id)

        assert deleted.status is DocumentStatus.DELETED
        assert (await events.get()).action is EventAction.DELETE
        assert (await service.list_document_rows(document.id)).total_count == 3


class TestPredictions:
    @pytest.mark.asyncio
    async def test_ingest_to_summary(self, service, orchestrator, csv_file):
        document = await service.add_document(DocumentInput(name="w.csv"), FileRowSource(csv_file))
        await orchestrator.drain()

        assert (await service.get_document(document.id)).status is DocumentStatus.COMPLETED
        [prediction] = await service.list_predictions(document.id)
        summary = prediction.performance_summary
        assert summary.to_dict() == {
            "totalCount": 3,
            "grandTotal": 3,
            "confidenceThreshold": 0.8,
            "agreeAboveThreshold": 1,
            "agreeBelowThreshold": 1,
            "disagreeAboveThreshold": 1,
            "disagreeBelowThreshold": 0,
            "correctedRecords": 0,
        }
        assert prediction.prediction_url.endswith(f"/prediction/{prediction.id}/result.csv")

        disagree = await service.list_prediction_results(prediction.id, filter=PredictionResultFilter.ALL_DISAGREE)
        assert [r.prediction_value for r in disagree.items] == ["X"]

    @pytest.mark.asyncio
    async def test_export_then_correct(self, service, orchestrator, csv_file, tmp_path):
        document = await service.add_document(DocumentInput(name="w.csv"), FileRowSource(csv_file))
        await orchestrator.drain()
        [prediction] = await service.list_predictions(document.id)

        stream = io.StringIO()
        assert await service.export_prediction_csv(prediction.id, stream) == 3

        records = list(csv.DictReader(io.StringIO(stream.getvalue())))
        assert list(records[0]) == [
            "MCO_NO", "NEC_DESCRIPTION", "WHT_PER", "predictionRecordId", "predictionValue", "confidence", "agree",
        ]
        assert [r["predictionValue"] for r in records] == ["A", "X", "C"]

        records[1]["predictionValue"] = "B"
        edited = tmp_path / "edited.csv"
        with edited.open("w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=list(records[0]))
            writer.writeheader()
            writer.writerows(records)

        corrected = CorrectedDocumentInput(name="edited.csv", document_id=document.id, prediction_id=prediction.id)
        await service.add_corrected_document(corrected, FileRowSource(edited))
        await service.add_corrected_document(corrected, FileRowSource(edited))

        summary = (await service.get_prediction(prediction.id)).performance_summary
        assert summary.corrected_records == 1
        assert summary.disagree_above_threshold == 1
