"""
Document service: ingestion, listings, summaries and export.

Manifesto:
    Callers (the CLI, tests, any future API layer) should not have to know
    that ingestion is a stream of batch inserts followed by an event, or that
    a prediction's summary is computed from its stored results. This service
    is the one entry point for both.

Ordering:
    ``DocumentEvents/Add`` is published only after every row batch has been
    written, so the orchestrator never sees a partially ingested document.

Tags:
    documents, ingestion, summaries, export, csv
"""

from __future__ import annotations

import asyncio
import csv
from pathlib import Path
from typing import Any, TextIO

from docpredict.core.errors import NoDefaultModelError, SourceNotFoundError
from docpredict.core.events import DOCUMENT_EVENTS, EventBus
from docpredict.core.events.manager import EventManager
from docpredict.core.logging import LogContext, get_logger
from docpredict.core.models import (
    CorrectedDocumentInput,
    Document,
    DocumentInput,
    DocumentRow,
    DocumentStatus,
    Page,
    Prediction,
    PredictionResult,
    PredictionResultFilter,
)
from docpredict.core.protocols import ModelRegistry, Repository, RowSource
from docpredict.core.settings import DEFAULT_CONFIDENCE_THRESHOLD, DEFAULT_PAGE_SIZE
from docpredict.core.summary import PerformanceSummary, summarize_prediction
from docpredict.services.corrections import (
    CONFIDENCE_COLUMN,
    RECORD_ID_COLUMN,
    VALUE_COLUMN,
    CorrectionIngestor,
    correction_rows_from_records,
)
from docpredict.storage.originals import OriginalFileStore

log = get_logger(__name__)

AGREE_COLUMN = "agree"
EXPORT_COLUMNS = (RECORD_ID_COLUMN, VALUE_COLUMN, CONFIDENCE_COLUMN, AGREE_COLUMN)


class DocumentService:
    def __init__(
        self,
        repository: Repository,
        registry: ModelRegistry,
        bus: EventBus,
        *,
        corrections: CorrectionIngestor | None = None,
        originals: OriginalFileStore | None = None,
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        row_batch_size: int = DEFAULT_PAGE_SIZE,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        self.repository = repository
        self.registry = registry
        self.corrections = corrections or CorrectionIngestor(repository, page_size=page_size)
        self.originals = originals
        self.confidence_threshold = confidence_threshold
        self.row_batch_size = row_batch_size
        self.page_size = page_size
        self.documents: EventManager[Document] = EventManager(bus, DOCUMENT_EVENTS)

    # ── Ingestion ────────────────────────────────────────────────────

    def _default_predict_field(self) -> str | None:
        try:
            return self.registry.get_default_model().label
        except NoDefaultModelError:
            return None

    async def add_document(self, input: DocumentInput, source: RowSource) -> Document:
        """Store the document and all its rows, then publish DocumentEvents/Add."""
        predict_field = input.predict_field or self._default_predict_field()
        document = await self.repository.insert_document(Document.create(input, predict_field))

        async with LogContext(document_id=document.id):
            log.info("document_ingest_started", name=document.name, predict_field=predict_field)
            batches = source.stream(self.row_batch_size)
            row_number = 0
            try:
                if self.originals is not None:
                    await self.originals.save(document, source.path)
                while True:
                    records = await asyncio.to_thread(next, batches, None)
                    if records is None:
                        break
                    rows = []
                    for record in records:
                        row_number += 1
                        rows.append(DocumentRow.from_record(document.id, record, row_number, predict_field))
                    await self.repository.insert_document_rows(rows)
                    log.debug("document_rows_inserted", rows=len(rows), total=row_number)
            except Exception:
                document = await self.repository.update_document_status(document.id, DocumentStatus.ERROR)
                await self.documents.update(document)
                log.error("document_ingest_failed", rows=row_number)
                raise

            log.info("document_ingested", rows=row_number)
            return await self.documents.add(document)

    async def add_corrected_document(self, input: CorrectedDocumentInput, source: RowSource) -> None:
        records = [record for batch in source.stream(self.row_batch_size) for record in batch]
        await self.corrections.ingest(input, correction_rows_from_records(records))

    # ── Documents ────────────────────────────────────────────────────

    async def get_document(self, document_id: str) -> Document:
        return await self.repository.get_document(document_id)

    async def get_original_document(self, document_id: str) -> Path:
        """Path of the file the document was ingested from.

        Raises:
            DocumentNotFoundError: if the document does not exist
            SourceNotFoundError: if no original was kept for it
        """
        document = await self.repository.get_document(document_id)
        if self.originals is None:
            raise SourceNotFoundError("Original files are not kept").with_context(document_id=document_id)
        return self.originals.open(document)

    async def list_documents(
        self, page: int = 1, page_size: int = -1, status: DocumentStatus | None = None
    ) -> Page[Document]:
        return await self.repository.list_documents(page, page_size, status)

    async def delete_document(self, document_id: str) -> Document:
        """Soft delete: rows and predictions are kept."""
        document = await self.repository.update_document_status(document_id, DocumentStatus.DELETED)
        log.info("document_deleted", document_id=document_id)
        return await self.documents.delete(document)

    async def list_document_rows(self, document_id: str, page: int = 1, page_size: int = -1) -> Page[DocumentRow]:
        return await self.repository.list_document_rows(document_id, page, page_size)

    # ── Predictions ──────────────────────────────────────────────────

    async def get_performance_summary(self, prediction_id: str) -> PerformanceSummary:
        return await summarize_prediction(
            self.repository, prediction_id, self.confidence_threshold, page_size=self.page_size
        )

    async def get_prediction(self, prediction_id: str) -> Prediction:
        prediction = await self.repository.get_prediction(prediction_id)
        return prediction.with_summary(await self.get_performance_summary(prediction_id))

    async def list_predictions(self, document_id: str) -> list[Prediction]:
        predictions = await self.repository.list_predictions(document_id)
        return [p.with_summary(await self.get_performance_summary(p.id)) for p in predictions]

    async def list_prediction_results(
        self,
        prediction_id: str,
        page: int = 1,
        page_size: int = -1,
        filter: PredictionResultFilter = PredictionResultFilter.ALL,
    ) -> Page[PredictionResult]:
        return await self.repository.list_prediction_results(prediction_id, page, page_size, filter)

    # ── Export ───────────────────────────────────────────────────────

    async def _document_records(self, document_id: str) -> dict[str, dict[str, Any]]:
        records: dict[str, dict[str, Any]] = {}
        page = 1
        while True:
            rows = await self.repository.list_document_rows(document_id, page, self.page_size)
            records.update((row.id, row.record) for row in rows.items)
            if not rows.has_more:
                return records
            page += 1

    async def export_prediction_csv(self, prediction_id: str, stream: TextIO) -> int:
        """Write the prediction as CSV: source columns plus the result columns.

        The output can be edited and uploaded again as a corrected document.
        Returns the number of data rows written.
        """
        prediction = await self.repository.get_prediction(prediction_id)
        records = await self._document_records(prediction.document_id)

        fieldnames: dict[str, None] = {}
        for record in records.values():
            fieldnames.update(dict.fromkeys(k for k in record if k not in EXPORT_COLUMNS))
        fieldnames.update(dict.fromkeys(EXPORT_COLUMNS))

        writer = csv.DictWriter(stream, fieldnames=list(fieldnames), extrasaction="ignore")
        writer.writeheader()

        written = 0
        page = 1
        while True:
            results = await self.repository.list_prediction_results(prediction_id, page, self.page_size)
            for result in results.items:
                row = dict(records.get(result.row_id, {}))
                row[RECORD_ID_COLUMN] = result.id
                row[VALUE_COLUMN] = result.prediction_value
                row[CONFIDENCE_COLUMN] = result.confidence
                row[AGREE_COLUMN] = result.agree
                writer.writerow(row)
                written += 1
            if not results.has_more:
                break
            page += 1

        log.info("prediction_exported", prediction_id=prediction_id, rows=written)
        return written


__all__ = ["AGREE_COLUMN", "DocumentService", "EXPORT_COLUMNS"]
