"""
In-memory repository.

Dicts keyed by id, insertion ordered. Used by tests and by the CLI when no
database is configured. Every write replaces whole frozen records, so a
reader never sees a half-written prediction.

Tags:
    storage, in-memory, repository, testing
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

from docpredict.core.errors import DocumentNotFoundError, PredictionNotFoundError
from docpredict.core.models import (
    Document,
    DocumentRow,
    DocumentStatus,
    Page,
    Prediction,
    PredictionCorrection,
    PredictionInput,
    PredictionResult,
    PredictionResultFilter,
    new_id,
    to_prediction_results,
)
from docpredict.core.settings import DEFAULT_CONFIDENCE_THRESHOLD


class InMemoryRepository:
    def __init__(self, confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD) -> None:
        self.confidence_threshold = confidence_threshold
        self._documents: dict[str, Document] = {}
        self._rows: dict[str, list[DocumentRow]] = {}
        self._predictions: dict[str, Prediction] = {}
        self._results: dict[str, list[PredictionResult]] = {}
        self._corrections: dict[str, dict[tuple[str, str, str], PredictionCorrection]] = {}
        self._lock = asyncio.Lock()

    # ── Documents ────────────────────────────────────────────────────

    async def insert_document(self, document: Document) -> Document:
        async with self._lock:
            self._documents[document.id] = document
            self._rows.setdefault(document.id, [])
        return document

    async def insert_document_rows(self, rows: Sequence[DocumentRow]) -> int:
        async with self._lock:
            for row in rows:
                if row.document_id not in self._documents:
                    raise DocumentNotFoundError(row.document_id)
                self._rows[row.document_id].append(row)
        return len(rows)

    async def update_document_status(self, document_id: str, status: DocumentStatus) -> Document:
        async with self._lock:
            document = self._get_document(document_id).with_status(status)
            self._documents[document_id] = document
        return document

    def _get_document(self, document_id: str) -> Document:
        try:
            return self._documents[document_id]
        except KeyError:
            raise DocumentNotFoundError(document_id) from None

    async def get_document(self, document_id: str) -> Document:
        return self._get_document(document_id)

    async def list_documents(
        self, page: int = 1, page_size: int = -1, status: DocumentStatus | None = None
    ) -> Page[Document]:
        documents = [d for d in self._documents.values() if status is None or d.status == status]
        return Page.slice(documents, page, page_size)

    async def count_document_rows(self, document_id: str) -> int:
        self._get_document(document_id)
        return len(self._rows[document_id])

    async def list_document_rows(self, document_id: str, page: int, page_size: int) -> Page[DocumentRow]:
        self._get_document(document_id)
        return Page.slice(self._rows[document_id], page, page_size)

    # ── Predictions ──────────────────────────────────────────────────

    async def insert_prediction(self, document: Document, meta: PredictionInput) -> Prediction:
        self._get_document(document.id)
        prediction = Prediction(
            id=new_id(),
            document_id=document.id,
            model=meta.model,
            date=meta.date,
            prediction_field=meta.prediction_field,
        )
        results = to_prediction_results(meta.results, document.id, prediction.id)
        async with self._lock:
            self._predictions[prediction.id] = prediction
            self._results[prediction.id] = results
            self._corrections[prediction.id] = {}
        return prediction

    async def insert_prediction_results(self, results: Sequence[PredictionResult]) -> int:
        async with self._lock:
            for result in results:
                if result.prediction_id not in self._predictions:
                    raise PredictionNotFoundError(result.prediction_id)
                self._results[result.prediction_id].append(result)
        return len(results)

    def _get_prediction(self, prediction_id: str) -> Prediction:
        try:
            return self._predictions[prediction_id]
        except KeyError:
            raise PredictionNotFoundError(prediction_id) from None

    async def get_prediction(self, prediction_id: str) -> Prediction:
        return self._get_prediction(prediction_id)

    async def list_predictions(self, document_id: str) -> list[Prediction]:
        self._get_document(document_id)
        return [p for p in self._predictions.values() if p.document_id == document_id]

    async def list_prediction_results(
        self,
        prediction_id: str,
        page: int,
        page_size: int,
        filter: PredictionResultFilter = PredictionResultFilter.ALL,
    ) -> Page[PredictionResult]:
        self._get_prediction(prediction_id)
        results = [
            r for r in self._results[prediction_id]
            if filter.matches(r, self.confidence_threshold)
        ]
        return Page.slice(results, page, page_size)

    # ── Corrections ──────────────────────────────────────────────────

    async def insert_prediction_corrections(self, corrections: Sequence[PredictionCorrection]) -> int:
        inserted = 0
        async with self._lock:
            for correction in corrections:
                existing = self._corrections.get(correction.prediction_id)
                if existing is None:
                    raise PredictionNotFoundError(correction.prediction_id)
                if correction.key not in existing:
                    existing[correction.key] = correction
                    inserted += 1
        return inserted

    async def list_prediction_corrections(self, prediction_id: str) -> list[PredictionCorrection]:
        self._get_prediction(prediction_id)
        return list(self._corrections[prediction_id].values())

    async def count_prediction_corrections(self, prediction_id: str) -> int:
        self._get_prediction(prediction_id)
        return len(self._corrections[prediction_id])

    async def close(self) -> None:
        pass


__all__ = ["InMemoryRepository"]
