"""
Boundaries between the prediction core and its collaborators.

The orchestrator, the correction ingestor and the document service only talk
to storage, the prediction service, the model registry and row sources
through these protocols. Concrete adapters are wired in
:mod:`docpredict.container`.

Tags:
    protocols, interfaces, repository, prediction-client

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from docpredict.core.models import (
    BatchPredictionResult,
    Document,
    DocumentRow,
    DocumentStatus,
    Page,
    Prediction,
    PredictionCorrection,
    PredictionInput,
    PredictionResult,
    PredictionResultFilter,
)

if TYPE_CHECKING:
    from docpredict.registry import ModelDescriptor


@runtime_checkable
class Repository(Protocol):
    """Storage for documents, rows, predictions, results and corrections.

    Listing operations are 1-based and paginated; ``page_size == -1`` returns
    everything. Missing documents and predictions raise the matching
    ``NotFoundError`` subclass.
    """

    # ── Documents ────────────────────────────────────────────────
    async def insert_document(self, document: Document) -> Document: ...

    async def insert_document_rows(self, rows: Sequence[DocumentRow]) -> int: ...

    async def update_document_status(self, document_id: str, status: DocumentStatus) -> Document: ...

    async def get_document(self, document_id: str) -> Document: ...

    async def list_documents(
        self, page: int = 1, page_size: int = -1, status: DocumentStatus | None = None
    ) -> Page[Document]: ...

    async def count_document_rows(self, document_id: str) -> int: ...

    async def list_document_rows(
        self, document_id: str, page: int, page_size: int
    ) -> Page[DocumentRow]: ...

    # ── Predictions ──────────────────────────────────────────────
    async def insert_prediction(self, document: Document, meta: PredictionInput) -> Prediction:
        """Write the prediction and all of ``meta.results`` in one logical write."""
        ...

    async def insert_prediction_results(self, results: Sequence[PredictionResult]) -> int: ...

    async def get_prediction(self, prediction_id: str) -> Prediction: ...

    async def list_predictions(self, document_id: str) -> list[Prediction]: ...

    async def list_prediction_results(
        self,
        prediction_id: str,
        page: int,
        page_size: int,
        filter: PredictionResultFilter = PredictionResultFilter.ALL,
    ) -> Page[PredictionResult]: ...

    # ── Corrections ──────────────────────────────────────────────
    async def insert_prediction_corrections(self, corrections: Sequence[PredictionCorrection]) -> int:
        """Append corrections; a correction with an existing key is ignored."""
        ...

    async def list_prediction_corrections(self, prediction_id: str) -> list[PredictionCorrection]: ...

    async def count_prediction_corrections(self, prediction_id: str) -> int: ...

    async def close(self) -> None: ...


@runtime_checkable
class PredictionClient(Protocol):
    """External classification service.

    ``predict`` is batch-atomic: it either returns one value per input row,
    aligned by position, or raises for the whole call.
    """

    async def predict(self, rows: Sequence[DocumentRow], model_id: str) -> BatchPredictionResult: ...

    async def close(self) -> None: ...


@runtime_checkable
class ModelRegistry(Protocol):
    def list_models(self) -> list[ModelDescriptor]: ...

    def find_model(self, name: str) -> ModelDescriptor: ...

    def get_model(self, model_id: str) -> ModelDescriptor: ...

    def get_default_model(self) -> ModelDescriptor: ...


@runtime_checkable
class RowSource(Protocol):
    """Yields the records of a tabular document in batches."""

    name: str

    @property
    def path(self) -> Path: ...

    def stream(self, batch_size: int) -> Iterator[list[dict[str, Any]]]: ...


__all__ = ["ModelRegistry", "PredictionClient", "Repository", "RowSource"]
