"""
Shared pytest fixtures for docpredict tests.

This module provides:
- In-memory repository, event bus and model registry fixtures
- A scripted prediction client whose answers and failures are set per test
- Helpers that ingest rows straight into a repository

Usage:
    Fixtures are auto-discovered by pytest; request them by name.

    async def test_something(repository, ingest_rows):
        document = await ingest_rows(["A", "B"])
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import pytest

from docpredict.core.errors import TransientPredictionError
from docpredict.core.events.memory import InMemoryEventBus
from docpredict.core.models import (
    BatchPredictionResult,
    BatchPredictionValue,
    Document,
    DocumentInput,
    DocumentRow,
    utcnow,
)
from docpredict.core.settings import clear_settings_cache
from docpredict.execution.retry import ConstantBackoff
from docpredict.registry import InMemoryModelRegistry, InputField, ModelDescriptor
from docpredict.services.orchestrator import is_page_retryable
from docpredict.storage import InMemoryRepository

LABEL = "WHT_PER"


# =============================================================================
# Doubles
# =============================================================================


class ScriptedClient:
    """PredictionClient double.

    ``answers`` maps a provided value to ``(prediction, confidence)``; rows
    without an entry are predicted as their own provided value. The first
    ``failures`` calls raise ``error`` (a transient error by default).
    """

    def __init__(
        self,
        answers: dict[Any, tuple[Any, float]] | None = None,
        *,
        failures: int = 0,
        error: Exception | None = None,
        confidence: float = 0.9,
        drop_last: bool = False,
    ):
        self.answers = answers or {}
        self.failures = failures
        self.error = error
        self.confidence = confidence
        self.drop_last = drop_last
        self.calls: list[list[int]] = []
        self.closed = False

    async def predict(self, rows: Sequence[DocumentRow], model_id: str) -> BatchPredictionResult:
        self.calls.append([row.row_number for row in rows])
        if self.failures > 0:
            self.failures -= 1
            raise self.error or TransientPredictionError("scripted failure")

        results = []
        for row in rows:
            value, confidence = self.answers.get(row.provided_value, (row.provided_value, self.confidence))
            results.append(BatchPredictionValue(row_id=row.id, prediction_value=value, confidence=confidence))
        if self.drop_last:
            results = results[:-1]
        return BatchPredictionResult(model=model_id, date=utcnow(), prediction_field=LABEL, results=results)

    async def close(self) -> None:
        self.closed = True


# =============================================================================
# Core fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Settings are cached per process; drop the cache around each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def model() -> ModelDescriptor:
    return ModelDescriptor(
        id="m-wht",
        name="wht_v4",
        deployment_id="tax_withholding_v4",
        label=LABEL,
        inputs=(
            InputField(name="MCO_NO"),
            InputField(name="NEC_DESCRIPTION_Cleaned", aliases=("NEC_DESCRIPTION",)),
        ),
        default=True,
    )


@pytest.fixture
def registry(model) -> InMemoryModelRegistry:
    return InMemoryModelRegistry([model])


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository(confidence_threshold=0.8)


@pytest.fixture
async def bus():
    bus = InMemoryEventBus()
    yield bus
    await bus.close()


@pytest.fixture
def scripted_client():
    """Factory for :class:`ScriptedClient`."""
    return ScriptedClient


@pytest.fixture
def fast_retry() -> ConstantBackoff:
    """Three attempts, no delay."""
    return ConstantBackoff(max_attempts=3, delay=0, retry_if=is_page_retryable)


@pytest.fixture
def ingest_rows(repository):
    """Insert a document whose rows carry the given provided values."""

    async def ingest(provided_values: Sequence[Any], name: str = "rows.csv") -> Document:
        document = await repository.insert_document(
            Document.create(DocumentInput(name=name), predict_field=LABEL)
        )
        rows = [
            DocumentRow.from_record(
                document.id,
                {"MCO_NO": f"M{n}", "NEC_DESCRIPTION": f"item {n}", LABEL: value},
                n,
                LABEL,
            )
            for n, value in enumerate(provided_values, start=1)
        ]
        await repository.insert_document_rows(rows)
        return document

    return ingest
