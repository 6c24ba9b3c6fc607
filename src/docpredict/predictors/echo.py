"""Offline prediction client.

Predicts every row's own provided value at a fixed confidence. Used when no
Watson ML credentials are configured so ingestion, summaries and corrections
can be exercised end to end without network access.
"""

from __future__ import annotations

from collections.abc import Sequence

from docpredict.core.errors import ModelNotFoundError
from docpredict.core.models import BatchPredictionResult, BatchPredictionValue, DocumentRow, utcnow
from docpredict.core.protocols import ModelRegistry


class EchoPredictionClient:
    def __init__(self, registry: ModelRegistry | None = None, confidence: float = 1.0):
        self._registry = registry
        self.confidence = confidence

    def _label(self, model_id: str) -> tuple[str, str | None]:
        if self._registry is None:
            return model_id, None
        try:
            model = self._registry.find_model(model_id)
        except ModelNotFoundError:
            return model_id, None
        return model.name, model.label

    async def predict(self, rows: Sequence[DocumentRow], model_id: str) -> BatchPredictionResult:
        name, label = self._label(model_id)
        results = []
        for row in rows:
            provided = row.provided_value
            if provided is None and label:
                provided = row.record.get(label)
            results.append(BatchPredictionValue(
                row_id=row.id,
                provided_value=provided,
                prediction_value=provided,
                confidence=self.confidence,
            ))
        return BatchPredictionResult(
            model=name,
            date=utcnow(),
            prediction_field=label or "provided_value",
            results=results,
        )

    async def close(self) -> None:
        pass


__all__ = ["EchoPredictionClient"]
