"""
Correction ingestor.

Reviewers download a prediction as CSV, fix the predicted values they
disagree with, and upload the file again. Only rows whose value actually
changed become :class:`PredictionCorrection` records.

The diff is always against the original :class:`PredictionResult`, never
against earlier corrections, and repositories key corrections by
``(prediction_id, prediction_record_id, value)``. Submitting the same file
twice therefore leaves the stored corrections unchanged.

Example:
    >>> ingestor = CorrectionIngestor(repository)
    >>> await ingestor.ingest(
    ...     CorrectedDocumentInput(name="fixed.csv", document_id=doc.id, prediction_id=p.id),
    ...     [CorrectionRow(prediction_record_id=r.id, prediction_value="15%")],
    ... )
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from docpredict.core.compare import compare
from docpredict.core.errors import MalformedInputError
from docpredict.core.logging import LogContext, get_logger
from docpredict.core.models import (
    CorrectedDocumentInput,
    CorrectionRow,
    PredictionCorrection,
    PredictionResult,
    new_id,
)
from docpredict.core.protocols import Repository
from docpredict.core.settings import DEFAULT_PAGE_SIZE

log = get_logger(__name__)

RECORD_ID_COLUMN = "predictionRecordId"
VALUE_COLUMN = "predictionValue"
CONFIDENCE_COLUMN = "confidence"


def _parse_confidence(value: Any) -> float | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def correction_rows_from_records(records: Iterable[Mapping[str, Any]]) -> list[CorrectionRow]:
    """Map exported prediction records back to correction rows.

    Raises:
        MalformedInputError: if a record lacks the prediction record id column
    """
    rows: list[CorrectionRow] = []
    for line, record in enumerate(records, start=1):
        if RECORD_ID_COLUMN not in record:
            raise MalformedInputError(
                f"Missing {RECORD_ID_COLUMN} column"
            ).with_context(line=line)
        record_id = record[RECORD_ID_COLUMN]
        if record_id is None or not str(record_id).strip():
            log.warning("correction_row_without_id", line=line)
            continue
        rows.append(CorrectionRow(
            prediction_record_id=str(record_id).strip(),
            prediction_value=record.get(VALUE_COLUMN),
            confidence=_parse_confidence(record.get(CONFIDENCE_COLUMN)),
        ))
    return rows


class CorrectionIngestor:
    def __init__(self, repository: Repository, *, page_size: int = DEFAULT_PAGE_SIZE):
        self.repository = repository
        self.page_size = page_size

    async def _original_results(self, prediction_id: str) -> dict[str, PredictionResult]:
        originals: dict[str, PredictionResult] = {}
        page = 1
        while True:
            results = await self.repository.list_prediction_results(prediction_id, page, self.page_size)
            originals.update((result.id, result) for result in results.items)
            if not results.has_more:
                return originals
            page += 1

    async def ingest(self, input: CorrectedDocumentInput, rows: Iterable[CorrectionRow]) -> None:
        """Persist the rows whose value differs from the original prediction.

        Returns nothing; the effect shows up in later summaries.

        Raises:
            PredictionNotFoundError: if ``input.prediction_id`` does not exist
        """
        prediction = await self.repository.get_prediction(input.prediction_id)

        async with LogContext(prediction_id=prediction.id, document_id=prediction.document_id):
            if input.document_id and input.document_id != prediction.document_id:
                log.warning("correction_document_mismatch", given_document_id=input.document_id)

            originals = await self._original_results(prediction.id)

            corrections: dict[tuple[str, str, str], PredictionCorrection] = {}
            received = unknown = unchanged = 0
            for row in rows:
                received += 1
                original = originals.get(row.prediction_record_id)
                if original is None:
                    unknown += 1
                    log.warning("correction_record_unknown", prediction_record_id=row.prediction_record_id)
                    continue
                if compare(original.prediction_value, row.prediction_value):
                    unchanged += 1
                    continue

                correction = PredictionCorrection(
                    id=new_id(),
                    document_id=prediction.document_id,
                    prediction_id=prediction.id,
                    prediction_record_id=original.id,
                    prediction_value=row.prediction_value,
                    agree=compare(row.prediction_value, original.provided_value),
                    confidence=row.confidence if row.confidence is not None else original.confidence,
                    provided_value=original.provided_value,
                )
                corrections.setdefault(correction.key, correction)

            if not corrections:
                log.info("corrections_unchanged", name=input.name, received=received, unknown=unknown)
                return None

            inserted = await self.repository.insert_prediction_corrections(list(corrections.values()))
            log.info(
                "corrections_ingested",
                name=input.name,
                received=received,
                changed=len(corrections),
                inserted=inserted,
                unchanged=unchanged,
                unknown=unknown,
            )
            return None


__all__ = [
    "CONFIDENCE_COLUMN",
    "CorrectionIngestor",
    "RECORD_ID_COLUMN",
    "VALUE_COLUMN",
    "correction_rows_from_records",
]
