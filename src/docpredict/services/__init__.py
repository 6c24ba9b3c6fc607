"""Application services built on the core."""

from docpredict.services.corrections import CorrectionIngestor, correction_rows_from_records
from docpredict.services.documents import DocumentService
from docpredict.services.orchestrator import BatchOrchestrator, RunReport

__all__ = [
    "BatchOrchestrator",
    "CorrectionIngestor",
    "DocumentService",
    "RunReport",
    "correction_rows_from_records",
]
