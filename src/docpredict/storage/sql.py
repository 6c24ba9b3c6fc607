"""
SQLAlchemy-backed repository.

Manifesto:
    The prediction pipeline is async; SQLAlchemy's ORM sessions are not.
    Each repository call runs one short transaction in a worker thread via
    :func:`asyncio.to_thread`, so the event loop never blocks on the
    database and every call is its own unit of work.

Architecture:
    ::

        await repo.insert_prediction(doc, meta)
              │
              └─► asyncio.to_thread(_in_session, fn)
                        │
                        └─► with sessionmaker.begin() as session:
                                fn(session, ...)     commit / rollback
                        SQLAlchemyError ──► DatabaseError

Tags:
    storage, sqlalchemy, repository, sqlite, threads
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

from sqlalchemy import and_, func, not_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from docpredict.core.errors import DatabaseError, DocumentNotFoundError, PredictionNotFoundError
from docpredict.core.logging import get_logger
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
from docpredict.storage.orm import (
    DocPredictBase,
    DocumentRowTable,
    DocumentTable,
    PredictionCorrectionTable,
    PredictionResultTable,
    PredictionTable,
    create_docpredict_engine,
    session_factory,
)

log = get_logger(__name__)

T = TypeVar("T")


def _filter_clause(filter: PredictionResultFilter, threshold: float) -> ColumnElement[bool] | None:
    agree = PredictionResultTable.agree == 1
    above = PredictionResultTable.confidence >= threshold
    if filter is PredictionResultFilter.ALL:
        return None
    if filter is PredictionResultFilter.ALL_DISAGREE:
        return not_(agree)
    if filter is PredictionResultFilter.ALL_BELOW_CONFIDENCE:
        return not_(above)
    if filter is PredictionResultFilter.AGREE_BELOW_CONFIDENCE:
        return and_(agree, not_(above))
    if filter is PredictionResultFilter.DISAGREE_ABOVE_CONFIDENCE:
        return and_(not_(agree), above)
    return and_(not_(agree), not_(above))


def _paged(session: Session, stmt: Any, count_stmt: Any, page: int, page_size: int) -> Page[Any]:
    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")
    total = session.scalar(count_stmt) or 0
    if page_size > 0:
        stmt = stmt.offset((page - 1) * page_size).limit(page_size)
    elif page_size != -1:
        raise ValueError(f"page_size must be positive or -1, got {page_size}")
    items = [row.to_model() for row in session.scalars(stmt)]
    return Page(items=items, page=page, page_size=page_size, total_count=total)


class SqlRepository:
    """Repository over any SQLAlchemy-supported database."""

    def __init__(
        self,
        engine: Engine,
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        *,
        create_tables: bool = True,
    ) -> None:
        self.engine = engine
        self.confidence_threshold = confidence_threshold
        self._sessions = session_factory(engine)
        # SQLite: one writer at a time
        self._lock = asyncio.Lock() if engine.dialect.name == "sqlite" else None
        if create_tables:
            DocPredictBase.metadata.create_all(engine)

    @classmethod
    def from_url(cls, url: str, confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
                 *, echo: bool = False) -> SqlRepository:
        return cls(create_docpredict_engine(url, echo=echo), confidence_threshold)

    def _in_session(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            with self._sessions.begin() as session:
                return fn(session, *args)
        except SQLAlchemyError as e:
            log.error("database_error", operation=getattr(fn, "__name__", "?"), error=str(e))
            raise DatabaseError(f"Database operation failed: {e}", cause=e) from e

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        if self._lock is None:
            return await asyncio.to_thread(self._in_session, fn, *args)
        async with self._lock:
            return await asyncio.to_thread(self._in_session, fn, *args)

    @staticmethod
    def _document(session: Session, document_id: str) -> DocumentTable:
        row = session.get(DocumentTable, document_id)
        if row is None:
            raise DocumentNotFoundError(document_id)
        return row

    @staticmethod
    def _prediction(session: Session, prediction_id: str) -> PredictionTable:
        row = session.get(PredictionTable, prediction_id)
        if row is None:
            raise PredictionNotFoundError(prediction_id)
        return row

    # ── Documents ────────────────────────────────────────────────────

    async def insert_document(self, document: Document) -> Document:
        def insert(session: Session) -> Document:
            session.add(DocumentTable.from_model(document))
            return document

        return await self._run(insert)

    async def insert_document_rows(self, rows: Sequence[DocumentRow]) -> int:
        def insert(session: Session) -> int:
            for document_id in {row.document_id for row in rows}:
                self._document(session, document_id)
            session.add_all([DocumentRowTable.from_model(row) for row in rows])
            return len(rows)

        return await self._run(insert)

    async def update_document_status(self, document_id: str, status: DocumentStatus) -> Document:
        def update(session: Session) -> Document:
            row = self._document(session, document_id)
            row.status = status.value
            return row.to_model()

        return await self._run(update)

    async def get_document(self, document_id: str) -> Document:
        return await self._run(lambda session: self._document(session, document_id).to_model())

    async def list_documents(
        self, page: int = 1, page_size: int = -1, status: DocumentStatus | None = None
    ) -> Page[Document]:
        def query(session: Session) -> Page[Document]:
            stmt = select(DocumentTable).order_by(DocumentTable.created_at, DocumentTable.id)
            count = select(func.count()).select_from(DocumentTable)
            if status is not None:
                stmt = stmt.where(DocumentTable.status == status.value)
                count = count.where(DocumentTable.status == status.value)
            return _paged(session, stmt, count, page, page_size)

        return await self._run(query)

    async def count_document_rows(self, document_id: str) -> int:
        def count(session: Session) -> int:
            self._document(session, document_id)
            return session.scalar(
                select(func.count()).select_from(DocumentRowTable)
                .where(DocumentRowTable.document_id == document_id)
            ) or 0

        return await self._run(count)

    async def list_document_rows(self, document_id: str, page: int, page_size: int) -> Page[DocumentRow]:
        def query(session: Session) -> Page[DocumentRow]:
            self._document(session, document_id)
            where = DocumentRowTable.document_id == document_id
            stmt = select(DocumentRowTable).where(where).order_by(DocumentRowTable.row_number)
            count = select(func.count()).select_from(DocumentRowTable).where(where)
            return _paged(session, stmt, count, page, page_size)

        return await self._run(query)

    # ── Predictions ──────────────────────────────────────────────────

    async def insert_prediction(self, document: Document, meta: PredictionInput) -> Prediction:
        prediction = Prediction(
            id=new_id(),
            document_id=document.id,
            model=meta.model,
            date=meta.date,
            prediction_field=meta.prediction_field,
        )
        results = to_prediction_results(meta.results, document.id, prediction.id)

        def insert(session: Session) -> Prediction:
            self._document(session, document.id)
            session.add(PredictionTable(
                id=prediction.id,
                document_id=prediction.document_id,
                model=prediction.model,
                date=prediction.date,
                prediction_field=prediction.prediction_field,
            ))
            session.flush()
            session.add_all([
                PredictionResultTable.from_model(result, position)
                for position, result in enumerate(results)
            ])
            return prediction

        return await self._run(insert)

    async def insert_prediction_results(self, results: Sequence[PredictionResult]) -> int:
        def insert(session: Session) -> int:
            offsets: dict[str, int] = {}
            for result in results:
                if result.prediction_id not in offsets:
                    self._prediction(session, result.prediction_id)
                    offsets[result.prediction_id] = session.scalar(
                        select(func.count()).select_from(PredictionResultTable)
                        .where(PredictionResultTable.prediction_id == result.prediction_id)
                    ) or 0
                session.add(PredictionResultTable.from_model(result, offsets[result.prediction_id]))
                offsets[result.prediction_id] += 1
            return len(results)

        return await self._run(insert)

    async def get_prediction(self, prediction_id: str) -> Prediction:
        return await self._run(lambda session: self._prediction(session, prediction_id).to_model())

    async def list_predictions(self, document_id: str) -> list[Prediction]:
        def query(session: Session) -> list[Prediction]:
            self._document(session, document_id)
            stmt = (
                select(PredictionTable)
                .where(PredictionTable.document_id == document_id)
                .order_by(PredictionTable.date, PredictionTable.id)
            )
            return [row.to_model() for row in session.scalars(stmt)]

        return await self._run(query)

    async def list_prediction_results(
        self,
        prediction_id: str,
        page: int,
        page_size: int,
        filter: PredictionResultFilter = PredictionResultFilter.ALL,
    ) -> Page[PredictionResult]:
        def query(session: Session) -> Page[PredictionResult]:
            self._prediction(session, prediction_id)
            where = PredictionResultTable.prediction_id == prediction_id
            clause = _filter_clause(filter, self.confidence_threshold)
            if clause is not None:
                where = and_(where, clause)
            stmt = select(PredictionResultTable).where(where).order_by(PredictionResultTable.position)
            count = select(func.count()).select_from(PredictionResultTable).where(where)
            return _paged(session, stmt, count, page, page_size)

        return await self._run(query)

    # ── Corrections ──────────────────────────────────────────────────

    async def insert_prediction_corrections(self, corrections: Sequence[PredictionCorrection]) -> int:
        def insert(session: Session) -> int:
            inserted = 0
            seen: set[tuple[str, str, str]] = set()
            for correction in corrections:
                self._prediction(session, correction.prediction_id)
                key = correction.key
                if key in seen:
                    continue
                seen.add(key)
                existing = session.scalar(
                    select(PredictionCorrectionTable.id).where(
                        PredictionCorrectionTable.prediction_id == key[0],
                        PredictionCorrectionTable.prediction_record_id == key[1],
                        PredictionCorrectionTable.value_key == key[2],
                    )
                )
                if existing is None:
                    session.add(PredictionCorrectionTable.from_model(correction))
                    inserted += 1
            return inserted

        return await self._run(insert)

    async def list_prediction_corrections(self, prediction_id: str) -> list[PredictionCorrection]:
        def query(session: Session) -> list[PredictionCorrection]:
            self._prediction(session, prediction_id)
            stmt = select(PredictionCorrectionTable).where(
                PredictionCorrectionTable.prediction_id == prediction_id
            )
            return [row.to_model() for row in session.scalars(stmt)]

        return await self._run(query)

    async def count_prediction_corrections(self, prediction_id: str) -> int:
        def count(session: Session) -> int:
            self._prediction(session, prediction_id)
            return session.scalar(
                select(func.count()).select_from(PredictionCorrectionTable)
                .where(PredictionCorrectionTable.prediction_id == prediction_id)
            ) or 0

        return await self._run(count)

    async def close(self) -> None:
        await asyncio.to_thread(self.engine.dispose)


__all__ = ["SqlRepository"]
