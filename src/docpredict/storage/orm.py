"""SQLAlchemy 2.0 tables and engine factory for the SQL repository.

Five tables mirror the domain records in :mod:`docpredict.core.models`:

* ``documents``               -> :class:`Document`
* ``document_rows``           -> :class:`DocumentRow` (``data`` keeps the raw JSON text)
* ``predictions``             -> :class:`Prediction` (no summary column; it is computed)
* ``prediction_results``      -> :class:`PredictionResult`
* ``prediction_corrections``  -> :class:`PredictionCorrection`, unique on
  ``(prediction_id, prediction_record_id, value_key)``

Predicted and provided values are stored as JSON scalars so numbers stay
numbers across a round trip.

Usage::

    engine = create_docpredict_engine("sqlite:///data/docpredict.db")
    DocPredictBase.metadata.create_all(engine)
"""

from __future__ import annotations

import datetime
from pathlib import Path
from typing import Any

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Integer, Text, UniqueConstraint, event
from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from docpredict.core.models import (
    Document,
    DocumentRow,
    DocumentStatus,
    Prediction,
    PredictionCorrection,
    PredictionResult,
)


def _aware(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


class DocPredictBase(DeclarativeBase):
    """Declarative base; ``bool`` maps to ``Integer`` for SQLite."""

    type_annotation_map = {
        str: Text,
        int: Integer,
        bool: Integer,
        float: Float,
        datetime.datetime: DateTime,
        dict: JSON,
    }


class DocumentTable(DocPredictBase):
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    worksheet_name: Mapped[str | None] = mapped_column(Text)
    worksheet_start_row: Mapped[int | None] = mapped_column(Integer)
    predict_field: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False)

    @classmethod
    def from_model(cls, document: Document) -> DocumentTable:
        return cls(
            id=document.id,
            name=document.name,
            status=document.status.value,
            original_url=document.original_url,
            description=document.description,
            worksheet_name=document.worksheet_name,
            worksheet_start_row=document.worksheet_start_row,
            predict_field=document.predict_field,
            created_at=document.created_at,
        )

    def to_model(self) -> Document:
        return Document(
            id=self.id,
            name=self.name,
            status=DocumentStatus(self.status),
            original_url=self.original_url,
            description=self.description,
            worksheet_name=self.worksheet_name,
            worksheet_start_row=self.worksheet_start_row,
            predict_field=self.predict_field,
            created_at=_aware(self.created_at),
        )


class DocumentRowTable(DocPredictBase):
    __tablename__ = "document_rows"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    document_id: Mapped[str] = mapped_column(Text, ForeignKey("documents.id"), nullable=False, index=True)
    row_number: Mapped[int] = mapped_column(Integer, nullable=False)
    data: Mapped[str] = mapped_column(Text, nullable=False)
    provided_value: Mapped[Any] = mapped_column(JSON, nullable=True)

    @classmethod
    def from_model(cls, row: DocumentRow) -> DocumentRowTable:
        return cls(
            id=row.id,
            document_id=row.document_id,
            row_number=row.row_number,
            data=row.data,
            provided_value=row.provided_value,
        )

    def to_model(self) -> DocumentRow:
        return DocumentRow(
            id=self.id,
            document_id=self.document_id,
            data=self.data,
            row_number=self.row_number,
            provided_value=self.provided_value,
        )


class PredictionTable(DocPredictBase):
    __tablename__ = "predictions"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    document_id: Mapped[str] = mapped_column(Text, ForeignKey("documents.id"), nullable=False, index=True)
    model: Mapped[str] = mapped_column(Text, nullable=False)
    date: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False)
    prediction_field: Mapped[str] = mapped_column(Text, nullable=False)

    def to_model(self) -> Prediction:
        return Prediction(
            id=self.id,
            document_id=self.document_id,
            model=self.model,
            date=_aware(self.date),
            prediction_field=self.prediction_field,
        )


class PredictionResultTable(DocPredictBase):
    __tablename__ = "prediction_results"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    document_id: Mapped[str] = mapped_column(Text, ForeignKey("documents.id"), nullable=False)
    prediction_id: Mapped[str] = mapped_column(
        Text, ForeignKey("predictions.id"), nullable=False, index=True
    )
    row_id: Mapped[str] = mapped_column(Text, ForeignKey("document_rows.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    provided_value: Mapped[Any] = mapped_column(JSON, nullable=True)
    prediction_value: Mapped[Any] = mapped_column(JSON, nullable=True)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    agree: Mapped[bool] = mapped_column(Integer, nullable=False)

    @classmethod
    def from_model(cls, result: PredictionResult, position: int) -> PredictionResultTable:
        return cls(
            id=result.id,
            document_id=result.document_id,
            prediction_id=result.prediction_id,
            row_id=result.row_id,
            position=position,
            provided_value=result.provided_value,
            prediction_value=result.prediction_value,
            confidence=result.confidence,
            agree=int(result.agree),
        )

    def to_model(self) -> PredictionResult:
        return PredictionResult(
            id=self.id,
            document_id=self.document_id,
            prediction_id=self.prediction_id,
            row_id=self.row_id,
            prediction_value=self.prediction_value,
            confidence=self.confidence,
            agree=bool(self.agree),
            provided_value=self.provided_value,
        )


class PredictionCorrectionTable(DocPredictBase):
    __tablename__ = "prediction_corrections"
    __table_args__ = (
        UniqueConstraint("prediction_id", "prediction_record_id", "value_key", name="uq_correction_value"),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    document_id: Mapped[str] = mapped_column(Text, ForeignKey("documents.id"), nullable=False)
    prediction_id: Mapped[str] = mapped_column(
        Text, ForeignKey("predictions.id"), nullable=False, index=True
    )
    prediction_record_id: Mapped[str] = mapped_column(
        Text, ForeignKey("prediction_results.id"), nullable=False
    )
    value_key: Mapped[str] = mapped_column(Text, nullable=False)
    prediction_value: Mapped[Any] = mapped_column(JSON, nullable=True)
    provided_value: Mapped[Any] = mapped_column(JSON, nullable=True)
    agree: Mapped[bool] = mapped_column(Integer, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)

    @classmethod
    def from_model(cls, correction: PredictionCorrection) -> PredictionCorrectionTable:
        return cls(
            id=correction.id,
            document_id=correction.document_id,
            prediction_id=correction.prediction_id,
            prediction_record_id=correction.prediction_record_id,
            value_key=correction.key[2],
            prediction_value=correction.prediction_value,
            provided_value=correction.provided_value,
            agree=int(correction.agree),
            confidence=correction.confidence,
        )

    def to_model(self) -> PredictionCorrection:
        return PredictionCorrection(
            id=self.id,
            document_id=self.document_id,
            prediction_id=self.prediction_id,
            prediction_record_id=self.prediction_record_id,
            prediction_value=self.prediction_value,
            agree=bool(self.agree),
            confidence=self.confidence,
            provided_value=self.provided_value,
        )


# ── Engine / sessions ────────────────────────────────────────────────────


def create_docpredict_engine(url: str, *, echo: bool = False, **kwargs: Any) -> Engine:
    """Create an engine; SQLite gets WAL, foreign keys and a shared in-memory pool."""
    if not url.startswith("sqlite"):
        return _sa_create_engine(url, echo=echo, **kwargs)

    kwargs.setdefault("connect_args", {"check_same_thread": False})
    database = make_url(url).database
    if not database or database == ":memory:":
        kwargs.setdefault("poolclass", StaticPool)
    else:
        Path(database).parent.mkdir(parents=True, exist_ok=True)

    engine = _sa_create_engine(url, echo=echo, **kwargs)

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


__all__ = [
    "DocPredictBase",
    "DocumentRowTable",
    "DocumentTable",
    "PredictionCorrectionTable",
    "PredictionResultTable",
    "PredictionTable",
    "create_docpredict_engine",
    "session_factory",
]
