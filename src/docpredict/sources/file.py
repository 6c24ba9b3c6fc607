"""
File row source for local document ingestion.

Supports:
- CSV (comma-separated)
- PSV (pipe-separated)
- TSV (tab-separated)
- XLSX (first or named worksheet, header at a configurable row)

Every format yields the same thing: batches of ``{column: value}`` records
with trimmed header names. Lines whose cells are all empty are skipped.

Usage:
    from docpredict.sources.file import FileRowSource

    source = FileRowSource("/data/withholding.csv")
    for batch in source.stream(batch_size=30000):
        ...

    source = FileRowSource(
        "/data/withholding.xlsx",
        worksheet_name="FY24",
        start_row=3,
    )
"""

from __future__ import annotations

import csv
from enum import Enum
from pathlib import Path
from typing import Any, Iterator

from openpyxl import load_workbook

from docpredict.core.errors import ParseError, SourceError, SourceNotFoundError


class FileFormat(str, Enum):
    """Supported file formats."""

    CSV = "csv"
    PSV = "psv"
    TSV = "tsv"
    XLSX = "xlsx"


EXTENSION_MAP = {
    ".csv": FileFormat.CSV,
    ".psv": FileFormat.PSV,
    ".tsv": FileFormat.TSV,
    ".txt": FileFormat.TSV,
    ".xlsx": FileFormat.XLSX,
    ".xlsm": FileFormat.XLSX,
}

DELIMITERS = {
    FileFormat.CSV: ",",
    FileFormat.PSV: "|",
    FileFormat.TSV: "\t",
}


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class FileRowSource:
    """Reads the rows of a local tabular file."""

    def __init__(
        self,
        path: str | Path,
        *,
        format: FileFormat | str | None = None,
        worksheet_name: str | None = None,
        start_row: int | None = None,
        encoding: str = "utf-8-sig",
    ):
        self._path = Path(path)
        self.name = self._path.name
        self._worksheet_name = worksheet_name
        self._start_row = start_row or 1
        self._encoding = encoding

        if format is None:
            self._format = self._detect_format()
        elif isinstance(format, str):
            try:
                self._format = FileFormat(format.lower())
            except ValueError:
                raise SourceError(f"Unsupported format: {format}").with_context(
                    source_name=self.name
                ) from None
        else:
            self._format = format

        if self._start_row < 1:
            raise SourceError(f"start_row must be >= 1, got {start_row}").with_context(
                source_name=self.name
            )

    @property
    def path(self) -> Path:
        return self._path

    @property
    def format(self) -> FileFormat:
        return self._format

    def _detect_format(self) -> FileFormat:
        ext = self._path.suffix.lower()
        if ext in EXTENSION_MAP:
            return EXTENSION_MAP[ext]
        raise SourceError(
            f"Cannot detect format for extension: {ext}",
        ).with_context(source_name=self.name, path=str(self._path))

    def stream(self, batch_size: int = 30000) -> Iterator[list[dict[str, Any]]]:
        """Yield records in batches of at most ``batch_size``."""
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if not self._path.exists():
            raise SourceNotFoundError(
                f"File not found: {self._path}",
            ).with_context(source_name=self.name, path=str(self._path))

        records = self._read_xlsx() if self._format is FileFormat.XLSX else self._read_delimited()

        batch: list[dict[str, Any]] = []
        for record in records:
            batch.append(record)
            if len(batch) >= batch_size:
                yield batch
                batch = []
        if batch:
            yield batch

    def read_all(self) -> list[dict[str, Any]]:
        return [record for batch in self.stream() for record in batch]

    # -------------------------------------------------------------------------
    # FORMAT-SPECIFIC READERS
    # -------------------------------------------------------------------------

    def _read_delimited(self) -> Iterator[dict[str, Any]]:
        with open(self._path, "r", encoding=self._encoding, newline="") as f:
            for _ in range(self._start_row - 1):
                f.readline()
            reader = csv.DictReader(f, delimiter=DELIMITERS[self._format])
            try:
                for row in reader:
                    record = {k.strip(): v for k, v in row.items() if k is not None}
                    if all(_is_empty(v) for v in record.values()):
                        continue
                    yield record
            except csv.Error as e:
                raise ParseError(
                    f"Invalid {self._format.value} at line {reader.line_num}: {e}",
                ).with_context(source_name=self.name, path=str(self._path)) from e

    def _read_xlsx(self) -> Iterator[dict[str, Any]]:
        try:
            wb = load_workbook(self._path, read_only=True, data_only=True)
        except Exception as e:
            raise ParseError(f"Cannot open workbook: {e}").with_context(
                source_name=self.name, path=str(self._path)
            ) from e

        try:
            if self._worksheet_name:
                if self._worksheet_name not in wb.sheetnames:
                    raise SourceError(
                        f"Worksheet not found: {self._worksheet_name}",
                    ).with_context(source_name=self.name, path=str(self._path))
                ws = wb[self._worksheet_name]
            else:
                ws = wb.active

            rows = ws.iter_rows(min_row=self._start_row, values_only=True)
            header_row = next(rows, None)
            if header_row is None:
                return
            headers = [None if _is_empty(v) else str(v).strip() for v in header_row]

            for values in rows:
                record = {
                    header: value
                    for header, value in zip(headers, values)
                    if header is not None
                }
                if all(_is_empty(v) for v in record.values()):
                    continue
                yield record
        finally:
            wb.close()


__all__ = ["EXTENSION_MAP", "FileFormat", "FileRowSource"]
