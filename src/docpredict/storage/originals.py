"""
Storage for uploaded source files.

Every ingested document keeps the file it was read from, so the original
upload can be served back next to its predictions. Files live under
``root/<document_id>/<document name>``; the document's ``original_url`` is
the logical address of the same file.
"""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path

from docpredict.core.errors import SourceError, SourceNotFoundError
from docpredict.core.logging import get_logger
from docpredict.core.models import Document

log = get_logger(__name__)


class OriginalFileStore:
    """Copies of uploaded source files, one directory per document."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def path_for(self, document: Document) -> Path:
        # the document name is user input; keep only its final component
        return self.root / document.id / Path(document.name).name

    async def save(self, document: Document, source_path: str | Path) -> Path:
        """Copy ``source_path`` into the store.

        Raises:
            SourceNotFoundError: if ``source_path`` does not exist
            SourceError: if the copy fails
        """
        source_path = Path(source_path)
        if not source_path.is_file():
            raise SourceNotFoundError(f"File not found: {source_path}").with_context(
                document_id=document.id, path=str(source_path)
            )

        dest = self.path_for(document)
        try:
            await asyncio.to_thread(_copy, source_path, dest)
        except OSError as e:
            raise SourceError(f"Cannot store original file: {e}", cause=e).with_context(
                document_id=document.id, path=str(dest)
            ) from e

        log.debug("original_file_stored", document_id=document.id, path=str(dest))
        return dest

    def open(self, document: Document) -> Path:
        """Path of the stored original.

        Raises:
            SourceNotFoundError: if nothing was stored for ``document``
        """
        path = self.path_for(document)
        if not path.is_file():
            raise SourceNotFoundError(f"No original file stored for document {document.id}").with_context(
                document_id=document.id, original_url=document.original_url
            )
        return path


def _copy(source: Path, dest: Path) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(source, dest)


__all__ = ["OriginalFileStore"]
