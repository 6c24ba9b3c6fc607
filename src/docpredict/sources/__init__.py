"""Row sources for document ingestion."""

from docpredict.sources.file import FileFormat, FileRowSource

__all__ = ["FileFormat", "FileRowSource"]
