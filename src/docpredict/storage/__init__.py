"""Repository adapters (in-memory and SQLAlchemy) and the original file store."""

from docpredict.storage.memory import InMemoryRepository
from docpredict.storage.originals import OriginalFileStore
from docpredict.storage.sql import SqlRepository

__all__ = ["InMemoryRepository", "OriginalFileStore", "SqlRepository"]
