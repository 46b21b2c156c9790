"""Persistence layer for imported entities."""

from loan_import.store.base import Repository, WriteBatch
from loan_import.store.memory import InMemoryRepository

__all__ = ["InMemoryRepository", "Repository", "WriteBatch"]
