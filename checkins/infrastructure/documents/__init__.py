"""In-memory document store."""

from .memory import InMemoryDocumentStore

__all__ = ["InMemoryDocumentStore"]
