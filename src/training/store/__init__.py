"""Relational storage for training documents and their embedded chunks."""

from src.training.store.chunks import ChunkStore
from src.training.store.documents import DocumentRepository, SessionFactory
from src.training.store.tables import (
    DocumentChunkModel,
    TrainingBase,
    TrainingDocumentModel,
)

__all__ = [
    "ChunkStore",
    "DocumentChunkModel",
    "DocumentRepository",
    "SessionFactory",
    "TrainingBase",
    "TrainingDocumentModel",
]
