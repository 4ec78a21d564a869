"""Club training document library.

Turns uploaded PDF training material into searchable passages:
extraction -> chunking -> embedding -> storage -> semantic search.

Exports:
- TrainingConfig: Settings loaded from TRAINING_* environment variables
- TrainingDocumentService / create_training_service: Tenant-scoped facade
- PdfTextExtractor, PassageChunker: Text pipeline stages
- OpenAIEmbeddingGenerator, HashingEmbeddingGenerator: Embedding providers
- SemanticSearchEngine: Cosine-similarity ranking
"""

from src.training.chunker import PassageChunker
from src.training.config import TrainingConfig
from src.training.embeddings import (
    EmbeddingGenerator,
    HashingEmbeddingGenerator,
    OpenAIEmbeddingGenerator,
    create_embedding_generator,
)
from src.training.extraction import PdfTextExtractor
from src.training.search import SemanticSearchEngine
from src.training.service import TrainingDocumentService, create_training_service

__all__ = [
    "EmbeddingGenerator",
    "HashingEmbeddingGenerator",
    "OpenAIEmbeddingGenerator",
    "PassageChunker",
    "PdfTextExtractor",
    "SemanticSearchEngine",
    "TrainingConfig",
    "TrainingDocumentService",
    "create_embedding_generator",
    "create_training_service",
]
