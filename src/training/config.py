"""Training library configuration via Pydantic BaseSettings.

All settings load from environment variables with the TRAINING_ prefix.
For example, TRAINING_CHUNK_SIZE sets chunk_size.
"""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class TrainingConfig(BaseSettings):
    """Configuration for document ingestion and semantic search.

    Attributes:
        embedding_provider: "openai" for the remote embedding model, "hashing"
            for the deterministic offline generator.
        openai_api_key: API key for the OpenAI-compatible embedding endpoint.
        openai_base_url: Base URL of the embedding endpoint (OpenAI or
            OpenRouter). None uses the client default.
        embedding_model: Embedding model name.
        embedding_dimensions: Vector size, constant for the lifetime of the
            index. Changing it requires reprocessing every document.
        embedding_timeout_seconds: Timeout of a single embedding call.
        embedding_max_tokens: Model input limit; longer passages are rejected.
        embedding_batch_size: Passages sent per embedding call.
        chunk_size: Maximum passage length in characters.
        similarity_threshold: Minimum cosine score for a chunk to count as a match.
        default_search_limit: Number of documents returned when no limit is given.
        embedding_max_attempts: Attempts per passage before it is marked failed.
        embedding_retry_rounds: Extra document-level rounds over failed passages.
        embedding_backoff_base_seconds: Multiplier of the exponential backoff.
        embedding_backoff_max_seconds: Upper bound of a single backoff sleep.
        persist_max_attempts: Attempts of the whole-document chunk replace.
        max_concurrent_documents: Worker pool size (documents embedded at once).
        per_document_concurrency: Concurrent embedding calls within one document.
        queue_maxsize: Bound of the ingestion queue.
        extraction_timeout_seconds: Timeout of PDF text extraction.
        storage_path: Directory where uploaded PDF files are kept.
        max_upload_bytes: Largest accepted upload.
        allowed_content_types: Accepted upload content types.
    """

    model_config = SettingsConfigDict(
        env_prefix="TRAINING_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Embedding
    embedding_provider: Literal["openai", "hashing"] = "openai"
    openai_api_key: str = ""
    openai_base_url: str | None = None
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    embedding_timeout_seconds: float = 30.0
    embedding_max_tokens: int = 8191
    embedding_batch_size: int = 16

    # Chunking
    chunk_size: int = 800

    # Search
    similarity_threshold: float = 0.2
    default_search_limit: int = 10

    # Retry policy
    embedding_max_attempts: int = 3
    embedding_retry_rounds: int = 1
    embedding_backoff_base_seconds: float = 1.0
    embedding_backoff_max_seconds: float = 20.0
    persist_max_attempts: int = 3

    # Worker pool
    max_concurrent_documents: int = 2
    per_document_concurrency: int = 4
    queue_maxsize: int = 100
    extraction_timeout_seconds: float = 120.0

    # Uploads
    storage_path: str = "uploads/formation"
    max_upload_bytes: int = 20 * 1024 * 1024
    allowed_content_types: list[str] = ["application/pdf"]
