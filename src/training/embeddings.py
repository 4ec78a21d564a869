"""Embedding generation for passages and queries.

Two generators share the EmbeddingGenerator protocol:

- OpenAIEmbeddingGenerator calls an OpenAI-compatible /embeddings endpoint
  (OpenAI or OpenRouter) and maps every failure onto the error taxonomy:
  timeouts -> EmbeddingTimeout, refused input -> EmbeddingRejected, anything
  else upstream -> EmbeddingServiceError. It does not retry; the ingestion
  orchestrator owns the retry policy.
- HashingEmbeddingGenerator produces deterministic feature-hashed vectors
  offline, for development and tests.

Neither generator caches. Passages and queries are indistinguishable here.
"""

from __future__ import annotations

import asyncio
import hashlib
import re
import time
from typing import Any, Protocol

import numpy as np
import openai
import structlog
from openai import AsyncOpenAI

from src.training.config import TrainingConfig
from src.training.errors import (
    EmbeddingRejected,
    EmbeddingServiceError,
    EmbeddingTimeout,
)
from src.training.metrics import embedding_request_duration_seconds, embedding_requests_total

logger = structlog.get_logger(__name__)

# HTTP statuses meaning the input itself was refused
_REJECTED_STATUSES = frozenset({400, 413, 422})


class EmbeddingGenerator(Protocol):
    """Converts text into fixed-length vectors."""

    @property
    def dimensions(self) -> int: ...

    async def embed(self, text: str) -> list[float]: ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]: ...


class OpenAIEmbeddingGenerator:
    """Embedding generator backed by an OpenAI-compatible API.

    Args:
        config: Training configuration with API key, base URL, model,
            dimensions, timeout and token limit.
        client: Optional pre-built AsyncOpenAI client (tests inject mocks).
    """

    provider = "openai"

    def __init__(self, config: TrainingConfig, client: AsyncOpenAI | None = None) -> None:
        self._model = config.embedding_model
        self._dimensions = config.embedding_dimensions
        self._timeout = config.embedding_timeout_seconds
        self._max_tokens = config.embedding_max_tokens
        self._client = client or AsyncOpenAI(
            api_key=config.openai_api_key,
            base_url=config.openai_base_url,
            timeout=config.embedding_timeout_seconds,
            max_retries=0,
        )

        # Lazy-initialize the tokenizer (only needed for very long inputs)
        self._encoding: Any = None

    @property
    def dimensions(self) -> int:
        return self._dimensions

    async def embed(self, text: str) -> list[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts in a single upstream call.

        Args:
            texts: Non-empty texts to embed.

        Returns:
            One vector per input text, in input order.

        Raises:
            EmbeddingRejected: Empty or over-long input, or 400/413/422 answer.
            EmbeddingTimeout: The call exceeded the configured timeout.
            EmbeddingServiceError: Any other upstream or response failure.
        """
        if not texts:
            return []
        for text in texts:
            self._check_input(text)

        start = time.perf_counter()
        outcome = "success"
        try:
            response = await asyncio.wait_for(
                self._client.embeddings.create(
                    input=texts,
                    model=self._model,
                    dimensions=self._dimensions,
                ),
                timeout=self._timeout,
            )
        except (asyncio.TimeoutError, openai.APITimeoutError) as exc:
            outcome = "timeout"
            raise EmbeddingTimeout(f"Embedding call timed out after {self._timeout}s") from exc
        except openai.APIStatusError as exc:
            if exc.status_code in _REJECTED_STATUSES:
                outcome = "rejected"
                raise EmbeddingRejected(f"Embedding input rejected ({exc.status_code}): {exc.message}") from exc
            outcome = "error"
            raise EmbeddingServiceError(f"Embedding service error ({exc.status_code}): {exc.message}") from exc
        except openai.APIError as exc:
            outcome = "error"
            raise EmbeddingServiceError(f"Embedding service unavailable: {exc}") from exc
        finally:
            embedding_requests_total.labels(provider=self.provider, outcome=outcome).inc()
            embedding_request_duration_seconds.labels(provider=self.provider).observe(
                time.perf_counter() - start
            )

        return self._parse_response(response, expected=len(texts))

    def _parse_response(self, response: Any, expected: int) -> list[list[float]]:
        data = getattr(response, "data", None)
        if not data or len(data) != expected:
            raise EmbeddingServiceError(
                f"Embedding response holds {len(data or [])} vectors, expected {expected}"
            )

        # The API may return items out of order; index is authoritative
        ordered = sorted(data, key=lambda item: getattr(item, "index", 0))
        vectors = [list(item.embedding) for item in ordered]
        for vector in vectors:
            if len(vector) != self._dimensions:
                raise EmbeddingServiceError(
                    f"Embedding dimension mismatch: got {len(vector)}, expected {self._dimensions}"
                )
        return vectors

    def _check_input(self, text: str) -> None:
        if not text or not text.strip():
            raise EmbeddingRejected("Cannot embed empty text")
        # A token is at least one character, so short texts cannot exceed the limit
        if len(text) <= self._max_tokens:
            return
        token_count = len(self._get_encoding().encode(text))
        if token_count > self._max_tokens:
            raise EmbeddingRejected(
                f"Input has {token_count} tokens, model limit is {self._max_tokens}"
            )

    def _get_encoding(self) -> Any:
        if self._encoding is None:
            import tiktoken

            try:
                self._encoding = tiktoken.encoding_for_model(self._model)
            except KeyError:
                self._encoding = tiktoken.get_encoding("cl100k_base")
        return self._encoding


_WORD = re.compile(r"\w+")


class HashingEmbeddingGenerator:
    """Deterministic offline embeddings from feature-hashed word n-grams.

    Each lower-cased word and each pair of adjacent words is hashed into one
    of ``dimensions`` buckets with a +/-1 sign, and the result is
    L2-normalized. Texts sharing many words score high under cosine
    similarity, so a query quoting a passage finds that passage.

    Args:
        dimensions: Vector size.
    """

    provider = "hashing"

    def __init__(self, dimensions: int = 1536) -> None:
        if dimensions <= 0:
            raise ValueError("dimensions must be positive")
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    async def embed(self, text: str) -> list[float]:
        return self._vectorize(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [self._vectorize(text) for text in texts]

    def _vectorize(self, text: str) -> list[float]:
        words = _WORD.findall(text.lower())
        if not words:
            embedding_requests_total.labels(provider=self.provider, outcome="rejected").inc()
            raise EmbeddingRejected("Text has no embeddable words")

        features = words + [f"{a} {b}" for a, b in zip(words, words[1:])]
        vector = np.zeros(self._dimensions, dtype=np.float64)
        for feature in features:
            digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest()
            value = int.from_bytes(digest, "big")
            sign = 1.0 if value >> 63 else -1.0
            vector[value % self._dimensions] += sign

        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        embedding_requests_total.labels(provider=self.provider, outcome="success").inc()
        return vector.tolist()


def create_embedding_generator(config: TrainingConfig) -> EmbeddingGenerator:
    """Build the generator selected by ``config.embedding_provider``."""
    if config.embedding_provider == "hashing":
        logger.info("embeddings.provider_selected", provider="hashing", dimensions=config.embedding_dimensions)
        return HashingEmbeddingGenerator(config.embedding_dimensions)

    if not config.openai_api_key:
        logger.warning("embeddings.api_key_missing", provider="openai", model=config.embedding_model)
    logger.info(
        "embeddings.provider_selected",
        provider="openai",
        model=config.embedding_model,
        dimensions=config.embedding_dimensions,
    )
    return OpenAIEmbeddingGenerator(config)
