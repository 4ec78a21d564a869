"""Tests for embedding generators.

OpenAIEmbeddingGenerator is exercised against a mocked AsyncOpenAI client so
no network calls happen; the hashing generator is tested directly.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import numpy as np
import openai
import pytest

from src.training.config import TrainingConfig
from src.training.embeddings import (
    HashingEmbeddingGenerator,
    OpenAIEmbeddingGenerator,
    create_embedding_generator,
)
from src.training.errors import (
    EmbeddingRejected,
    EmbeddingServiceError,
    EmbeddingTimeout,
    ErrorKind,
)
from src.training.search import cosine_scores


# ── Helpers ─────────────────────────────────────────────────────────────────


def _config(**overrides) -> TrainingConfig:
    values = {
        "embedding_provider": "openai",
        "openai_api_key": "test-key-not-used",
        "embedding_dimensions": 4,
        "embedding_timeout_seconds": 5.0,
    }
    values.update(overrides)
    return TrainingConfig(**values)


def _response(*vectors: list[float], order: list[int] | None = None) -> SimpleNamespace:
    indices = order if order is not None else list(range(len(vectors)))
    return SimpleNamespace(
        data=[SimpleNamespace(index=i, embedding=vectors[i]) for i in indices]
    )


def _mock_client(**create_kwargs) -> MagicMock:
    client = MagicMock()
    client.embeddings.create = AsyncMock(**create_kwargs)
    return client


def _status_error(status_code: int) -> openai.APIStatusError:
    request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
    response = httpx.Response(status_code, request=request)
    return openai.APIStatusError(f"HTTP {status_code}", response=response, body=None)


# ── OpenAI Generator ────────────────────────────────────────────────────────


class TestOpenAIEmbeddingGenerator:
    """Tests for the remote generator's call shape and error mapping."""

    async def test_embed_batch_returns_vectors_in_input_order(self):
        first = [1.0, 0.0, 0.0, 0.0]
        second = [0.0, 1.0, 0.0, 0.0]
        client = _mock_client(return_value=_response(first, second, order=[1, 0]))
        generator = OpenAIEmbeddingGenerator(_config(), client=client)

        vectors = await generator.embed_batch(["alpha", "beta"])

        assert vectors == [first, second]
        client.embeddings.create.assert_awaited_once_with(
            input=["alpha", "beta"],
            model="text-embedding-3-small",
            dimensions=4,
        )

    async def test_embed_single(self):
        client = _mock_client(return_value=_response([0.5, 0.5, 0.5, 0.5]))
        generator = OpenAIEmbeddingGenerator(_config(), client=client)

        assert await generator.embed("hello") == [0.5, 0.5, 0.5, 0.5]
        assert generator.dimensions == 4

    async def test_empty_batch_skips_call(self):
        client = _mock_client(return_value=_response())
        generator = OpenAIEmbeddingGenerator(_config(), client=client)

        assert await generator.embed_batch([]) == []
        client.embeddings.create.assert_not_awaited()

    async def test_empty_text_rejected_without_call(self):
        client = _mock_client(return_value=_response([0.0] * 4))
        generator = OpenAIEmbeddingGenerator(_config(), client=client)

        with pytest.raises(EmbeddingRejected) as exc_info:
            await generator.embed("   ")
        assert exc_info.value.retryable is False
        client.embeddings.create.assert_not_awaited()

    async def test_dimension_mismatch_is_service_error(self):
        client = _mock_client(return_value=_response([1.0, 0.0]))
        generator = OpenAIEmbeddingGenerator(_config(), client=client)

        with pytest.raises(EmbeddingServiceError, match="dimension mismatch"):
            await generator.embed("hello")

    async def test_missing_vectors_is_service_error(self):
        client = _mock_client(return_value=_response([1.0, 0.0, 0.0, 0.0]))
        generator = OpenAIEmbeddingGenerator(_config(), client=client)

        with pytest.raises(EmbeddingServiceError):
            await generator.embed_batch(["one", "two"])

    async def test_slow_call_raises_timeout(self):
        async def _slow(**kwargs):
            await asyncio.sleep(1.0)

        client = _mock_client(side_effect=_slow)
        generator = OpenAIEmbeddingGenerator(_config(embedding_timeout_seconds=0.01), client=client)

        with pytest.raises(EmbeddingTimeout) as exc_info:
            await generator.embed("hello")
        assert exc_info.value.kind == ErrorKind.embedding_timeout
        assert exc_info.value.retryable is True

    async def test_client_timeout_raises_timeout(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
        client = _mock_client(side_effect=openai.APITimeoutError(request=request))
        generator = OpenAIEmbeddingGenerator(_config(), client=client)

        with pytest.raises(EmbeddingTimeout):
            await generator.embed("hello")

    @pytest.mark.parametrize("status_code", [400, 413, 422])
    async def test_refused_input_is_rejected(self, status_code):
        client = _mock_client(side_effect=_status_error(status_code))
        generator = OpenAIEmbeddingGenerator(_config(), client=client)

        with pytest.raises(EmbeddingRejected):
            await generator.embed("hello")

    @pytest.mark.parametrize("status_code", [429, 500, 503])
    async def test_upstream_failure_is_service_error(self, status_code):
        client = _mock_client(side_effect=_status_error(status_code))
        generator = OpenAIEmbeddingGenerator(_config(), client=client)

        with pytest.raises(EmbeddingServiceError) as exc_info:
            await generator.embed("hello")
        assert exc_info.value.retryable is True

    async def test_connection_error_is_service_error(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
        client = _mock_client(side_effect=openai.APIConnectionError(request=request))
        generator = OpenAIEmbeddingGenerator(_config(), client=client)

        with pytest.raises(EmbeddingServiceError):
            await generator.embed("hello")


# ── Hashing Generator ───────────────────────────────────────────────────────


class TestHashingEmbeddingGenerator:
    """Tests for the deterministic offline generator."""

    async def test_deterministic(self):
        generator = HashingEmbeddingGenerator(64)
        text = "Club membership renewal procedure"
        assert await generator.embed(text) == await generator.embed(text)

    async def test_dimensions_and_unit_norm(self):
        generator = HashingEmbeddingGenerator(64)
        vector = await generator.embed("Treasurer handbook chapter one")

        assert len(vector) == 64
        assert np.linalg.norm(vector) == pytest.approx(1.0)

    async def test_batch_matches_single_calls(self):
        generator = HashingEmbeddingGenerator(64)
        texts = ["first passage", "second passage"]
        batch = await generator.embed_batch(texts)
        assert batch == [await generator.embed(t) for t in texts]

    async def test_text_without_words_rejected(self):
        with pytest.raises(EmbeddingRejected):
            await HashingEmbeddingGenerator(64).embed("  ... !!! ")

    async def test_quoted_passage_scores_higher_than_unrelated(self):
        generator = HashingEmbeddingGenerator(256)
        passage = await generator.embed(
            "The club secretary keeps the minutes of every board meeting"
        )
        unrelated = await generator.embed(
            "Volunteers organise the annual charity football tournament"
        )
        query = await generator.embed("minutes of every board meeting")

        scores = cosine_scores(query, [passage, unrelated])
        assert scores[0] > scores[1]

    def test_invalid_dimensions(self):
        with pytest.raises(ValueError):
            HashingEmbeddingGenerator(0)


# ── Factory ─────────────────────────────────────────────────────────────────


class TestCreateEmbeddingGenerator:
    def test_hashing_provider(self):
        generator = create_embedding_generator(
            _config(embedding_provider="hashing", embedding_dimensions=32)
        )
        assert isinstance(generator, HashingEmbeddingGenerator)
        assert generator.dimensions == 32

    def test_openai_provider(self):
        generator = create_embedding_generator(_config())
        assert isinstance(generator, OpenAIEmbeddingGenerator)
        assert generator.dimensions == 4
