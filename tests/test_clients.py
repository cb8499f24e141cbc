"""Tests for the generation and embedding adapters."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import numpy as np
import pytest

from src.ragtrust.clients import (
    AnthropicGenerator,
    CollectionCache,
    SentenceTransformerEmbedder,
    resolve_collection_id,
)
from src.ragtrust.errors import CollaboratorError, EmptyInput, ModelNotFound, UnreachableModel
from tests.fakes import FakeVectorStore

REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def mock_client(text="Answer [1]."):
    client = MagicMock()
    response = MagicMock()
    response.content = [MagicMock(text=text)]
    client.messages.create = AsyncMock(return_value=response)
    return client


class TestAnthropicGenerator:
    """Tests for AnthropicGenerator."""

    def test_generate(self, test_settings):
        client = mock_client("  Answer [1].  ")
        generator = AnthropicGenerator(client=client, app_settings=test_settings)

        text = asyncio.run(generator.generate("prompt"))

        assert text == "Answer [1]."
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == test_settings.anthropic_model
        assert kwargs["temperature"] == 0.0
        assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]

    def test_model_override(self, test_settings):
        client = mock_client()
        generator = AnthropicGenerator(client=client, app_settings=test_settings)

        asyncio.run(generator.generate("prompt", "claude-other"))

        assert client.messages.create.call_args.kwargs["model"] == "claude-other"

    def test_missing_api_key(self, test_settings):
        test_settings.anthropic_api_key = ""
        with pytest.raises(ValueError, match="API key"):
            AnthropicGenerator(app_settings=test_settings)

    def test_connection_error(self, test_settings):
        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=anthropic.APIConnectionError(request=REQUEST))
        generator = AnthropicGenerator(client=client, app_settings=test_settings)

        with pytest.raises(UnreachableModel):
            asyncio.run(generator.generate("prompt"))

    def test_unknown_model(self, test_settings):
        error = anthropic.NotFoundError(
            "model not found", response=httpx.Response(404, request=REQUEST), body=None
        )
        client = MagicMock()
        client.messages.create = AsyncMock(side_effect=error)
        generator = AnthropicGenerator(client=client, app_settings=test_settings)

        with pytest.raises(ModelNotFound, match="missing-model"):
            asyncio.run(generator.generate("prompt", "missing-model"))

    def test_empty_response(self, test_settings):
        generator = AnthropicGenerator(client=mock_client("   "), app_settings=test_settings)
        with pytest.raises(CollaboratorError):
            asyncio.run(generator.generate("prompt"))


class TestSentenceTransformerEmbedder:
    """Tests for SentenceTransformerEmbedder."""

    def test_embedding_normalized(self):
        model = MagicMock()
        model.encode.return_value = np.array([[3.0, 4.0]], dtype=np.float32)
        embedder = SentenceTransformerEmbedder(model_name="test-model", model=model)

        vector = asyncio.run(embedder.embed("admission rules"))

        assert vector == pytest.approx([0.6, 0.8])
        model.encode.assert_called_once()

    def test_blank_text(self):
        embedder = SentenceTransformerEmbedder(model_name="test-model", model=MagicMock())
        with pytest.raises(EmptyInput):
            asyncio.run(embedder.embed("  "))

    def test_empty_vector(self):
        model = MagicMock()
        model.encode.return_value = np.zeros((1, 0), dtype=np.float32)
        embedder = SentenceTransformerEmbedder(model_name="test-model", model=model)

        with pytest.raises(EmptyInput):
            asyncio.run(embedder.embed("text"))


class TestCollectionCache:
    """Tests for collection name resolution."""

    def test_loader_called_once(self):
        store = FakeVectorStore()
        cache = CollectionCache()

        first = asyncio.run(resolve_collection_id("university-corpus", store, cache))
        second = asyncio.run(resolve_collection_id("university-corpus", store, cache))

        assert first == second == "col-1"
        assert store.lookups == 1

    def test_failed_lookup_not_cached(self):
        store = FakeVectorStore()
        cache = CollectionCache()

        with pytest.raises(CollaboratorError):
            asyncio.run(resolve_collection_id("missing", store, cache))

        assert cache.get("missing") is None
        assert len(cache) == 0

    def test_clear(self):
        cache = CollectionCache()
        cache.put("a", "id-a")
        cache.clear()
        assert cache.get("a") is None
