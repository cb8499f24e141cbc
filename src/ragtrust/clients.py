"""External collaborators: generation, embedding and collection resolution.

The engine depends only on the `Generator`, `Embedder` and `VectorStore`
protocols. Concrete adapters wrap the Anthropic API and a local
sentence-transformers model; tests substitute in-memory fakes.
"""

import asyncio
import logging
import threading
from typing import Awaitable, Callable, Optional, Protocol

import anthropic
import faiss
import numpy as np
from sentence_transformers import SentenceTransformer

from .config import Settings, settings
from .errors import CollaboratorError, EmptyInput, ModelNotFound, UnreachableModel
from .models import SearchHit

logger = logging.getLogger(__name__)


class Generator(Protocol):
    """Text generation collaborator."""

    async def generate(self, prompt: str, model: Optional[str] = None) -> str: ...


class Embedder(Protocol):
    """Text embedding collaborator."""

    async def embed(self, text: str) -> list[float]: ...


class VectorStore(Protocol):
    """Nearest-neighbor search collaborator."""

    async def search(self, collection_id: str, vector: list[float], top_k: int) -> list[SearchHit]: ...

    async def get_collection_id(self, name: str) -> str: ...


# =============================================================================
# Anthropic Generation
# =============================================================================


class AnthropicGenerator:
    """Generator backed by the Anthropic Messages API."""

    def __init__(
        self,
        client: Optional[anthropic.AsyncAnthropic] = None,
        app_settings: Optional[Settings] = None,
    ):
        self.settings = app_settings or settings
        if client is None:
            if not self.settings.anthropic_api_key:
                raise ValueError(
                    "Anthropic API key not configured. Set ANTHROPIC_API_KEY in .env file."
                )
            client = anthropic.AsyncAnthropic(api_key=self.settings.anthropic_api_key)
        self.client = client

    async def generate(self, prompt: str, model: Optional[str] = None) -> str:
        """Generate a completion for a single user prompt.

        Raises:
            UnreachableModel: If the API cannot be reached.
            ModelNotFound: If the model name is unknown.
            CollaboratorError: If the API returns an empty response.
        """
        model_name = model or self.settings.anthropic_model
        try:
            message = await self.client.messages.create(
                model=model_name,
                max_tokens=self.settings.generation_max_tokens,
                temperature=self.settings.generation_temperature,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIConnectionError as e:
            raise UnreachableModel(str(e)) from e
        except anthropic.NotFoundError as e:
            raise ModelNotFound(f"{model_name}: {e}") from e

        text = "".join(
            getattr(block, "text", "") for block in message.content
        ).strip()
        if not text:
            raise CollaboratorError(f"{model_name} returned an empty response.")
        return text


# =============================================================================
# Sentence-Transformers Embedding
# =============================================================================


class SentenceTransformerEmbedder:
    """Embedder backed by a local sentence-transformers model."""

    def __init__(self, model_name: Optional[str] = None, model: Optional[SentenceTransformer] = None):
        self.model_name = model_name or settings.embedding_model
        self._model = model
        self._load_lock = threading.Lock()

    def get_model(self) -> SentenceTransformer:
        """Get or load the embedding model."""
        with self._load_lock:
            if self._model is None:
                logger.info("Loading embedding model: %s", self.model_name)
                try:
                    self._model = SentenceTransformer(self.model_name)
                except OSError as e:
                    raise UnreachableModel(f"{self.model_name}: {e}") from e
            return self._model

    def _encode(self, text: str) -> list[float]:
        embedding = self.get_model().encode([text], convert_to_numpy=True).astype(np.float32)
        if embedding.size == 0:
            raise EmptyInput("Embedding model returned an empty vector.")
        # Normalize for cosine similarity
        faiss.normalize_L2(embedding)
        return embedding[0].tolist()

    async def embed(self, text: str) -> list[float]:
        """Embed text in a worker thread.

        Raises:
            EmptyInput: If the text is blank.
        """
        if not text or not text.strip():
            raise EmptyInput("Text cannot be empty")
        return await asyncio.to_thread(self._encode, text)


# =============================================================================
# Collection Resolution
# =============================================================================


class CollectionCache:
    """Name to collection-id cache shared across concurrent evaluations.

    Concurrent misses for the same name may both call the loader; the
    mapping is idempotent, so the last writer wins.
    """

    def __init__(self) -> None:
        self._entries: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> Optional[str]:
        with self._lock:
            return self._entries.get(name)

    def put(self, name: str, collection_id: str) -> None:
        with self._lock:
            self._entries[name] = collection_id

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    async def get_or_insert(self, name: str, loader: Callable[[], Awaitable[str]]) -> str:
        """Return the cached id, or load and cache it."""
        cached = self.get(name)
        if cached is not None:
            return cached
        collection_id = await loader()
        self.put(name, collection_id)
        return collection_id


async def resolve_collection_id(name: str, store: VectorStore, cache: CollectionCache) -> str:
    """Resolve a collection name through the cache."""
    return await cache.get_or_insert(name, lambda: store.get_collection_id(name))
