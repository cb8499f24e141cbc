"""FAISS-backed vector store with named collections.

Each collection is an inner-product index over L2-normalized vectors, so
the reported distance is cosine distance (1 - similarity).
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import faiss
import numpy as np

from .errors import CollectionNotFound, EmptyInput, UnreachableStore
from .models import MetadataValue, SearchHit

logger = logging.getLogger(__name__)

DOCSTORE_VERSION = "1.0"


@dataclass
class _Collection:
    collection_id: str
    name: str
    index: Optional[faiss.Index] = None
    ids: list[str] = field(default_factory=list)
    texts: list[str] = field(default_factory=list)
    metadatas: list[dict[str, MetadataValue]] = field(default_factory=list)


def _as_matrix(vectors: list[list[float]] | np.ndarray) -> np.ndarray:
    matrix = np.asarray(vectors, dtype=np.float32)
    if matrix.ndim == 1:
        matrix = matrix.reshape(1, -1)
    if matrix.size == 0:
        raise EmptyInput("Vector cannot be empty")
    matrix = np.ascontiguousarray(matrix)
    faiss.normalize_L2(matrix)
    return matrix


class FaissVectorStore:
    """In-process vector store; persists to `<index_dir>/<name>.index` + docstore JSON."""

    def __init__(self) -> None:
        self._by_id: dict[str, _Collection] = {}
        self._by_name: dict[str, str] = {}

    def create_collection(self, name: str, collection_id: Optional[str] = None) -> str:
        """Create a collection (or return the existing one) and return its id."""
        if name in self._by_name:
            return self._by_name[name]
        collection_id = collection_id or str(uuid.uuid4())
        self._by_id[collection_id] = _Collection(collection_id=collection_id, name=name)
        self._by_name[name] = collection_id
        return collection_id

    def _get(self, collection_id: str) -> _Collection:
        collection = self._by_id.get(collection_id)
        if collection is None:
            raise CollectionNotFound(collection_id)
        return collection

    def add(
        self,
        collection_id: str,
        ids: list[str],
        texts: list[str],
        embeddings: list[list[float]] | np.ndarray,
        metadatas: Optional[list[dict[str, MetadataValue]]] = None,
    ) -> None:
        """Add documents with embeddings to a collection."""
        if not ids:
            raise ValueError("Documents array cannot be empty")
        if len(ids) != len(texts):
            raise ValueError("ids and texts must have the same length")

        collection = self._get(collection_id)
        matrix = _as_matrix(embeddings)
        if collection.index is None:
            collection.index = faiss.IndexFlatIP(matrix.shape[1])
        collection.index.add(matrix)

        collection.ids.extend(ids)
        collection.texts.extend(texts)
        collection.metadatas.extend(metadatas or [{} for _ in ids])

    async def get_collection_id(self, name: str) -> str:
        collection_id = self._by_name.get(name)
        if collection_id is None:
            raise CollectionNotFound(name)
        return collection_id

    async def search(self, collection_id: str, vector: list[float], top_k: int) -> list[SearchHit]:
        """Return up to top_k nearest chunks, closest first.

        Raises:
            CollectionNotFound: If the collection does not exist.
        """
        collection = self._get(collection_id)
        if collection.index is None or collection.index.ntotal == 0:
            return []
        return await asyncio.to_thread(self._search, collection, vector, top_k)

    def _search(self, collection: _Collection, vector: list[float], top_k: int) -> list[SearchHit]:
        query = _as_matrix(vector)
        k = min(top_k, collection.index.ntotal)
        scores, indices = collection.index.search(query, k)

        hits = []
        for score, idx in zip(scores[0], indices[0]):
            # Skip invalid indices (can happen if k > index size)
            if idx < 0 or idx >= len(collection.ids):
                continue
            hits.append(
                SearchHit(
                    id=collection.ids[idx],
                    text=collection.texts[idx],
                    distance=max(0.0, 1.0 - float(score)),
                    metadata=collection.metadatas[idx],
                )
            )
        return hits

    def count(self, collection_id: str) -> int:
        collection = self._get(collection_id)
        return 0 if collection.index is None else collection.index.ntotal

    def save(self, index_dir: Path) -> None:
        """Write every collection to disk."""
        index_dir.mkdir(parents=True, exist_ok=True)
        for collection in self._by_id.values():
            if collection.index is not None:
                faiss.write_index(collection.index, str(index_dir / f"{collection.name}.index"))
            docstore = {
                "version": DOCSTORE_VERSION,
                "collection_id": collection.collection_id,
                "name": collection.name,
                "ids": collection.ids,
                "texts": collection.texts,
                "metadatas": collection.metadatas,
            }
            with open(index_dir / f"{collection.name}.docstore.json", "w", encoding="utf-8") as f:
                json.dump(docstore, f, ensure_ascii=False)
        logger.info("Saved %d collections to %s", len(self._by_id), index_dir)

    @classmethod
    def load(cls, index_dir: Path) -> "FaissVectorStore":
        """Load all collections written by `save`.

        Raises:
            UnreachableStore: If the index directory does not exist.
        """
        if not index_dir.exists():
            raise UnreachableStore(f"Index directory not found at {index_dir}. Run indexing first.")

        store = cls()
        for docstore_path in sorted(index_dir.glob("*.docstore.json")):
            with open(docstore_path, encoding="utf-8") as f:
                docstore = json.load(f)

            name = docstore["name"]
            collection_id = store.create_collection(name, docstore.get("collection_id"))
            collection = store._by_id[collection_id]
            collection.ids = list(docstore.get("ids", []))
            collection.texts = list(docstore.get("texts", []))
            collection.metadatas = list(docstore.get("metadatas", []))

            index_path = index_dir / f"{name}.index"
            if index_path.exists():
                collection.index = faiss.read_index(str(index_path))
            logger.info("Loaded collection %s with %d chunks", name, len(collection.ids))
        return store
