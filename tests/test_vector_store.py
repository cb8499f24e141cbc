"""Tests for the FAISS vector store."""

import asyncio
import threading
from unittest.mock import patch

import pytest

from src.ragtrust.errors import CollectionNotFound, UnreachableStore
from src.ragtrust.vector_store import FaissVectorStore


@pytest.fixture
def populated_store():
    store = FaissVectorStore()
    collection_id = store.create_collection("university-corpus")
    store.add(
        collection_id,
        ids=["admission_rules_2024_s1", "campus_guide_na_s1", "exam_rules_2023_s1"],
        texts=["Submit the form online.", "The library opens at eight.", "Retakes happen in June."],
        embeddings=[[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.6, 0.0, 0.8]],
        metadatas=[{"year": 2024, "category": "admission"}, {}, {"year": 2023}],
    )
    return store, collection_id


class TestFaissVectorStore:
    """Tests for FaissVectorStore."""

    def test_search_closest_first(self, populated_store):
        store, collection_id = populated_store

        hits = asyncio.run(store.search(collection_id, [1.0, 0.0, 0.0], 2))

        assert [h.id for h in hits] == ["admission_rules_2024_s1", "exam_rules_2023_s1"]
        assert hits[0].distance == pytest.approx(0.0, abs=1e-6)
        assert hits[1].distance == pytest.approx(0.4, abs=1e-6)
        assert hits[0].metadata == {"year": 2024, "category": "admission"}

    def test_search_runs_in_worker_thread(self, populated_store):
        store, collection_id = populated_store
        threads = []
        search = store._search

        def recording_search(*args):
            threads.append(threading.get_ident())
            return search(*args)

        with patch.object(store, "_search", side_effect=recording_search):
            hits = asyncio.run(store.search(collection_id, [1.0, 0.0, 0.0], 1))

        assert hits[0].id == "admission_rules_2024_s1"
        assert threads and threads[0] != threading.get_ident()

    def test_top_k_larger_than_collection(self, populated_store):
        store, collection_id = populated_store
        hits = asyncio.run(store.search(collection_id, [0.0, 1.0, 0.0], 10))
        assert len(hits) == 3
        assert hits[0].id == "campus_guide_na_s1"

    def test_empty_collection(self):
        store = FaissVectorStore()
        collection_id = store.create_collection("empty")
        assert asyncio.run(store.search(collection_id, [1.0, 0.0], 3)) == []
        assert store.count(collection_id) == 0

    def test_create_collection_is_idempotent(self, populated_store):
        store, collection_id = populated_store
        assert store.create_collection("university-corpus") == collection_id

    def test_collection_lookup(self, populated_store):
        store, collection_id = populated_store
        assert asyncio.run(store.get_collection_id("university-corpus")) == collection_id
        with pytest.raises(CollectionNotFound):
            asyncio.run(store.get_collection_id("missing"))

    def test_unknown_collection_id(self, populated_store):
        store, _ = populated_store
        with pytest.raises(CollectionNotFound):
            asyncio.run(store.search("missing-id", [1.0, 0.0, 0.0], 1))

    def test_add_validates_lengths(self, populated_store):
        store, collection_id = populated_store
        with pytest.raises(ValueError):
            store.add(collection_id, ids=[], texts=[], embeddings=[])
        with pytest.raises(ValueError):
            store.add(collection_id, ids=["a"], texts=["a", "b"], embeddings=[[1.0, 0.0, 0.0]])

    def test_save_and_load(self, populated_store, tmp_path):
        store, collection_id = populated_store
        store.save(tmp_path)

        loaded = FaissVectorStore.load(tmp_path)

        assert asyncio.run(loaded.get_collection_id("university-corpus")) == collection_id
        assert loaded.count(collection_id) == 3
        hits = asyncio.run(loaded.search(collection_id, [0.6, 0.0, 0.8], 1))
        assert hits[0].id == "exam_rules_2023_s1"
        assert hits[0].text == "Retakes happen in June."

    def test_load_missing_directory(self, tmp_path):
        with pytest.raises(UnreachableStore):
            FaissVectorStore.load(tmp_path / "missing")
