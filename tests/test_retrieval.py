# =============================================================================
# Unit Tests — Policy Retrieval (ChromaDB backend)
# =============================================================================
#
# Result mapping, similarity threshold and ordering are tested against a
# fake collection, so Chroma's default embedding model is never loaded.
# =============================================================================

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

from app.services.retrieval import (
    ChromaPolicyStore,
    PolicySearchResult,
    _chroma_scalar_metadata,
)


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _collection_returning(ids, documents, metadatas, distances) -> MagicMock:
    collection = MagicMock()
    collection.query.return_value = {
        "ids": [ids],
        "documents": [documents],
        "metadatas": [metadatas],
        "distances": [distances],
    }
    return collection


class TestChromaPolicyStoreSearch:
    def test_results_sorted_by_similarity(self):
        collection = _collection_returning(
            ids=["p1", "p2"],
            documents=["新市民专项额度", "小微企业首贷利率下浮"],
            metadatas=[{"code": "P-002"}, {"code": "P-001"}],
            distances=[0.2, 0.05],
        )
        store = ChromaPolicyStore(collection=collection, similarity_threshold=0.5)

        results = _run(store.search("小微企业优惠", top_k=2))

        assert [r.content for r in results] == ["小微企业首贷利率下浮", "新市民专项额度"]
        assert results[0].similarity_score == 0.95
        assert results[0].metadata == {"code": "P-001"}
        kwargs = collection.query.call_args.kwargs
        assert kwargs["query_texts"] == ["小微企业优惠"]
        assert kwargs["n_results"] == 2

    def test_threshold_filters_weak_matches(self):
        collection = _collection_returning(
            ids=["p1", "p2"],
            documents=["strong", "weak"],
            metadatas=[None, None],
            distances=[0.1, 0.6],
        )
        store = ChromaPolicyStore(collection=collection, similarity_threshold=0.7)

        results = _run(store.search("q"))

        assert results == [PolicySearchResult(content="strong", similarity_score=0.9)]

    def test_empty_collection(self):
        collection = MagicMock()
        collection.query.return_value = {"ids": [[]]}
        store = ChromaPolicyStore(collection=collection)

        assert _run(store.search("q")) == []


class TestAddPolicies:
    def test_upsert_sanitises_metadata(self):
        collection = MagicMock()
        store = ChromaPolicyStore(collection=collection)

        store.add_policies(
            ids=["p1"],
            contents=["小微企业首贷利率下浮"],
            metadatas=[{"tags": ["小微", "首贷"], "expires": None}],
        )

        collection.upsert.assert_called_once_with(
            ids=["p1"],
            documents=["小微企业首贷利率下浮"],
            metadatas=[{"tags": "小微,首贷", "expires": ""}],
        )


class TestSanitiseMetadata:
    def test_scalars_kept(self):
        assert _chroma_scalar_metadata({"a": 1, "b": 0.5, "c": True, "d": "x"}) == {
            "a": 1, "b": 0.5, "c": True, "d": "x",
        }

    def test_other_types_stringified(self):
        assert _chroma_scalar_metadata({"a": {"nested": 1}}) == {"a": "{'nested': 1}"}
