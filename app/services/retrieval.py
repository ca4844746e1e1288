# =============================================================================
# Policy Retrieval — Retrieval Collaborator for the Policy Expert
# =============================================================================
#
# Given a query, returns an ordered list of (content, relevance score)
# results. Only the policy expert consumes this; the orchestration core
# never sees it.
#
# PolicyRetriever is a Protocol, like LLMProvider: anything with an
# async `search()` qualifies.
#
# The collection is queried with `query_texts`; Chroma's configured
# embedding function vectorises the query.
#
# Layout:
#   PolicyRetriever (Protocol)
#   ├── ChromaPolicyStore     — ChromaDB (in-process or client/server)
#   │   ├── add_policies()    — sync, used by scripts/seed_policies.py
#   │   └── search()          — async via asyncio.to_thread() wrapper
#   └── get_policy_retriever() — Lazy singleton factory
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import chromadb

from app.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result Type
# ---------------------------------------------------------------------------


@dataclass
class PolicySearchResult:
    """A single retrieved policy snippet."""

    content: str
    similarity_score: float  # 0.0–1.0, higher = more relevant
    metadata: dict = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Retriever Protocol
# ---------------------------------------------------------------------------


class PolicyRetriever(Protocol):
    """Protocol defining the retrieval collaborator."""

    async def search(
        self,
        query: str,
        top_k: int = 5,
    ) -> list[PolicySearchResult]:
        """
        Find the policy snippets most relevant to the query.

        Returns:
            Results sorted by similarity (highest first).
        """
        ...


# ---------------------------------------------------------------------------
# Implementation: ChromaDB
# ---------------------------------------------------------------------------


class ChromaPolicyStore:
    """
    Policy snippets kept in one Chroma collection.

    With CHROMA_URL set the store talks to a Chroma server; otherwise it
    uses an in-process client whose data lives only as long as the process.
    A ready-made collection may be injected instead (tests do this).
    """

    def __init__(
        self,
        collection: Any | None = None,
        similarity_threshold: float | None = None,
    ) -> None:
        if collection is None:
            if settings.chroma_url:
                client = chromadb.HttpClient(host=settings.chroma_url)
            else:
                client = chromadb.Client()
            collection = client.get_or_create_collection(
                name=settings.policy_collection,
                metadata={"hnsw:space": "cosine"},
            )
        self._collection = collection
        self._threshold = (
            similarity_threshold
            if similarity_threshold is not None
            else settings.retrieval_similarity_threshold
        )

    def add_policies(
        self,
        ids: list[str],
        contents: list[str],
        metadatas: list[dict] | None = None,
    ) -> None:
        """Upsert policy documents. Sync (ChromaDB client is sync)."""
        kwargs: dict = {"ids": ids, "documents": contents}
        if metadatas is not None:
            kwargs["metadatas"] = [_chroma_scalar_metadata(m) for m in metadatas]
        self._collection.upsert(**kwargs)
        logger.info("Stored %d policy documents in ChromaDB", len(ids))

    async def search(
        self,
        query: str,
        top_k: int = 5,
    ) -> list[PolicySearchResult]:
        """
        Return snippets at or above the similarity threshold, best first.

        The Chroma client blocks, so the query runs in a worker thread.
        """

        def _sync_search() -> list[PolicySearchResult]:
            results = self._collection.query(
                query_texts=[query],
                n_results=top_k,
                include=["documents", "metadatas", "distances"],
            )

            found: list[PolicySearchResult] = []
            if not results or not results.get("ids") or not results["ids"][0]:
                return found

            documents = results.get("documents") or [[]]
            metadatas = results.get("metadatas") or [[]]
            distances = results.get("distances") or [[]]
            for i in range(len(results["ids"][0])):
                distance = distances[0][i] if distances[0] else 0.0
                # Cosine distance is in [0, 2]; convert to similarity
                similarity = round(1.0 - distance, 4)
                if similarity < self._threshold:
                    continue
                found.append(PolicySearchResult(
                    content=documents[0][i] if documents[0] else "",
                    similarity_score=similarity,
                    metadata=(metadatas[0][i] if metadatas[0] else None) or {},
                ))

            found.sort(key=lambda r: r.similarity_score, reverse=True)
            return found

        results = await asyncio.to_thread(_sync_search)
        logger.info(
            "Policy search complete: %d results for query '%s'",
            len(results), query[:50],
        )
        return results


# ---------------------------------------------------------------------------
# Process-wide Instance
# ---------------------------------------------------------------------------

_retriever: ChromaPolicyStore | None = None


def get_policy_retriever() -> ChromaPolicyStore:
    """Return the process-wide policy store, creating it on first use."""
    global _retriever
    if _retriever is None:
        logger.info("Using ChromaDB policy store")
        _retriever = ChromaPolicyStore()
    return _retriever


# ---------------------------------------------------------------------------
# Metadata Flattening
# ---------------------------------------------------------------------------


def _chroma_scalar_metadata(metadata: dict) -> dict:
    """Flatten metadata to the scalar types Chroma stores (lists joined by commas, None to "")."""
    return {key: _to_scalar(value) for key, value in metadata.items()}


def _to_scalar(value: Any) -> str | int | float | bool:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ",".join(map(str, value))
    if isinstance(value, (str, int, float, bool)):
        return value
    return str(value)
