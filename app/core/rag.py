"""In-memory retrieval store for uploaded documents and website content.

Non-persistent: vectors live in process memory and vanish on restart. Good
enough to ground a research brief on what the user uploaded this session.
"""

import re
import time
from collections.abc import Awaitable, Callable, Collection
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

import numpy as np

from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.nim_client import embeddings

logger = get_logger(__name__)

DOMAIN_CACHE_TTL_SECONDS = 24 * 60 * 60

EmbedFn = Callable[..., Awaitable[list[list[float]]]]

_WORD_RE = re.compile(r"[a-z0-9]+")


@dataclass
class RagDocument:
    id: str
    text: str
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass
class RagHit:
    id: str
    text: str
    score: float
    meta: dict[str, Any] = field(default_factory=dict)


def chunk_text(text: str, chunk_size: int = 1200, overlap: int = 150) -> list[str]:
    """Split text into fixed-size windows that overlap by `overlap` characters."""
    if chunk_size <= overlap:
        raise ValueError("chunk_size must be larger than overlap")
    chunks = []
    start = 0
    while start < len(text):
        chunks.append(text[start : start + chunk_size])
        start += chunk_size - overlap
    return chunks


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    denom = float(np.linalg.norm(a) * np.linalg.norm(b)) + 1e-8
    return float(np.dot(a, b) / denom)


def _terms(text: str) -> set[str]:
    return set(_WORD_RE.findall(text.lower()))


class RagStore:
    """Embedded chunks keyed by id, plus a per-domain cache of which chunks came from where."""

    def __init__(self, embed: EmbedFn | None = None, enabled: bool | None = None):
        self._embed = embed or embeddings
        self.enabled = get_settings().RAG_ENABLED if enabled is None else enabled
        self._docs: dict[str, RagDocument] = {}
        self._vectors: dict[str, np.ndarray] = {}
        self._domain_cache: dict[str, tuple[float, list[str]]] = {}

    def __len__(self) -> int:
        return len(self._docs)

    def __contains__(self, doc_id: object) -> bool:
        return doc_id in self._docs

    async def add_documents(self, docs: list[RagDocument]) -> int:
        """Embed and store documents; returns how many were embedded.

        A document whose id is already stored with the same text is skipped.
        Same id with different text replaces the stored chunk and its vector.
        """
        if not self.enabled or not docs:
            return 0
        fresh = [
            doc
            for doc in docs
            if doc.id not in self._docs or self._docs[doc.id].text != doc.text
        ]
        if not fresh:
            return 0
        vectors = await self._embed([doc.text for doc in fresh], input_type="passage")
        for doc, vector in zip(fresh, vectors):
            self._docs[doc.id] = doc
            self._vectors[doc.id] = np.asarray(vector, dtype=float)
        logger.info(f"RAG store embedded {len(fresh)} chunks (total {len(self._docs)})")
        return len(fresh)

    async def query(
        self, query: str, k: int = 12, doc_ids: Collection[str] | None = None
    ) -> list[RagHit]:
        """Rank stored chunks against `query`, limited to `doc_ids` when given."""
        if not self.enabled:
            return []
        candidates = list(self._docs.values()) if doc_ids is None else self.get_docs_by_ids(doc_ids)
        if not candidates:
            return []
        vectors = await self._embed([query], input_type="query")
        if not vectors:
            return []
        q = np.asarray(vectors[0], dtype=float)

        hits = [
            RagHit(
                id=doc.id,
                text=doc.text,
                score=cosine_similarity(q, self._vectors[doc.id]),
                meta=doc.meta,
            )
            for doc in candidates
        ]
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:k]

    def rerank(self, query: str, hits: list[RagHit], k: int = 6) -> list[RagHit]:
        """Blend vector score with query-term overlap and keep the top k."""
        if not hits:
            return []
        query_terms = _terms(query)

        def _blended(hit: RagHit) -> float:
            if not query_terms:
                return hit.score
            overlap = len(query_terms & _terms(hit.text)) / len(query_terms)
            return 0.8 * hit.score + 0.2 * overlap

        ranked = [
            RagHit(id=hit.id, text=hit.text, score=_blended(hit), meta=hit.meta) for hit in hits
        ]
        ranked.sort(key=lambda hit: hit.score, reverse=True)
        return ranked[:k]

    def get_docs_by_ids(self, ids: Collection[str]) -> list[RagDocument]:
        return [self._docs[doc_id] for doc_id in dict.fromkeys(ids) if doc_id in self._docs]

    def cache_domain(self, domain: str, doc_ids: list[str]) -> None:
        self._domain_cache[domain] = (time.time(), list(doc_ids))

    def get_cached_domain(self, domain: str) -> list[str] | None:
        entry = self._domain_cache.get(domain)
        if entry is None:
            return None
        cached_at, doc_ids = entry
        if time.time() - cached_at > DOMAIN_CACHE_TTL_SECONDS:
            del self._domain_cache[domain]
            return None
        return doc_ids

    def clear(self) -> None:
        self._docs.clear()
        self._vectors.clear()
        self._domain_cache.clear()


async def index_text(
    store: RagStore, source_id: str, text: str, meta: dict[str, Any] | None = None
) -> list[str]:
    """Chunk `text` and add it to the store under ids `{source_id}#{n}`; returns the stored ids."""
    docs = [
        RagDocument(id=f"{source_id}#{index}", text=chunk, meta={**(meta or {}), "chunk": index})
        for index, chunk in enumerate(chunk_text(text))
        if chunk.strip()
    ]
    await store.add_documents(docs)
    return [doc.id for doc in docs if doc.id in store]


@lru_cache
def get_rag_store() -> RagStore:
    """Process-wide store shared by the analysis routes and the research agent."""
    return RagStore()
