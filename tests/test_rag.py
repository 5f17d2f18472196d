"""Tests for the in-memory RAG store."""

from unittest.mock import patch

import pytest

from app.core.rag import DOMAIN_CACHE_TTL_SECONDS, RagDocument, RagStore, chunk_text, index_text

VOCAB = ("invoice", "customer", "bread")


async def keyword_embed(texts, input_type="passage"):
    return [[float(text.lower().count(word)) for word in VOCAB] + [0.1] for text in texts]


def test_chunk_text_overlaps():
    chunks = chunk_text("a" * 2500, chunk_size=1200, overlap=150)
    assert [len(c) for c in chunks] == [1200, 1200, 400]


def test_chunk_text_rejects_bad_overlap():
    with pytest.raises(ValueError):
        chunk_text("abc", chunk_size=100, overlap=100)


@pytest.mark.asyncio
async def test_query_ranks_by_similarity():
    store = RagStore(embed=keyword_embed, enabled=True)
    await store.add_documents(
        [
            RagDocument(id="a", text="invoice invoice invoice reminders"),
            RagDocument(id="b", text="customer loyalty and customer churn"),
        ]
    )

    hits = await store.query("late invoice follow-up", k=2)
    assert [h.id for h in hits] == ["a", "b"]
    assert hits[0].score > hits[1].score


@pytest.mark.asyncio
async def test_disabled_store_is_inert():
    store = RagStore(embed=keyword_embed, enabled=False)
    assert await store.add_documents([RagDocument(id="a", text="invoice")]) == 0
    assert await store.query("invoice") == []
    assert len(store) == 0


@pytest.mark.asyncio
async def test_rerank_uses_term_overlap():
    store = RagStore(embed=keyword_embed, enabled=True)
    await store.add_documents(
        [
            RagDocument(id="a", text="bread bread"),
            RagDocument(id="b", text="sourdough bread pricing"),
        ]
    )
    hits = await store.query("sourdough pricing", k=2)
    reranked = store.rerank("sourdough pricing", hits, k=1)
    assert reranked[0].id == "b"


@pytest.mark.asyncio
async def test_index_text_ids():
    store = RagStore(embed=keyword_embed, enabled=True)
    ids = await index_text(store, "file:report.txt", "x" * 2000, {"filename": "report.txt"})
    assert ids == ["file:report.txt#0", "file:report.txt#1"]
    docs = store.get_docs_by_ids(ids)
    assert docs[1].meta == {"filename": "report.txt", "chunk": 1}


def test_domain_cache_expires():
    store = RagStore(embed=keyword_embed, enabled=True)
    with patch("app.core.rag.time.time", return_value=1000.0):
        store.cache_domain("example.com", ["web:example.com#0"])
        assert store.get_cached_domain("example.com") == ["web:example.com#0"]

    with patch("app.core.rag.time.time", return_value=1000.0 + DOMAIN_CACHE_TTL_SECONDS + 1):
        assert store.get_cached_domain("example.com") is None


@pytest.mark.asyncio
async def test_reindexing_keeps_one_vector_per_chunk():
    store = RagStore(embed=keyword_embed, enabled=True)
    await index_text(store, "file:aaa:notes.txt", "bread orders are falling", {})
    await index_text(store, "file:bbb:notes.txt", "invoice backlog", {})
    await index_text(store, "file:bbb:notes.txt", "invoice backlog", {})

    assert len(store) == 2
    hits = await store.query("bread", k=5)
    assert [h.id for h in hits] == ["file:aaa:notes.txt#0", "file:bbb:notes.txt#0"]
    assert hits[0].score > 0.9


@pytest.mark.asyncio
async def test_same_id_with_new_text_replaces_chunk():
    store = RagStore(embed=keyword_embed, enabled=True)
    await store.add_documents([RagDocument(id="a", text="bread")])
    assert await store.add_documents([RagDocument(id="a", text="invoice")]) == 1

    assert len(store) == 1
    hits = await store.query("invoice", k=1)
    assert hits[0].text == "invoice"
    assert hits[0].score > 0.9


@pytest.mark.asyncio
async def test_query_limited_to_doc_ids():
    store = RagStore(embed=keyword_embed, enabled=True)
    await store.add_documents(
        [
            RagDocument(id="mine#0", text="customer churn"),
            RagDocument(id="other#0", text="customer customer customer"),
        ]
    )

    hits = await store.query("customer", k=5, doc_ids=["mine#0", "missing#0"])
    assert [h.id for h in hits] == ["mine#0"]
    assert await store.query("customer", doc_ids=[]) == []
