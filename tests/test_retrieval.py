from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from sourcechat.services.retrieval import VectorRetriever


def _query_result(ids, documents, metadatas, distances):
    return {"ids": [ids], "documents": [documents], "metadatas": [metadatas], "distances": [distances]}


@pytest.fixture
def vector_store():
    return MagicMock()


@pytest.fixture
def retriever(test_settings, vector_store):
    r = VectorRetriever(test_settings, vector_store)
    r._openai = MagicMock()
    r._openai.embeddings.create = AsyncMock(
        return_value=SimpleNamespace(data=[SimpleNamespace(embedding=[0.1, 0.2, 0.3])]),
    )
    return r


@pytest.mark.asyncio
class TestVectorRetriever:
    async def test_maps_chunks_and_filters_by_similarity(self, retriever, vector_store):
        vector_store.query.return_value = _query_result(
            ids=["c1", "c2"],
            documents=["Close match", "Far away"],
            metadatas=[
                {"source_id": "s1", "source_kind": "youtube", "source_title": "Talk",
                 "media_id": "vid1", "start_time": 42},
                {"source_id": "s2", "source_kind": "pdf", "source_title": ""},
            ],
            distances=[0.2, 0.9],
        )

        chunks = await retriever.retrieve("what?", ["s1", "s2"], limit=3)

        assert len(chunks) == 1
        chunk = chunks[0]
        assert (chunk.source_id, chunk.chunk_id, chunk.text) == ("s1", "c1", "Close match")
        assert chunk.start_time == 42.0
        assert chunk.media_id == "vid1"
        assert chunk.score == 0.8
        kwargs = vector_store.query.call_args.kwargs
        assert kwargs["where"] == {"source_id": {"$in": ["s1", "s2"]}}
        assert kwargs["n_results"] == 3
        assert kwargs["query_embedding"] == [0.1, 0.2, 0.3]

    async def test_single_source_filter(self, retriever, vector_store):
        vector_store.query.return_value = _query_result([], [], [], [])
        assert await retriever.retrieve("what?", ["s1"], limit=2) == []
        assert vector_store.query.call_args.kwargs["where"] == {"source_id": "s1"}

    async def test_no_sources_skips_lookup(self, retriever, vector_store):
        assert await retriever.retrieve("what?", [], limit=3) == []
        retriever._openai.embeddings.create.assert_not_awaited()
        vector_store.query.assert_not_called()

    async def test_untitled_source(self, retriever, vector_store):
        vector_store.query.return_value = _query_result(
            ["c1"], ["text"], [{"source_id": "s1", "source_kind": "web"}], [0.1],
        )
        chunks = await retriever.retrieve("q", ["s1"], limit=1)
        assert chunks[0].source_title == "Untitled"
        assert chunks[0].start_time is None
        assert chunks[0].media_id is None
