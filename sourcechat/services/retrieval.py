import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from openai import AsyncOpenAI

from sourcechat.config import Settings
from sourcechat.services.vectorstore import VectorStoreManager

logger = logging.getLogger(__name__)


@dataclass
class RetrievedChunk:
    source_id: str
    chunk_id: str
    text: str
    start_time: Optional[float] = None
    source_kind: str = ""
    source_title: str = ""
    media_id: Optional[str] = None
    score: Optional[float] = None


class SourceRetriever(Protocol):
    async def retrieve(
        self, query: str, source_ids: list[str], limit: int
    ) -> list[RetrievedChunk]:
        ...


class VectorRetriever:
    """Ranks source chunks by embedding similarity.

    Chunks are written to the vector store by the ingestion pipeline; this
    class only queries it.
    """

    def __init__(self, settings: Settings, vs_manager: VectorStoreManager):
        self._settings = settings
        self._vs = vs_manager
        self._openai = AsyncOpenAI(api_key=settings.openai_api_key.get_secret_value())
        self._embedding_model = settings.embedding_config.get("model", "text-embedding-3-small")
        self._threshold = settings.chat_config.get("similarity_threshold", 0.3)

    async def _embed_query(self, text: str) -> list[float]:
        response = await self._openai.embeddings.create(
            model=self._embedding_model,
            input=[text],
        )
        return response.data[0].embedding

    async def retrieve(
        self, query: str, source_ids: list[str], limit: int
    ) -> list[RetrievedChunk]:
        if not source_ids or limit <= 0:
            return []

        query_embedding = await self._embed_query(query)
        where = (
            {"source_id": source_ids[0]} if len(source_ids) == 1
            else {"source_id": {"$in": list(source_ids)}}
        )
        # chromadb is synchronous
        results = await asyncio.to_thread(
            self._vs.query,
            query_embedding=query_embedding,
            n_results=limit,
            where=where,
        )

        if not results["documents"] or not results["documents"][0]:
            return []

        ids = results["ids"][0]
        documents = results["documents"][0]
        metadatas = results["metadatas"][0]
        distances = results["distances"][0] if results.get("distances") else []

        chunks = []
        for i, (chunk_id, doc, meta) in enumerate(zip(ids, documents, metadatas)):
            distance = distances[i] if i < len(distances) else 1.0
            # ChromaDB cosine distance: 0 = identical, 2 = opposite
            similarity = 1.0 - distance
            if similarity < self._threshold:
                continue
            start_time = meta.get("start_time")
            chunks.append(RetrievedChunk(
                source_id=meta.get("source_id", ""),
                chunk_id=chunk_id,
                text=doc,
                start_time=float(start_time) if start_time not in (None, "") else None,
                source_kind=meta.get("source_kind", ""),
                source_title=meta.get("source_title", "") or "Untitled",
                media_id=meta.get("media_id") or None,
                score=round(similarity, 3),
            ))
        logger.info("Retrieved %d chunks from %d sources", len(chunks), len(source_ids))
        return chunks
