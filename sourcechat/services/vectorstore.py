import chromadb
from sourcechat.config import Settings


class VectorStoreManager:
    """Read side of the ChromaDB collection holding ingested source chunks.

    Created once in the app lifespan. Chunk metadata written by ingestion:
    ``source_id``, ``source_kind``, ``source_title``, ``media_id`` and
    ``start_time`` (seconds, video sources only).
    """

    def __init__(self, settings: Settings):
        self._settings = settings
        self._client = chromadb.PersistentClient(
            path=settings.chroma_persist_dir,
        )
        self._collection = self._client.get_or_create_collection(
            name=settings.chroma_collection,
            metadata={"hnsw:space": "cosine"},
        )

    def query(
        self,
        query_embedding: list[float],
        n_results: int = 5,
        where: dict | None = None,
    ) -> dict:
        kwargs = {
            "query_embeddings": [query_embedding],
            "n_results": n_results,
            "include": ["documents", "metadatas", "distances"],
        }
        if where:
            kwargs["where"] = where
        return self._collection.query(**kwargs)
