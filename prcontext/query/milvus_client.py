from typing import List, Dict, Any, Optional
from pymilvus import (
    connections,
    utility,
    FieldSchema,
    CollectionSchema,
    DataType,
    Collection,
)

from ..config import settings
from ..embedding.embedding_service import EmbeddingService
from ..types import CodeChunk, VectorHit
from ..utils.logger import app_logger
from .vector_store import VectorIndex, chunk_metadata


MAX_VARCHAR_BYTES = 65535


def _fit_varchar(text: str, limit: int = MAX_VARCHAR_BYTES) -> str:
    return text.encode("utf-8")[:limit].decode("utf-8", errors="ignore")


class MilvusVectorIndex(VectorIndex):
    """Milvus-backed vector index; chunk id is the primary key."""

    OUTPUT_FIELDS = ["id", "file_path", "text", "metadata"]

    def __init__(self, embedding_service: Optional[EmbeddingService] = None,
                 collection_name: Optional[str] = None):
        self.logger = app_logger.bind(component="milvus_client")
        self.embedding_service = embedding_service or EmbeddingService()
        self.dimension = self.embedding_service.get_dimension()
        self.collection_name = collection_name or settings.milvus_collection_name
        self.timeout = settings.vector_query_timeout
        self.collection = None

    def _connect(self):
        """Connect to Milvus server and open the collection."""
        if self.collection is not None:
            return

        connections.connect(
            "default",
            host=settings.milvus_host,
            port=settings.milvus_port,
            timeout=self.timeout,
        )
        self.logger.info(f"Connected to Milvus at {settings.milvus_host}:{settings.milvus_port}")
        self._ensure_collection()

    def _ensure_collection(self):
        """Ensure collection exists with proper schema."""
        if utility.has_collection(self.collection_name):
            self.collection = Collection(self.collection_name)
            self.logger.info(f"Using existing collection: {self.collection_name}")
        else:
            self._create_collection()

    def _create_collection(self):
        """Create collection with proper schema."""
        fields = [
            FieldSchema(name="id", dtype=DataType.VARCHAR, max_length=64, is_primary=True),
            FieldSchema(name="file_path", dtype=DataType.VARCHAR, max_length=1024),
            FieldSchema(name="text", dtype=DataType.VARCHAR, max_length=MAX_VARCHAR_BYTES),
            FieldSchema(name="metadata", dtype=DataType.JSON),
            FieldSchema(name="embedding", dtype=DataType.FLOAT_VECTOR, dim=self.dimension),
        ]

        schema = CollectionSchema(fields=fields, description="Context-enriched code chunks")
        self.collection = Collection(self.collection_name, schema)

        index_params = {
            "metric_type": "L2",
            "index_type": "IVF_FLAT",
            "params": {"nlist": 1024},
        }

        self.collection.create_index("embedding", index_params)
        self.logger.info(f"Created collection: {self.collection_name}")

    async def upsert(self, chunks: List[CodeChunk]) -> int:
        """Upsert chunks so re-indexing unchanged code overwrites by id."""
        if not chunks:
            return 0

        self._connect()
        await self.embedding_service.embed_chunks(chunks)

        data = [
            [chunk.id for chunk in chunks],
            [_fit_varchar(chunk.file_path, 1024) for chunk in chunks],
            [_fit_varchar(chunk.text) for chunk in chunks],
            [chunk_metadata(chunk) for chunk in chunks],
            [chunk.embedding for chunk in chunks],
        ]

        self.collection.upsert(data, timeout=self.timeout)
        self.collection.flush()

        self.logger.info(f"Upserted {len(chunks)} chunks into {self.collection_name}")
        return len(chunks)

    async def query(self, text: str, k: int) -> List[VectorHit]:
        """Search for the nearest chunks."""
        self._connect()
        query_embedding = await self.embedding_service.embed_query(text)

        self.collection.load()
        results = self.collection.search(
            data=[query_embedding],
            anns_field="embedding",
            param={"metric_type": "L2", "params": {"nprobe": 10}},
            limit=k,
            output_fields=self.OUTPUT_FIELDS,
            timeout=self.timeout,
        )

        hits = []
        for result in results:
            for hit in result:
                metadata = dict(hit.entity.get("metadata") or {})
                metadata.setdefault("id", hit.id)
                metadata.setdefault("file_path", hit.entity.get("file_path"))
                hits.append(VectorHit(
                    text=hit.entity.get("text") or "",
                    metadata=metadata,
                    distance=hit.distance,
                ))

        self.logger.debug(f"Found {len(hits)} similar chunks")
        return hits

    def drop_collection(self):
        """Drop the entire collection."""
        self._connect()
        if utility.has_collection(self.collection_name):
            utility.drop_collection(self.collection_name)
            self.collection = None
            self.logger.info(f"Dropped collection: {self.collection_name}")

    def reset(self):
        # next upsert recreates the collection
        self.drop_collection()

    def get_stats(self) -> Dict[str, Any]:
        """Get collection statistics."""
        if self.collection is None:
            return {"backend": "milvus", "collection_name": self.collection_name, "connected": False}
        return {
            "backend": "milvus",
            "collection_name": self.collection_name,
            "connected": True,
            "num_entities": self.collection.num_entities,
        }

    def close(self):
        """Close connection to Milvus."""
        connections.disconnect("default")
        self.collection = None
        self.logger.info("Disconnected from Milvus")
