from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional
import json

import numpy as np

from ..config import settings
from ..embedding.embedding_service import EmbeddingService
from ..types import CodeChunk, VectorHit
from ..utils.logger import app_logger


def chunk_metadata(chunk: CodeChunk) -> Dict[str, Any]:
    """Metadata stored next to each vector; ``id`` ties hits back to chunks."""
    return {
        "id": chunk.id,
        "file_path": chunk.file_path,
        "start_line": chunk.start_line,
        "end_line": chunk.end_line,
        "context": chunk.context,
        "language": chunk.language,
        "function_name": chunk.metadata.get("function_name"),
        "call_count": chunk.metadata.get("call_count", 0),
        "incoming_count": chunk.metadata.get("incoming_count", 0),
    }


class VectorIndex(ABC):
    """Semantic index over chunks, keyed by chunk id."""

    @abstractmethod
    async def upsert(self, chunks: List[CodeChunk]) -> int:
        """Write chunks; an existing id is overwritten. Returns the count written."""

    @abstractmethod
    async def query(self, text: str, k: int) -> List[VectorHit]:
        """Up to ``k`` nearest chunks, best first. Raises when the index is unreachable."""

    def reset(self):
        """Remove every stored chunk before a full rebuild."""
        raise NotImplementedError(f"{type(self).__name__} cannot be reset")

    def close(self):
        """Release client resources."""


class InMemoryVectorIndex(VectorIndex):
    """Cosine-similarity index held in process memory."""

    def __init__(self, embedding_service: Optional[EmbeddingService] = None):
        self.logger = app_logger.bind(component="memory_vector_store")
        self.embedding_service = embedding_service or EmbeddingService()
        self.documents: Dict[str, Dict[str, Any]] = {}

    async def upsert(self, chunks: List[CodeChunk]) -> int:
        if not chunks:
            return 0

        await self.embedding_service.embed_chunks(chunks)
        for chunk in chunks:
            self.documents[chunk.id] = {
                "text": chunk.text,
                "metadata": chunk_metadata(chunk),
                "embedding": list(chunk.embedding),
            }

        self.logger.info(f"Stored {len(chunks)} chunks ({len(self.documents)} total)")
        return len(chunks)

    async def query(self, text: str, k: int) -> List[VectorHit]:
        if not self.documents or k <= 0:
            return []

        query_np = np.array(await self.embedding_service.embed_query(text), dtype=np.float32)
        ids = list(self.documents)
        doc_np = np.array([self.documents[i]["embedding"] for i in ids], dtype=np.float32)

        norms = np.linalg.norm(doc_np, axis=1) * np.linalg.norm(query_np)
        dots = doc_np @ query_np
        similarities = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)

        top_indices = np.argsort(-similarities, kind="stable")[:k]
        return [
            VectorHit(
                text=self.documents[ids[idx]]["text"],
                metadata=dict(self.documents[ids[idx]]["metadata"]),
                distance=float(1.0 - similarities[idx]),
            )
            for idx in top_indices
        ]

    def reset(self):
        self.documents.clear()

    def save(self, path: str):
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8") as f:
            json.dump(self.documents, f)
        self.logger.debug(f"Saved {len(self.documents)} vectors to {target}")

    def load(self, path: str) -> int:
        with open(path, "r", encoding="utf-8") as f:
            self.documents = json.load(f)
        self.logger.debug(f"Loaded {len(self.documents)} vectors from {path}")
        return len(self.documents)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "backend": "memory",
            "documents": len(self.documents),
            "dimension": self.embedding_service.get_dimension(),
        }


def create_vector_index(backend: Optional[str] = None,
                        embedding_service: Optional[EmbeddingService] = None) -> VectorIndex:
    """Build the vector index named by ``backend`` (default: settings.vector_store)."""
    backend = backend or settings.vector_store
    if backend == "memory":
        return InMemoryVectorIndex(embedding_service)
    if backend == "milvus":
        from .milvus_client import MilvusVectorIndex
        return MilvusVectorIndex(embedding_service)
    raise ValueError(f"Unsupported vector store: {backend}")
