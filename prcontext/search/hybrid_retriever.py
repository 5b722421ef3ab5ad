"""
Hybrid retrieval: vector (semantic) + keyword (BM25) search merged with
Reciprocal Rank Fusion and rendered as one context block for the reviewer.
"""
from typing import Dict, List, Optional, Sequence, Tuple
import asyncio

from ..config import settings
from ..query.vector_store import VectorIndex
from ..types import KeywordHit, RetrievedChunk, VectorHit
from ..utils.logger import app_logger
from .keyword_index import KeywordIndex


RULE = "─" * 40
CHUNK_SEPARATOR = "\n\n---\n\n"


def rrf_contribution(rank: int, k: int) -> float:
    """RRF score of a zero-based ``rank`` in one list."""
    return 1.0 / (k + rank + 1)


def fuse_results(vector_hits: Sequence[VectorHit], keyword_hits: Sequence[KeywordHit],
                 k: int = 60) -> List[RetrievedChunk]:
    """Merge two ranked lists by Reciprocal Rank Fusion.

    Ids found in both lists get the sum of their contributions and source
    ``both``. Empty texts are dropped; the result is sorted by fused score,
    ties keeping first-seen order.
    """
    chunk_map: Dict[str, RetrievedChunk] = {}

    for rank, hit in enumerate(vector_hits):
        meta = hit.metadata or {}
        chunk_id = meta.get("id") or f"vector-{rank}"
        score = rrf_contribution(rank, k)

        existing = chunk_map.get(chunk_id)
        if existing is not None:
            # duplicate id inside one list: keep the better rank
            continue

        chunk_map[chunk_id] = RetrievedChunk(
            id=chunk_id,
            text=hit.text or "",
            file_path=meta.get("file_path") or "unknown",
            function_name=meta.get("function_name"),
            start_line=meta.get("start_line"),
            end_line=meta.get("end_line"),
            source="vector",
            score=score,
        )

    seen_keyword = set()
    for rank, hit in enumerate(keyword_hits):
        if hit.id in seen_keyword:
            continue
        seen_keyword.add(hit.id)
        score = rrf_contribution(rank, k)

        existing = chunk_map.get(hit.id)
        if existing is not None:
            existing.score += score
            existing.source = "both"
            if not existing.text:
                existing.text = hit.text or ""
            continue

        chunk_map[hit.id] = RetrievedChunk(
            id=hit.id,
            text=hit.text or "",
            file_path=hit.file_path,
            function_name=hit.function_name,
            start_line=hit.start_line,
            end_line=hit.end_line,
            source="keyword",
            score=score,
        )

    merged = [chunk for chunk in chunk_map.values() if chunk.text]
    merged.sort(key=lambda chunk: chunk.score, reverse=True)
    return merged


def format_chunk_header(chunk: RetrievedChunk) -> str:
    parts = [f"File: {chunk.file_path}"]
    if chunk.function_name:
        parts.append(f"Function: {chunk.function_name}")
    if chunk.start_line is not None:
        parts.append(f"Lines: {chunk.start_line}-{chunk.end_line}")
    parts.append(f"Source: {chunk.source}")
    return " | ".join(parts)


def format_context(chunks: Sequence[RetrievedChunk]) -> str:
    """Render fused chunks, in order, as one string."""
    return CHUNK_SEPARATOR.join(
        f"{format_chunk_header(chunk)}\n{RULE}\n{chunk.text}" for chunk in chunks
    )


class HybridRetriever:
    """Queries both indexes and fuses their rankings."""

    def __init__(self, vector_index: Optional[VectorIndex], keyword_index: KeywordIndex,
                 rrf_k: Optional[int] = None):
        self.logger = app_logger.bind(component="hybrid_retriever")
        self.vector_index = vector_index
        self.keyword_index = keyword_index
        self.rrf_k = rrf_k if rrf_k is not None else settings.rrf_k

    async def _vector_search(self, query: str, k: int) -> List[VectorHit]:
        if self.vector_index is None:
            raise RuntimeError("no vector index configured")
        return await self.vector_index.query(query, k)

    async def _keyword_search(self, query: str, k: int) -> List[KeywordHit]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self.keyword_index.search, query, k)

    async def search_both(self, query: str, vector_k: int,
                          keyword_k: int) -> Tuple[List[VectorHit], List[KeywordHit], bool]:
        """Run both searches concurrently.

        The keyword search always asks for ``keyword_k * 2`` results. When the
        vector search succeeds, only the top ``keyword_k`` are kept, which is
        the same list a ``keyword_k`` query would have returned.
        """
        vector_outcome, keyword_outcome = await asyncio.gather(
            self._vector_search(query, vector_k),
            self._keyword_search(query, keyword_k * 2),
            return_exceptions=True,
        )

        vector_available = not isinstance(vector_outcome, BaseException)
        if vector_available:
            vector_hits = list(vector_outcome)
        else:
            self.logger.warning(f"Vector index unavailable, falling back to keyword-only search: {vector_outcome}")
            vector_hits = []

        if isinstance(keyword_outcome, BaseException):
            self.logger.warning(f"Keyword search failed: {keyword_outcome}")
            keyword_hits = []
        else:
            keyword_hits = list(keyword_outcome)
            if vector_available:
                keyword_hits = keyword_hits[:keyword_k]

        return vector_hits, keyword_hits, vector_available

    async def retrieve_chunks(self, query: str, vector_k: Optional[int] = None,
                              keyword_k: Optional[int] = None) -> List[RetrievedChunk]:
        """Fused, deduplicated results without rendering."""
        vector_k = vector_k if vector_k is not None else settings.vector_top_k
        keyword_k = keyword_k if keyword_k is not None else settings.keyword_top_k

        vector_hits, keyword_hits, vector_available = await self.search_both(query, vector_k, keyword_k)
        merged = fuse_results(vector_hits, keyword_hits, self.rrf_k)

        self.logger.info(
            f"Hybrid retrieval completed: {len(merged)} unique chunks "
            f"(vector={len(vector_hits)}, keyword={len(keyword_hits)}, vector_available={vector_available})"
        )
        return merged

    async def retrieve(self, query: str, vector_k: Optional[int] = None,
                       keyword_k: Optional[int] = None) -> str:
        """Formatted context for ``query``; empty string when nothing matched."""
        return format_context(await self.retrieve_chunks(query, vector_k, keyword_k))
