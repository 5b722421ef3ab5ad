"""
End-to-end wiring.

Write path: repository -> SymbolExtractor -> CallGraphBuilder -> CodeChunker
-> vector index + keyword index (written concurrently).

Read path: query -> HybridRetriever -> BudgetAllocator (with the diff text).
"""
from typing import Dict, List, Optional, Tuple
import asyncio

from .budget.token_budget import BudgetAllocator
from .graph.call_graph import CallGraphBuilder, count_edges
from .graph.json_graph_client import JsonGraphClient
from .processor.code_chunker import CodeChunker
from .processor.symbol_extractor import SymbolExtractor
from .query.vector_store import VectorIndex
from .review.limits import query_from_diff
from .search.hybrid_retriever import HybridRetriever
from .search.keyword_index import KeywordIndex
from .types import BudgetedInputs, CallGraphNode, CodeChunk, IndexingReport, SourceFile
from .utils.logger import app_logger


class RepositoryIndexer:
    """Builds the call graph and both indexes for one repository."""

    def __init__(self, vector_index: Optional[VectorIndex], keyword_index: KeywordIndex,
                 graph_client: Optional[JsonGraphClient] = None,
                 extractor: Optional[SymbolExtractor] = None,
                 graph_builder: Optional[CallGraphBuilder] = None,
                 chunker: Optional[CodeChunker] = None):
        self.logger = app_logger.bind(component="repository_indexer")
        self.vector_index = vector_index
        self.keyword_index = keyword_index
        self.graph_client = graph_client
        self.extractor = extractor or SymbolExtractor()
        self.graph_builder = graph_builder or CallGraphBuilder()
        self.chunker = chunker or CodeChunker()

    def build_chunks(self, files: List[SourceFile]) -> Tuple[Dict[str, CallGraphNode], List[CodeChunk]]:
        """Graph and chunks for already-extracted files."""
        graph = self.graph_builder.build(files)
        chunks = self.chunker.chunk(files, graph)
        return graph, chunks

    async def _write_vectors(self, chunks: List[CodeChunk], reset: bool = False) -> bool:
        if self.vector_index is None:
            return False
        try:
            if reset:
                self.vector_index.reset()
            await self.vector_index.upsert(chunks)
            return True
        except Exception as e:
            self.logger.error(f"Vector index write failed, keyword retrieval only: {e}")
            return False

    async def _write_keywords(self, chunks: List[CodeChunk]) -> bool:
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, self.keyword_index.build_index, chunks)
        return True

    async def index_files(self, files: List[SourceFile], repo_path: str = "", reset: bool = False) -> IndexingReport:
        """Index already-extracted files; ``reset`` empties the vector index first."""
        graph, chunks = self.build_chunks(files)

        vector_indexed, keyword_indexed = await asyncio.gather(
            self._write_vectors(chunks, reset=reset),
            self._write_keywords(chunks),
        )

        if self.graph_client is not None:
            self.graph_client.save_call_graph(graph, repo_path=repo_path or None)

        report = IndexingReport(
            repo_path=repo_path,
            files=len(files),
            functions=sum(len(f.functions) for f in files),
            graph_nodes=len(graph),
            graph_edges=count_edges(graph),
            chunks=len(chunks),
            vector_indexed=vector_indexed,
            keyword_indexed=keyword_indexed,
        )
        self.logger.info(f"Indexing complete: {report.to_dict()}")
        return report

    async def index_repository(self, repo_path: str, reset: bool = False) -> IndexingReport:
        """Full rebuild for the repository at ``repo_path``."""
        loop = asyncio.get_event_loop()
        files = await loop.run_in_executor(None, self.extractor.extract_repository, repo_path)
        return await self.index_files(files, repo_path=repo_path, reset=reset)


class ReviewContextBuilder:
    """Produces the bounded diff and context handed to review generation."""

    def __init__(self, retriever: HybridRetriever, allocator: Optional[BudgetAllocator] = None):
        self.logger = app_logger.bind(component="review_context")
        self.retriever = retriever
        self.allocator = allocator or BudgetAllocator()

    async def prepare(self, diff_text: str, query: Optional[str] = None,
                      vector_k: Optional[int] = None, keyword_k: Optional[int] = None) -> BudgetedInputs:
        if diff_text is None:
            raise ValueError("diff_text must not be None")

        query = query or query_from_diff(diff_text)
        context = await self.retriever.retrieve(query, vector_k, keyword_k) if query else ""
        if not query:
            self.logger.warning("No retrieval query could be derived from the diff")

        return self.allocator.allocate(diff_text, context)
