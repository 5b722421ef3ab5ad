from typing import List, Dict, Any, Optional
from dataclasses import dataclass, field


@dataclass(frozen=True)
class ImportRecord:
    """An import statement as seen by the call-graph resolver."""
    module: str
    symbols: List[str] = field(default_factory=list)
    is_default: bool = False

    @property
    def is_relative(self) -> bool:
        return self.module.startswith(".")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "module": self.module,
            "symbols": list(self.symbols),
            "is_default": self.is_default,
        }


@dataclass(frozen=True)
class FunctionRecord:
    """A function definition extracted from a source file."""
    name: str
    file_path: str
    start_line: int
    end_line: int
    code: str
    calls: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "file_path": self.file_path,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "code": self.code,
            "calls": list(self.calls),
        }


@dataclass(frozen=True)
class SourceFile:
    """Normalized symbols of one source file, produced once per extraction pass."""
    file_path: str
    language: str
    functions: List[FunctionRecord] = field(default_factory=list)
    imports: List[ImportRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "file_path": self.file_path,
            "language": self.language,
            "functions": [f.to_dict() for f in self.functions],
            "imports": [i.to_dict() for i in self.imports],
        }


@dataclass
class CodeFile:
    """Represents a code file in the codebase."""
    path: str
    absolute_path: str
    language: Optional[str] = None
    size: int = 0
    last_modified: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "path": self.path,
            "absolute_path": self.absolute_path,
            "language": self.language,
            "size": self.size,
            "last_modified": self.last_modified,
        }


def function_id(file_path: str, function_name: str) -> str:
    """Fully-qualified identity of a function node."""
    return f"{file_path}::{function_name}"


def short_name(node_id: str) -> str:
    """Function-name portion of a qualified id."""
    return node_id.rsplit("::", 1)[-1]


@dataclass
class CallGraphNode:
    """A function in the call graph.

    Edges are stored as ids rather than references, so the graph is an arena
    keyed by id and each node serializes on its own. ``calls`` and
    ``called_by`` are kept duplicate-free in insertion order.
    """
    id: str
    calls: List[str] = field(default_factory=list)
    called_by: List[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return short_name(self.id)

    @property
    def file_path(self) -> str:
        return self.id.rsplit("::", 1)[0]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "calls": list(self.calls),
            "called_by": list(self.called_by),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CallGraphNode":
        return cls(
            id=data["id"],
            calls=list(data.get("calls", [])),
            called_by=list(data.get("called_by", [])),
        )


@dataclass
class CodeChunk:
    """A function plus the graph-derived context header used for retrieval."""
    id: str
    text: str
    context: str
    file_path: str
    start_line: int
    end_line: int
    language: str
    metadata: Dict[str, Any]
    embedding: Optional[List[float]] = None

    @property
    def function_name(self) -> Optional[str]:
        return self.metadata.get("function_name")

    @property
    def enriched_text(self) -> str:
        """Context header followed by the code, as fed to embedding models."""
        if not self.context:
            return self.text
        return f"{self.context}\n\n{self.text}"

    def to_indexed(self) -> "IndexedChunk":
        return IndexedChunk(
            id=self.id,
            text=self.text,
            file_path=self.file_path,
            function_name=self.function_name,
            start_line=self.start_line,
            end_line=self.end_line,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "text": self.text,
            "context": self.context,
            "file_path": self.file_path,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "language": self.language,
            "metadata": self.metadata,
        }


@dataclass
class IndexedChunk:
    """The subset of a chunk kept by the keyword index."""
    id: str
    text: str
    file_path: str
    function_name: Optional[str] = None
    start_line: Optional[int] = None
    end_line: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "text": self.text,
            "file_path": self.file_path,
            "function_name": self.function_name,
            "start_line": self.start_line,
            "end_line": self.end_line,
        }


@dataclass
class KeywordHit(IndexedChunk):
    """A keyword search result; ``score`` is the raw BM25 score."""
    score: float = 0.0


@dataclass
class VectorHit:
    """A vector search result: document text and the metadata stored with it."""
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    distance: Optional[float] = None


@dataclass
class RetrievedChunk:
    """A fused retrieval result."""
    id: str
    text: str
    file_path: str
    source: str
    score: float = 0.0
    function_name: Optional[str] = None
    start_line: Optional[int] = None
    end_line: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "text": self.text,
            "file_path": self.file_path,
            "function_name": self.function_name,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "source": self.source,
            "score": self.score,
        }


@dataclass
class BudgetAllocation:
    """Token allocation decided for one review request (estimated tokens)."""
    original_change_tokens: int
    original_context_tokens: int
    allocated_change: int
    allocated_context: int
    preamble_tokens: int

    @property
    def total_input(self) -> int:
        return self.preamble_tokens + self.allocated_change + self.allocated_context

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "original_change_tokens": self.original_change_tokens,
            "original_context_tokens": self.original_context_tokens,
            "allocated_change": self.allocated_change,
            "allocated_context": self.allocated_context,
            "preamble_tokens": self.preamble_tokens,
            "total_input": self.total_input,
        }


@dataclass
class BudgetedInputs:
    """Change text and retrieval context after budget truncation."""
    truncated_change: str
    truncated_context: str
    allocation: BudgetAllocation


@dataclass
class IndexingReport:
    """Summary of one repository indexing run."""
    repo_path: str
    files: int
    functions: int
    graph_nodes: int
    graph_edges: int
    chunks: int
    vector_indexed: bool
    keyword_indexed: bool

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "repo_path": self.repo_path,
            "files": self.files,
            "functions": self.functions,
            "graph_nodes": self.graph_nodes,
            "graph_edges": self.graph_edges,
            "chunks": self.chunks,
            "vector_indexed": self.vector_indexed,
            "keyword_indexed": self.keyword_indexed,
        }
