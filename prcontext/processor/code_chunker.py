import hashlib
from typing import Dict, Iterable, List, Optional

from ..types import CallGraphNode, CodeChunk, FunctionRecord, SourceFile, function_id, short_name
from ..utils.logger import app_logger


def generate_chunk_id(file_path: str, function_name: str, start_line: int, end_line: int) -> str:
    """Stable chunk id: depends on location only, never on content or context."""
    unique_string = f"{file_path}::{function_name}::{start_line}::{end_line}"
    return hashlib.md5(unique_string.encode("utf-8")).hexdigest()


def build_context_header(source_file: SourceFile, node: Optional[CallGraphNode]) -> str:
    """Human/LLM-readable summary of where a function sits in the call graph."""
    context_parts = [
        f"File: {source_file.file_path}",
        f"Language: {source_file.language}",
    ]

    if node is not None:
        if node.called_by:
            context_parts.append(
                f"This function is called by: {', '.join(short_name(i) for i in node.called_by)}"
            )
        if node.calls:
            context_parts.append(
                f"This function calls: {', '.join(short_name(i) for i in node.calls)}"
            )

    return "\n".join(context_parts)


class CodeChunker:
    """Produces one context-enriched chunk per extracted function."""

    def __init__(self):
        self.logger = app_logger.bind(component="code_chunker")

    def chunk(self, files: Iterable[SourceFile], graph: Dict[str, CallGraphNode]) -> List[CodeChunk]:
        if files is None:
            raise ValueError("files must not be None")
        graph = graph or {}

        chunks = []
        for source_file in files:
            if source_file is None:
                continue
            for func in source_file.functions:
                chunks.append(self._create_chunk(source_file, func, graph))

        self.logger.info(f"Generated {len(chunks)} chunks")
        return chunks

    def _create_chunk(self, source_file: SourceFile, func: FunctionRecord,
                      graph: Dict[str, CallGraphNode]) -> CodeChunk:
        node = graph.get(function_id(source_file.file_path, func.name))

        return CodeChunk(
            id=generate_chunk_id(source_file.file_path, func.name, func.start_line, func.end_line),
            text=func.code,
            context=build_context_header(source_file, node),
            file_path=source_file.file_path,
            start_line=func.start_line,
            end_line=func.end_line,
            language=source_file.language,
            metadata={
                "function_name": func.name,
                "call_count": len(node.calls) if node else 0,
                "incoming_count": len(node.called_by) if node else 0,
            },
        )
