import pytest
import hashlib
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from prcontext.graph.call_graph import CallGraphBuilder
from prcontext.processor.code_chunker import CodeChunker, generate_chunk_id


class TestCodeChunker:
    """Test context-enriched chunk generation."""

    def setup_method(self):
        self.chunker = CodeChunker()

    def _chunks_by_name(self, files):
        graph = CallGraphBuilder().build(files)
        return {chunk.function_name: chunk for chunk in self.chunker.chunk(files, graph)}

    def test_one_chunk_per_function(self, sample_source_files):
        graph = CallGraphBuilder().build(sample_source_files)
        chunks = self.chunker.chunk(sample_source_files, graph)

        assert len(chunks) == sum(len(f.functions) for f in sample_source_files)
        assert len({chunk.id for chunk in chunks}) == len(chunks)

    def test_context_header_lists_callers_and_callees(self, sample_source_files):
        chunks = self._chunks_by_name(sample_source_files)

        format_date = chunks["formatDate"]
        assert format_date.context == (
            "File: src/utils.ts\n"
            "Language: typescript\n"
            "This function is called by: handleRequest\n"
            "This function calls: padZero"
        )
        assert chunks["handleRequest"].context.endswith("This function calls: validate, formatDate, log")

    def test_isolated_function_has_location_only(self, make_source_file):
        chunks = self._chunks_by_name([make_source_file("solo.py", functions=[("alone", [])], language="python")])

        assert chunks["alone"].context == "File: solo.py\nLanguage: python"

    def test_chunk_fields(self, sample_source_files):
        chunk = self._chunks_by_name(sample_source_files)["padZero"]

        assert chunk.text == "function padZero() {\n  // body of padZero\n}"
        assert chunk.file_path == "src/utils.ts"
        assert (chunk.start_line, chunk.end_line) == (11, 16)
        assert chunk.language == "typescript"
        assert chunk.metadata == {"function_name": "padZero", "call_count": 0, "incoming_count": 1}
        assert chunk.enriched_text == f"{chunk.context}\n\n{chunk.text}"

    def test_chunk_id_depends_on_location_only(self, sample_source_files, make_source_file):
        with_callers = self._chunks_by_name(sample_source_files)["formatDate"]
        alone = self._chunks_by_name([make_source_file("src/utils.ts", functions=[("formatDate", [])])])["formatDate"]

        expected = hashlib.md5("src/utils.ts::formatDate::1::6".encode("utf-8")).hexdigest()
        assert with_callers.id == alone.id == expected
        assert with_callers.context != alone.context

    def test_generate_chunk_id_changes_with_lines(self):
        assert generate_chunk_id("a.py", "f", 1, 5) != generate_chunk_id("a.py", "f", 2, 6)

    def test_missing_graph_node_still_chunks(self, sample_source_files):
        chunks = self.chunker.chunk(sample_source_files, {})

        assert all(chunk.metadata["call_count"] == 0 for chunk in chunks)
        assert all("This function" not in chunk.context for chunk in chunks)

    def test_none_input_rejected(self):
        with pytest.raises(ValueError):
            self.chunker.chunk(None, {})
