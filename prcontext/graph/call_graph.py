"""
Cross-file call graph construction.

The graph is an arena: ``Dict[id, CallGraphNode]`` where ``id`` is
``file_path::function_name`` and edges are stored as ids on both endpoints.

Resolution of a raw call name is best-effort:

1. a function of that name in the calling file;
2. a function of that name in the file a relative import points to;
3. the first other file, in lexicographic path order, defining that name.

Step 3 can pick the wrong function when several files define the same name
and no import links the caller to the right one. The order is fixed so the
result is at least reproducible.
"""
import posixpath
from typing import Dict, Iterable, List, Optional, Sequence

from ..config import settings
from ..types import CallGraphNode, ImportRecord, SourceFile, function_id
from ..utils.logger import app_logger


def inferred_default_name(module: str) -> str:
    """Local name a default import is assumed to bind: the module basename."""
    base = posixpath.basename(module.rstrip("/"))
    stem, _ = posixpath.splitext(base)
    return stem or base


class CallGraphBuilder:
    """Builds the call graph for all extracted files of a repository."""

    INDEX_BASENAMES = ("index",)
    PACKAGE_INIT = "__init__.py"

    def __init__(self, resolution_extensions: Optional[Sequence[str]] = None):
        self.logger = app_logger.bind(component="call_graph")
        self.resolution_extensions = list(resolution_extensions or settings.resolution_extensions_list)
        self._reset()

    def _reset(self):
        self.nodes: Dict[str, CallGraphNode] = {}
        self.file_index: Dict[str, SourceFile] = {}
        self.local_names: Dict[str, set] = {}
        self.definitions: Dict[str, List[str]] = {}

    def build(self, files: Iterable[SourceFile]) -> Dict[str, CallGraphNode]:
        """Build a fresh graph from ``files``."""
        if files is None:
            raise ValueError("files must not be None")

        self._reset()
        source_files = self._index_files(files)

        # Phase 1: every node exists before any call is resolved
        for source_file in source_files:
            for func in source_file.functions:
                node_id = function_id(source_file.file_path, func.name)
                if node_id in self.nodes:
                    self.logger.debug(f"Duplicate definition {node_id}, merging into one node")
                    continue
                self.nodes[node_id] = CallGraphNode(id=node_id)

        # Phase 2: link
        edges = 0
        for source_file in source_files:
            for func in source_file.functions:
                caller_id = function_id(source_file.file_path, func.name)
                for call_name in func.calls:
                    target_id = self.resolve_call(call_name, source_file)
                    if target_id and self._link(caller_id, target_id):
                        edges += 1

        self.logger.info(f"Built call graph with {len(self.nodes)} nodes and {edges} edges")
        return self.nodes

    def _index_files(self, files: Iterable[SourceFile]) -> List[SourceFile]:
        indexed: List[SourceFile] = []
        for source_file in files:
            if source_file is None or not getattr(source_file, "file_path", None):
                self.logger.warning("Skipping malformed source file record")
                continue
            if source_file.file_path in self.file_index:
                self.logger.warning(f"Skipping duplicate record for {source_file.file_path}")
                continue
            self.file_index[source_file.file_path] = source_file
            self.local_names[source_file.file_path] = {f.name for f in source_file.functions}
            indexed.append(source_file)

        for file_path in sorted(self.file_index):
            for name in self.local_names[file_path]:
                self.definitions.setdefault(name, []).append(file_path)

        return indexed

    def resolve_call(self, call_name: str, current_file: SourceFile) -> Optional[str]:
        """Resolve a raw call name to a node id, or None when nothing matches."""
        current_path = current_file.file_path

        if call_name in self.local_names.get(current_path, ()):
            return function_id(current_path, call_name)

        matched_import = self._find_import(call_name, current_file.imports)
        if matched_import is not None:
            resolved_path = self.resolve_module_path(current_path, matched_import.module)
            if resolved_path and call_name in self.local_names.get(resolved_path, ()):
                return function_id(resolved_path, call_name)

        for file_path in self.definitions.get(call_name, ()):
            if file_path != current_path:
                return function_id(file_path, call_name)

        return None

    def _find_import(self, call_name: str, imports: Sequence[ImportRecord]) -> Optional[ImportRecord]:
        for record in imports:
            if call_name in record.symbols:
                return record
            if record.is_default and inferred_default_name(record.module) == call_name:
                return record
        return None

    def resolve_module_path(self, current_file_path: str, module: str) -> Optional[str]:
        """Map a relative module reference to a known file path.

        Tries the exact path, then each resolution extension, then
        ``<path>/index<ext>``, then ``<path>/__init__.py``. External modules
        are never resolved.
        """
        if not module.startswith("."):
            return None

        base = posixpath.normpath(posixpath.join(posixpath.dirname(current_file_path), module))

        candidates = [base]
        candidates.extend(f"{base}{ext}" for ext in self.resolution_extensions)
        for index_name in self.INDEX_BASENAMES:
            candidates.extend(posixpath.join(base, f"{index_name}{ext}") for ext in self.resolution_extensions)
        candidates.append(posixpath.join(base, self.PACKAGE_INIT))

        for candidate in candidates:
            if candidate in self.file_index:
                return candidate
        return None

    def _link(self, caller_id: str, target_id: str) -> bool:
        """Add the edge on both endpoints; returns False if nothing changed."""
        caller = self.nodes.get(caller_id)
        target = self.nodes.get(target_id)
        if caller is None or target is None:
            return False
        if target_id in caller.calls:
            return False

        caller.calls.append(target_id)
        target.called_by.append(caller_id)
        return True


def count_edges(graph: Dict[str, CallGraphNode]) -> int:
    return sum(len(node.calls) for node in graph.values())
