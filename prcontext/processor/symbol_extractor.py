"""
Per-file symbol extraction with tree-sitter.

Every supported extension maps to a ``LanguageSpec`` in ``EXTRACTORS``: the
grammar to parse with and the handful of node-level rules that turn a syntax
tree into the normalized ``SourceFile`` / ``FunctionRecord`` / ``ImportRecord``
shape. Adding a language means adding a table entry, not a subclass.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Callable, Dict, List, Optional

import tree_sitter_javascript
import tree_sitter_python
import tree_sitter_typescript
from tree_sitter import Language, Node, Parser

from ..config import settings
from ..scanner.local_codebase_scanner import LocalCodebaseScanner
from ..types import CodeFile, FunctionRecord, ImportRecord, SourceFile
from ..utils.logger import app_logger


def _text(node: Optional[Node]) -> str:
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf-8", errors="replace")


def _dedupe(names: List[str]) -> List[str]:
    return list(dict.fromkeys(names))


@lru_cache(maxsize=None)
def _python_language() -> Language:
    return Language(tree_sitter_python.language())


@lru_cache(maxsize=None)
def _javascript_language() -> Language:
    return Language(tree_sitter_javascript.language())


@lru_cache(maxsize=None)
def _typescript_language() -> Language:
    return Language(tree_sitter_typescript.language_typescript())


@lru_cache(maxsize=None)
def _tsx_language() -> Language:
    return Language(tree_sitter_typescript.language_tsx())


# ---------------------------------------------------------------------------
# Python rules
# ---------------------------------------------------------------------------

def _python_definition_name(node: Node) -> Optional[str]:
    if node.type == "function_definition":
        return _text(node.child_by_field_name("name")) or None
    return None


def _python_call_name(node: Node) -> Optional[str]:
    callee = node.child_by_field_name("function")
    if callee is None:
        return None
    if callee.type == "identifier":
        return _text(callee)
    if callee.type == "attribute":
        return _text(callee.child_by_field_name("attribute")) or None
    return None


def python_module_path(module: str) -> str:
    """Rewrite a Python module reference into the path form used for resolution.

    ``.utils`` becomes ``./utils`` and ``..pkg.mod`` becomes ``../pkg/mod``.
    Absolute modules are returned unchanged and stay external.
    """
    dots = len(module) - len(module.lstrip("."))
    if dots == 0:
        return module
    rest = module[dots:]
    prefix = "." if dots == 1 else "/".join([".."] * (dots - 1))
    if not rest:
        return prefix
    return f"{prefix}/{rest.replace('.', '/')}"


def _python_import_name(node: Node) -> str:
    if node.type == "aliased_import":
        node = node.child_by_field_name("name")
    return _text(node)


def _python_imports(node: Node) -> List[ImportRecord]:
    if node.type == "import_from_statement":
        module = python_module_path(_text(node.child_by_field_name("module_name")))
        symbols = [
            _python_import_name(name_node).split(".")[-1]
            for name_node in node.children_by_field_name("name")
        ]
        return [ImportRecord(module=module, symbols=_dedupe(symbols), is_default=False)]

    # plain ``import a.b`` never names a function, it only marks a dependency
    return [
        ImportRecord(module=_python_import_name(name_node), symbols=[], is_default=False)
        for name_node in node.children_by_field_name("name")
    ]


# ---------------------------------------------------------------------------
# JavaScript / TypeScript rules
# ---------------------------------------------------------------------------

_JS_NAMED_DEFINITIONS = {"function_declaration", "generator_function_declaration", "method_definition"}
_JS_FUNCTION_VALUES = {"arrow_function", "function_expression", "function", "generator_function"}


def _js_definition_name(node: Node) -> Optional[str]:
    if node.type in _JS_NAMED_DEFINITIONS:
        return _text(node.child_by_field_name("name")) or None
    if node.type == "variable_declarator":
        name = node.child_by_field_name("name")
        value = node.child_by_field_name("value")
        if name is not None and name.type == "identifier" and value is not None and value.type in _JS_FUNCTION_VALUES:
            return _text(name)
    return None


def _js_call_name(node: Node) -> Optional[str]:
    callee = node.child_by_field_name("function")
    if callee is None:
        return None
    if callee.type == "identifier":
        return _text(callee)
    if callee.type == "member_expression":
        return _text(callee.child_by_field_name("property")) or None
    return None


def _js_imports(node: Node) -> List[ImportRecord]:
    module = _text(node.child_by_field_name("source")).strip("'\"`")
    if not module:
        return []

    symbols: List[str] = []
    is_default = False
    for child in node.named_children:
        if child.type != "import_clause":
            continue
        for part in child.named_children:
            if part.type == "identifier":
                symbols.append(_text(part))
                is_default = True
            elif part.type == "named_imports":
                for specifier in part.named_children:
                    if specifier.type == "import_specifier":
                        symbols.append(_text(specifier.child_by_field_name("name")))

    return [ImportRecord(module=module, symbols=_dedupe([s for s in symbols if s]), is_default=is_default)]


@dataclass(frozen=True)
class LanguageSpec:
    """Extraction rules for one grammar."""
    language: str
    load_grammar: Callable[[], Language]
    definition_name: Callable[[Node], Optional[str]]
    call_types: frozenset
    call_name: Callable[[Node], Optional[str]]
    import_types: frozenset
    parse_imports: Callable[[Node], List[ImportRecord]]


PYTHON = LanguageSpec(
    language="python",
    load_grammar=_python_language,
    definition_name=_python_definition_name,
    call_types=frozenset({"call"}),
    call_name=_python_call_name,
    import_types=frozenset({"import_from_statement", "import_statement"}),
    parse_imports=_python_imports,
)

JAVASCRIPT = LanguageSpec(
    language="javascript",
    load_grammar=_javascript_language,
    definition_name=_js_definition_name,
    call_types=frozenset({"call_expression"}),
    call_name=_js_call_name,
    import_types=frozenset({"import_statement"}),
    parse_imports=_js_imports,
)

TYPESCRIPT = LanguageSpec(
    language="typescript",
    load_grammar=_typescript_language,
    definition_name=_js_definition_name,
    call_types=frozenset({"call_expression"}),
    call_name=_js_call_name,
    import_types=frozenset({"import_statement"}),
    parse_imports=_js_imports,
)

TSX = LanguageSpec(
    language="tsx",
    load_grammar=_tsx_language,
    definition_name=_js_definition_name,
    call_types=frozenset({"call_expression"}),
    call_name=_js_call_name,
    import_types=frozenset({"import_statement"}),
    parse_imports=_js_imports,
)

EXTRACTORS: Dict[str, LanguageSpec] = {
    ".py": PYTHON,
    ".js": JAVASCRIPT,
    ".jsx": JAVASCRIPT,
    ".ts": TYPESCRIPT,
    ".tsx": TSX,
}


class _FileCollector:
    """Accumulates functions and imports while walking one syntax tree."""

    def __init__(self, spec: LanguageSpec, file_path: str):
        self.spec = spec
        self.file_path = file_path
        self.functions: List[FunctionRecord] = []
        self.imports: List[ImportRecord] = []

    def visit(self, node: Node, calls: Optional[List[str]]):
        name = self.spec.definition_name(node)
        if name is not None:
            own_calls: List[str] = []
            for child in node.children:
                self.visit(child, own_calls)
            self.functions.append(FunctionRecord(
                name=name,
                file_path=self.file_path,
                start_line=node.start_point[0] + 1,
                end_line=node.end_point[0] + 1,
                code=_text(node),
                calls=_dedupe(own_calls),
            ))
            return

        if node.type in self.spec.call_types and calls is not None:
            call_name = self.spec.call_name(node)
            if call_name:
                calls.append(call_name)
        elif node.type in self.spec.import_types:
            self.imports.extend(self.spec.parse_imports(node))

        for child in node.children:
            self.visit(child, calls)


class SymbolExtractor:
    """Turns source files into ``SourceFile`` records."""

    def __init__(self, extractors: Optional[Dict[str, LanguageSpec]] = None):
        self.logger = app_logger.bind(component="symbol_extractor")
        self.extractors = extractors if extractors is not None else EXTRACTORS

    def supports(self, file_path: str) -> bool:
        return Path(file_path).suffix.lower() in self.extractors

    def extract_source(self, file_path: str, source: str) -> Optional[SourceFile]:
        """Extract functions and imports from source text.

        Returns None for unsupported extensions.
        """
        spec = self.extractors.get(Path(file_path).suffix.lower())
        if spec is None:
            return None

        # Parser objects are not shared between threads
        parser = Parser(spec.load_grammar())
        tree = parser.parse(source.encode("utf-8"))

        collector = _FileCollector(spec, file_path)
        collector.visit(tree.root_node, None)

        functions = sorted(collector.functions, key=lambda f: (f.start_line, f.end_line))
        return SourceFile(
            file_path=file_path,
            language=spec.language,
            functions=functions,
            imports=collector.imports,
        )

    def extract_file(self, code_file: CodeFile, scanner: LocalCodebaseScanner) -> Optional[SourceFile]:
        """Extract one scanned file; failures are logged and the file is skipped."""
        content = scanner.load_file_content(code_file)
        if content is None:
            return None

        try:
            source_file = self.extract_source(code_file.path, content)
        except (ValueError, RecursionError) as e:
            self.logger.warning(f"Failed to parse {code_file.path}: {e}")
            return None

        if source_file is not None:
            self.logger.debug(
                f"Parsed {code_file.path}: {len(source_file.functions)} functions, "
                f"{len(source_file.imports)} imports"
            )
        return source_file

    def extract_repository(self, repo_path: str, max_workers: Optional[int] = None) -> List[SourceFile]:
        """Extract every supported file under ``repo_path``, sorted by path."""
        scanner = LocalCodebaseScanner(repo_path, supported_extensions=list(self.extractors))
        code_files = scanner.scan_directory()
        workers = max_workers or settings.extraction_workers

        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = list(executor.map(lambda f: self.extract_file(f, scanner), code_files))

        source_files = sorted((r for r in results if r is not None), key=lambda f: f.file_path)
        self.logger.info(f"Extracted symbols from {len(source_files)} of {len(code_files)} files")
        return source_files
