import pytest
from pathlib import Path
from typing import Callable, List
import sys

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from prcontext.embedding.embedding_service import EmbeddingService, HashEmbeddingProvider
from prcontext.types import FunctionRecord, ImportRecord, SourceFile


@pytest.fixture
def make_source_file() -> Callable[..., SourceFile]:
    """Factory for SourceFile records.

    ``functions`` is a list of ``(name, calls)`` pairs; line numbers are
    assigned in order, ten lines per function.
    """
    def _make(file_path: str, functions=(), imports=(), language: str = "typescript") -> SourceFile:
        records = []
        for index, (name, calls) in enumerate(functions):
            start = index * 10 + 1
            records.append(FunctionRecord(
                name=name,
                file_path=file_path,
                start_line=start,
                end_line=start + 5,
                code=f"function {name}() {{\n  // body of {name}\n}}",
                calls=list(calls),
            ))
        return SourceFile(file_path=file_path, language=language, functions=records, imports=list(imports))

    return _make


@pytest.fixture
def sample_source_files(make_source_file) -> List[SourceFile]:
    """A small TypeScript project with relative, index and fallback resolution."""
    return [
        make_source_file(
            "src/api.ts",
            functions=[("handleRequest", ["validate", "formatDate", "log", "print"])],
            imports=[
                ImportRecord(module="./utils", symbols=["formatDate"]),
                ImportRecord(module="./validation", symbols=["validate"]),
            ],
        ),
        make_source_file("src/utils.ts", functions=[("formatDate", ["padZero"]), ("padZero", [])]),
        make_source_file("src/validation/index.ts", functions=[("validate", ["isEmpty"])]),
        make_source_file("src/strings.ts", functions=[("isEmpty", [])]),
        make_source_file("lib/b.ts", functions=[("log", [])]),
        make_source_file("lib/a.ts", functions=[("log", [])]),
    ]


@pytest.fixture
def embedding_service() -> EmbeddingService:
    """Offline deterministic embeddings."""
    return EmbeddingService(provider=HashEmbeddingProvider(dimension=256))


@pytest.fixture
def sample_repo(tmp_path) -> Path:
    """Create a temporary Python repository on disk."""
    app = tmp_path / "app"
    app.mkdir()

    (app / "service.py").write_text(
        "from .utils import normalize_email\n"
        "\n"
        "\n"
        "def register_user(email):\n"
        "    address = normalize_email(email)\n"
        "    return save_user(address)\n"
        "\n"
        "\n"
        "def save_user(address):\n"
        "    return {\"email\": address}\n",
        encoding="utf-8",
    )
    (app / "utils.py").write_text(
        "def normalize_email(email):\n"
        "    return email.strip().lower()\n",
        encoding="utf-8",
    )

    # Never scanned
    vendored = tmp_path / "node_modules" / "left-pad"
    vendored.mkdir(parents=True)
    (vendored / "index.js").write_text("function leftPad() { return 1; }\n", encoding="utf-8")
    (tmp_path / "README.md").write_text("# Sample\n", encoding="utf-8")

    return tmp_path
