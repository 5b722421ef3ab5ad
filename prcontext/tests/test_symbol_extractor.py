import pytest
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from prcontext.processor.symbol_extractor import SymbolExtractor, python_module_path
from prcontext.types import ImportRecord


PYTHON_SOURCE = '''from .utils import helper
import os


def main():
    helper()
    os.path.join("a", "b")


class Service:
    def run(self):
        self.start()

        def inner():
            compute()

        return inner
'''

TYPESCRIPT_SOURCE = '''import formatDate from './formatDate';
import { validate } from '../validation';

export function handleRequest(req: Request) {
  const ok = validate(req.body);
  return formatDate(new Date());
}

const helper = (x: number) => x * 2;

class Api {
  fetch(url: string) {
    return this.client.get(url);
  }
}
'''


class TestSymbolExtractor:
    """Test tree-sitter symbol extraction."""

    def setup_method(self):
        self.extractor = SymbolExtractor()

    def test_python_functions_and_calls(self):
        source_file = self.extractor.extract_source("app/main.py", PYTHON_SOURCE)
        functions = {f.name: f for f in source_file.functions}

        assert source_file.language == "python"
        assert [f.name for f in source_file.functions] == ["main", "run", "inner"]
        assert functions["main"].calls == ["helper", "join"]
        assert functions["main"].start_line == 5
        assert functions["main"].end_line == 7
        assert functions["main"].code.startswith("def main():")
        assert functions["main"].file_path == "app/main.py"

    def test_nested_calls_belong_to_nested_function(self):
        source_file = self.extractor.extract_source("app/main.py", PYTHON_SOURCE)
        functions = {f.name: f for f in source_file.functions}

        assert functions["run"].calls == ["start"]
        assert functions["inner"].calls == ["compute"]

    def test_python_imports(self):
        source_file = self.extractor.extract_source("app/main.py", PYTHON_SOURCE)

        assert source_file.imports == [
            ImportRecord(module="./utils", symbols=["helper"], is_default=False),
            ImportRecord(module="os", symbols=[], is_default=False),
        ]

    def test_typescript_functions(self):
        source_file = self.extractor.extract_source("src/api.ts", TYPESCRIPT_SOURCE)
        functions = {f.name: f for f in source_file.functions}

        assert source_file.language == "typescript"
        assert [f.name for f in source_file.functions] == ["handleRequest", "helper", "fetch"]
        assert functions["handleRequest"].calls == ["validate", "formatDate"]
        assert functions["helper"].calls == []
        assert functions["fetch"].calls == ["get"]

    def test_typescript_imports(self):
        source_file = self.extractor.extract_source("src/api.ts", TYPESCRIPT_SOURCE)

        assert source_file.imports == [
            ImportRecord(module="./formatDate", symbols=["formatDate"], is_default=True),
            ImportRecord(module="../validation", symbols=["validate"], is_default=False),
        ]

    def test_javascript_and_tsx_dispatch(self):
        js = self.extractor.extract_source("web/app.js", "function boot() { start(); }\n")
        tsx = self.extractor.extract_source("web/View.tsx", "export function View() { return render(); }\n")

        assert js.language == "javascript"
        assert js.functions[0].calls == ["start"]
        assert tsx.language == "tsx"
        assert tsx.functions[0].name == "View"

    def test_unsupported_extension(self):
        assert self.extractor.extract_source("lib/tool.rb", "def tool; end") is None
        assert not self.extractor.supports("lib/tool.rb")

    def test_extract_repository(self, sample_repo):
        files = self.extractor.extract_repository(str(sample_repo), max_workers=2)

        assert [f.file_path for f in files] == ["app/service.py", "app/utils.py"]
        service = files[0]
        assert [f.name for f in service.functions] == ["register_user", "save_user"]
        assert service.imports == [ImportRecord(module="./utils", symbols=["normalize_email"])]


class TestPythonModulePath:
    @pytest.mark.parametrize("module,expected", [
        (".utils", "./utils"),
        ("..pkg.mod", "../pkg/mod"),
        ("...core", "../../core"),
        (".", "."),
        ("os.path", "os.path"),
    ])
    def test_conversion(self, module, expected):
        assert python_module_path(module) == expected
