import os
from pathlib import Path
from typing import List, Optional, Iterator

from ..config import settings
from ..types import CodeFile
from ..utils.logger import app_logger


EXTENSION_LANGUAGES = {
    '.py': 'python',
    '.js': 'javascript',
    '.jsx': 'javascript',
    '.ts': 'typescript',
    '.tsx': 'tsx',
}


class LocalCodebaseScanner:
    """Walks a cloned repository and lists the files the extractor can parse."""

    def __init__(self, root_path: Optional[str] = None, supported_extensions: Optional[List[str]] = None):
        if root_path is None:
            self.root_path = Path.cwd().resolve()
        else:
            self.root_path = Path(root_path).resolve()

        self.supported_extensions = set(supported_extensions or settings.supported_extensions_list)
        self.ignored_dirs = {
            '.git', '.venv', 'venv', 'env', '__pycache__', 'node_modules',
            '.idea', '.vscode', '.pytest_cache', '.mypy_cache', 'build', 'dist',
            settings.data_path.name,
        }
        self.max_file_size = settings.max_file_size
        self.logger = app_logger.bind(component="scanner")

    def scan_directory(self) -> List[CodeFile]:
        """Scan directory and return code files sorted by relative path."""
        self.logger.info(f"Scanning directory: {self.root_path}")

        all_files = sorted(self._walk_directory(), key=lambda f: f.path)

        self.logger.info(f"Found {len(all_files)} files to process")
        return all_files

    def _walk_directory(self) -> Iterator[CodeFile]:
        """Walk through directory and yield code files."""
        for root, dirs, files in os.walk(self.root_path):
            # Remove ignored directories
            dirs[:] = [d for d in dirs if d not in self.ignored_dirs]

            for file_name in files:
                file_path = Path(root) / file_name

                if self._should_include_file(file_path):
                    code_file = self._create_code_file(file_path)
                    if code_file:
                        yield code_file

    def _should_include_file(self, file_path: Path) -> bool:
        """Check if file should be included in scan."""
        if file_path.suffix.lower() not in self.supported_extensions:
            return False

        try:
            if file_path.stat().st_size > self.max_file_size:
                self.logger.warning(f"Skipping large file: {file_path}")
                return False
        except OSError:
            return False

        return True

    def _create_code_file(self, file_path: Path) -> Optional[CodeFile]:
        """Create CodeFile object from file path."""
        try:
            stat = file_path.stat()
        except OSError as e:
            self.logger.warning(f"Cannot stat {file_path}: {e}")
            return None

        return CodeFile(
            path=file_path.relative_to(self.root_path).as_posix(),
            absolute_path=str(file_path.resolve()),
            language=EXTENSION_LANGUAGES.get(file_path.suffix.lower()),
            size=stat.st_size,
            last_modified=stat.st_mtime,
        )

    def load_file_content(self, code_file: CodeFile) -> Optional[str]:
        """Load content of a code file."""
        try:
            with open(code_file.absolute_path, 'r', encoding='utf-8', errors='ignore') as f:
                return f.read()
        except OSError as e:
            self.logger.error(f"Error loading file {code_file.absolute_path}: {e}")
            return None
