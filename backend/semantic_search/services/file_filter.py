"""
File filter - decides which files under a project root get indexed.
"""

import fnmatch
import os
from pathlib import Path
from typing import Iterable, Iterator, Optional, Protocol, Union

from semantic_search.utils.logger import get_logger

logger = get_logger(__name__)

PathLike = Union[str, Path]


class FileFilter(Protocol):
    """Pluggable indexing policy; the indexer only needs these two checks."""

    def is_indexable(self, path: PathLike) -> bool: ...

    def is_excluded_dir(self, dir_name: str) -> bool: ...


class DefaultFileFilter:
    """
    Python source only; no tests, stubs, build output, dependencies or entry points.
    """

    INCLUDED_EXTENSIONS = {".py"}

    # Directories to exclude
    EXCLUDED_DIRS = {
        ".git",
        ".hg",
        ".svn",
        "node_modules",
        "__pycache__",
        ".venv",
        "venv",
        "env",
        "site-packages",
        "dist",
        "build",
        "out",
        ".eggs",
        "*.egg-info",
        ".pytest_cache",
        ".mypy_cache",
        ".ruff_cache",
        ".tox",
        ".nox",
        "vendor",
        "tests",
        "test",
        ".idea",
        ".vscode",
    }

    # Test modules
    TEST_FILE_PATTERNS = ("test_*.py", "*_test.py", "tests.py")

    DEFAULT_ENTRY_POINTS = ("__main__.py", "setup.py", "conftest.py")

    def __init__(
        self,
        entry_point_files: Optional[Iterable[str]] = None,
        extra_excluded_dirs: Optional[Iterable[str]] = None,
    ):
        self.entry_point_files = {
            name.lower() for name in (entry_point_files if entry_point_files is not None else self.DEFAULT_ENTRY_POINTS)
        }
        self.excluded_dirs = {d.lower() for d in self.EXCLUDED_DIRS}
        self.excluded_dirs.update(d.lower() for d in (extra_excluded_dirs or []))

    def is_excluded_dir(self, dir_name: str) -> bool:
        """Check if a directory should be excluded from scans."""
        lowered = dir_name.lower()
        for pattern in self.excluded_dirs:
            if "*" in pattern:
                if fnmatch.fnmatch(lowered, pattern):
                    return True
            elif lowered == pattern:
                return True
        return False

    def is_indexable(self, path: PathLike) -> bool:
        """Whether a file's declarations belong in the index."""
        p = Path(path)
        name = p.name.lower()

        # .pyi stubs fall out here too
        if p.suffix.lower() not in self.INCLUDED_EXTENSIONS:
            return False
        if name in self.entry_point_files:
            return False
        if any(fnmatch.fnmatch(name, pattern) for pattern in self.TEST_FILE_PATTERNS):
            return False
        return not any(self.is_excluded_dir(part) for part in p.parent.parts)


def iter_candidate_files(root: PathLike, file_filter: FileFilter) -> Iterator[Path]:
    """
    Yield indexable files under root in a stable, sorted discovery order.

    Excluded directories are pruned during the walk instead of filtered after it.
    """
    root_path = Path(root)
    if root_path.is_file():
        if file_filter.is_indexable(root_path.name):
            yield root_path
        return

    def _on_error(error: OSError) -> None:
        logger.warning("walk_error", path=getattr(error, "filename", None), error=str(error))

    for current, dirs, files in os.walk(root_path, topdown=True, onerror=_on_error):
        dirs[:] = sorted(d for d in dirs if not file_filter.is_excluded_dir(d))
        current_path = Path(current)
        for file_name in sorted(files):
            full_path = current_path / file_name
            try:
                relative = full_path.relative_to(root_path)
            except ValueError:
                continue
            if file_filter.is_indexable(relative):
                yield full_path
