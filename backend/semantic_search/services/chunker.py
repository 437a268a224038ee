"""
Chunker - Splits Python source files into declaration chunks with line range tracking.
"""

import ast
import io
import re
import tokenize
from pathlib import Path
from typing import Optional, Union

from semantic_search.utils.logger import get_logger
from semantic_search.models.chunk import Chunk, ChunkKind

logger = get_logger(__name__)

# Same line terminators the Python tokenizer recognises.
_LINE_BREAK = re.compile(r"\r\n|\r|\n")

_FUNCTION_NODES = (ast.FunctionDef, ast.AsyncFunctionDef)

# Statement fields that may hold nested statement lists (if/try/with/match...).
_BLOCK_FIELDS = ("body", "orelse", "finalbody", "handlers", "cases")


class ChunkParseError(Exception):
    """Raised when a source file cannot be read or parsed."""

    def __init__(self, filepath: str, message: str, lineno: Optional[int] = None):
        self.filepath = filepath
        self.lineno = lineno
        location = f"{filepath}:{lineno}" if lineno else filepath
        super().__init__(f"{location}: {message}")


def split_source_lines(source: str) -> list[str]:
    """Split source into lines, keeping terminators, without treating \\f or \\v as breaks."""
    lines = []
    start = 0
    for match in _LINE_BREAK.finditer(source):
        lines.append(source[start:match.end()])
        start = match.end()
    if start < len(source):
        lines.append(source[start:])
    return lines


def decode_source(data: bytes, file_path: str) -> str:
    """
    Decode module bytes the way the interpreter does: BOM, then a coding
    declaration, then UTF-8. Line endings are left untouched.
    """
    try:
        encoding, _ = tokenize.detect_encoding(io.BytesIO(data).readline)
        # utf-8-sig drops a BOM; line numbering is unaffected.
        return data.decode(encoding)
    except SyntaxError as e:
        raise ChunkParseError(file_path, e.msg or "invalid encoding declaration", e.lineno) from e
    except (LookupError, UnicodeDecodeError) as e:
        raise ChunkParseError(file_path, f"could not decode file: {e}") from e


def _byte_col_to_char(line: str, byte_col: int) -> int:
    """AST columns are UTF-8 byte offsets; convert to a str index."""
    return len(line.encode("utf-8")[:byte_col].decode("utf-8", errors="replace"))


def _leading_ws(line: str) -> int:
    return len(line) - len(line.lstrip(" \t\f"))


class CodeChunker:
    """
    Extracts function, class and method chunks from Python source.

    Strategy:
    - Module-level functions -> function chunks
    - Classes (at module level or nested in classes) -> class chunks
    - Functions directly in a class body -> method chunks named Class.method
    - Anything defined inside a function body is skipped
    """

    def extract(self, file_path: Union[str, Path]) -> list[Chunk]:
        """
        Read and chunk one file.

        Raises:
            ChunkParseError: unreadable, undecodable or syntactically invalid file.
        """
        path = Path(file_path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise ChunkParseError(str(file_path), f"could not read file: {e}") from e
        return self.extract_source(decode_source(data, str(file_path)), str(file_path))

    def extract_source(self, source: str, file_path: str) -> list[Chunk]:
        """Chunk already-loaded source text. An empty module yields no chunks."""
        try:
            tree = ast.parse(source, filename=file_path)
        except SyntaxError as e:
            raise ChunkParseError(file_path, e.msg or "invalid syntax", e.lineno) from e
        except ValueError as e:
            # Older interpreters raise ValueError for null bytes.
            raise ChunkParseError(file_path, str(e)) from e

        lines = split_source_lines(source)
        chunks: list[Chunk] = []
        seen: set[tuple[str, str]] = set()
        self._visit_body(tree.body, file_path, lines, None, chunks, seen)
        return chunks

    def _visit_body(
        self,
        body: list,
        file_path: str,
        lines: list[str],
        class_name: Optional[str],
        chunks: list[Chunk],
        seen: set[tuple[str, str]],
    ) -> None:
        for node in body:
            if isinstance(node, _FUNCTION_NODES):
                if class_name:
                    self._emit(node, ChunkKind.METHOD, f"{class_name}.{node.name}", file_path, lines, chunks, seen)
                else:
                    self._emit(node, ChunkKind.FUNCTION, node.name, file_path, lines, chunks, seen)
            elif isinstance(node, ast.ClassDef):
                qualified = f"{class_name}.{node.name}" if class_name else node.name
                self._emit(node, ChunkKind.CLASS, qualified, file_path, lines, chunks, seen)
                self._visit_body(node.body, file_path, lines, qualified, chunks, seen)
            else:
                # Conditional definitions (if TYPE_CHECKING:, try/except imports...)
                for field in _BLOCK_FIELDS:
                    nested = getattr(node, field, None)
                    if isinstance(nested, list):
                        self._visit_body(nested, file_path, lines, class_name, chunks, seen)

    def _emit(
        self,
        node: ast.AST,
        kind: ChunkKind,
        name: str,
        file_path: str,
        lines: list[str],
        chunks: list[Chunk],
        seen: set[tuple[str, str]],
    ) -> None:
        key = (kind.value, name)
        if key in seen:
            # Property setters, overloads and conditional redefinitions share a name;
            # the first declaration owns the identity.
            logger.debug("duplicate_declaration_skipped", file_path=file_path, kind=kind.value, name=name, line=node.lineno)
            return
        seen.add(key)

        start_line, start_col = self._start_position(node, lines)
        end_line = node.end_lineno or node.lineno
        end_text = lines[end_line - 1]
        end_col = _byte_col_to_char(end_text, node.end_col_offset or len(end_text.encode("utf-8")))

        if start_line == end_line:
            content = lines[start_line - 1][start_col:end_col]
        else:
            parts = [lines[start_line - 1][start_col:]]
            parts.extend(lines[start_line:end_line - 1])
            parts.append(end_text[:end_col])
            content = "".join(parts)

        chunks.append(
            Chunk(
                filepath=file_path,
                kind=kind,
                name=name,
                start_line=start_line,
                end_line=end_line,
                content=content,
            )
        )

    @staticmethod
    def _start_position(node: ast.AST, lines: list[str]) -> tuple[int, int]:
        """
        Line and column where a declaration's text begins.

        Decorators belong to the declaration. A compound statement and an '@'
        are always the first token on their line, so the column is the
        line's indentation.
        """
        decorators = getattr(node, "decorator_list", None) or []
        start_line = min([node.lineno] + [d.lineno for d in decorators])
        return start_line, _leading_ws(lines[start_line - 1])

