"""
File helpers for the explain command: reading source files and guessing
their language from the extension.
"""

from pathlib import Path
from typing import Optional, Union

from monk_manager.agent.prompt_builder import SourceExcerpt
from monk_manager.exceptions import InvalidInputError

EXTENSION_LANGUAGES = {
    ".py": "python",
    ".rs": "rust",
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".go": "go",
    ".java": "java",
    ".kt": "kotlin",
    ".c": "c",
    ".h": "c",
    ".cc": "cpp",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".rb": "ruby",
    ".php": "php",
    ".swift": "swift",
    ".scala": "scala",
    ".sh": "bash",
    ".bash": "bash",
    ".sql": "sql",
    ".html": "html",
    ".css": "css",
    ".json": "json",
    ".toml": "toml",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".md": "markdown",
}

MAX_FILE_BYTES = 1024 * 1024


def detect_language(path: Union[str, Path], use_mapping: bool = True) -> str:
    """
    Guess a language name from the file extension.

    Unknown extensions are returned as-is (without the dot); files without
    an extension are ``unknown``.
    """
    suffix = Path(path).suffix.lower()
    if not suffix:
        return "unknown"
    if use_mapping and suffix in EXTENSION_LANGUAGES:
        return EXTENSION_LANGUAGES[suffix]
    return suffix.lstrip(".")


def load_excerpt(
    path: Union[str, Path],
    language: Optional[str] = None,
    detect: bool = True,
) -> SourceExcerpt:
    """Read a UTF-8 source file into a SourceExcerpt."""
    file_path = Path(path).expanduser()
    if not file_path.is_file():
        raise InvalidInputError(
            f"File not found: {file_path}",
            field_name="file",
            user_hint="I cannot locate that file. Please verify the path exists.",
        )
    if file_path.stat().st_size > MAX_FILE_BYTES:
        raise InvalidInputError(
            f"File is too large to explain: {file_path}",
            field_name="file",
            user_hint="Narrow the request with --lines or split the file.",
        )
    try:
        content = file_path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise InvalidInputError(
            f"File is not valid UTF-8 text: {file_path}",
            field_name="file",
            original_error=e,
            user_hint="Only text source files can be explained.",
        ) from e
    except OSError as e:
        raise InvalidInputError(
            f"Failed to read file {file_path}: {e}", field_name="file", original_error=e
        ) from e

    return SourceExcerpt(
        path=str(path),
        content=content,
        language=language or detect_language(file_path, use_mapping=detect),
    )
