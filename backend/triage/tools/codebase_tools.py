"""
Workspace file access for the tool executor and the fix stage.

Every read and write goes through the same path check: relative, no parent
segments, and still inside the workspace root once symlinks are resolved.
"""

import posixpath
import re
from pathlib import Path
from typing import Optional

from triage.utils.logger import get_logger

logger = get_logger(__name__)

MAX_FILE_CHARS = 20_000
TRUNCATION_MARKER = "\n... (truncated)"
UNSAFE_PATH_ERROR = "error: path must be relative and within the repository"

_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:")


def truncate_text(text: str, max_chars: int, marker: str = TRUNCATION_MARKER) -> str:
    """Cap ``text`` at ``max_chars`` characters, marker included."""
    if len(text) <= max_chars:
        return text
    if max_chars <= len(marker):
        return text[:max_chars]
    return text[:max_chars - len(marker)] + marker


def normalize_repo_path(path: str) -> Optional[str]:
    """Return the normalized relative form of ``path``, or None if it is unsafe.

    Rejects empty paths, absolute paths (POSIX or drive-letter), and any path
    with a ``..`` segment, whether or not normalization would cancel it out.
    """
    if not path or "\x00" in path:
        return None
    candidate = path.replace("\\", "/")
    if candidate.startswith("/") or _DRIVE_PREFIX.match(candidate):
        return None
    if ".." in candidate.split("/"):
        return None
    normalized = posixpath.normpath(candidate)
    if normalized in (".", ""):
        return None
    return normalized


class CodebaseTools:
    """File access confined to a workspace root."""

    def __init__(self, repo_path: Path | str):
        self.repo_path = Path(repo_path)

        if not self.repo_path.exists():
            logger.warning("Workspace path doesn't exist", extra={"extra": {"path": str(repo_path)}})

    def resolve_safe_path(self, path: str) -> Optional[Path]:
        """Absolute location of ``path`` inside the workspace, or None if unsafe."""
        normalized = normalize_repo_path(path)
        if normalized is None:
            return None
        root = self.repo_path.resolve()
        full_path = (root / normalized).resolve()
        if not full_path.is_relative_to(root):
            return None
        return full_path

    def read_file(self, path: str) -> str:
        """Read a workspace file as text for the model.

        Returns:
            File content capped at MAX_FILE_CHARS, or an error message
        """
        full_path = self.resolve_safe_path(path)
        if full_path is None:
            return UNSAFE_PATH_ERROR

        try:
            with open(full_path, "r", encoding="utf-8", errors="replace") as f:
                content = f.read(MAX_FILE_CHARS + 1)
        except OSError as e:
            return f"error reading file: {e}"

        return truncate_text(content, MAX_FILE_CHARS)

    def write_file(self, path: str, content: str) -> Optional[str]:
        """Write ``content`` to a workspace file, creating parent directories.

        Returns:
            The normalized relative path written, or None if the path was unsafe

        Raises:
            OSError: the write itself failed
        """
        full_path = self.resolve_safe_path(path)
        if full_path is None:
            return None
        full_path.parent.mkdir(parents=True, exist_ok=True)
        with open(full_path, "w", encoding="utf-8") as f:
            f.write(content)
        return normalize_repo_path(path)
