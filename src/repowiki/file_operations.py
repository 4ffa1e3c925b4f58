"""
Sandboxed File Operations

All repository reads go through SandboxedFileReader, which refuses any path
that resolves outside the repository root.
"""

import logging
from pathlib import Path
from typing import List, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

DEFAULT_FIND_IGNORES = ("node_modules", ".git")


class AccessDeniedError(PermissionError):
    """Raised when a path escapes the sandbox root."""


class SandboxedFileReader:
    """Read-only access to files beneath a base directory."""

    def __init__(self, base_dir: PathLike):
        self.base_dir = Path(base_dir).resolve()

    def resolve(self, file_path: PathLike) -> Path:
        """
        Resolve a path against the base directory.

        Raises:
            AccessDeniedError: if the resolved path is outside the base directory
        """
        candidate = Path(file_path)
        if not candidate.is_absolute():
            candidate = self.base_dir / candidate
        resolved = candidate.resolve()

        if resolved != self.base_dir and not resolved.is_relative_to(self.base_dir):
            logger.warning("Access denied | path: %s | base: %s", file_path, self.base_dir)
            raise AccessDeniedError(
                f'Access denied: Path "{file_path}" is outside the allowed directory "{self.base_dir}"'
            )
        return resolved

    def relative_path(self, file_path: PathLike) -> str:
        """Repository-relative POSIX path for a file inside the sandbox."""
        return self.resolve(file_path).relative_to(self.base_dir).as_posix()

    def read_text(self, file_path: PathLike) -> str:
        """Read a UTF-8 file without newline translation so line content is exact."""
        safe_path = self.resolve(file_path)
        with open(safe_path, "r", encoding="utf-8", newline="") as handle:
            return handle.read()

    def exists(self, file_path: PathLike) -> bool:
        return self.resolve(file_path).exists()

    def file_size(self, file_path: PathLike) -> int:
        return self.resolve(file_path).stat().st_size

    def find_files(self, pattern: str) -> List[Path]:
        """Glob beneath the base directory, skipping dependency and VCS folders."""
        if ".." in pattern:
            raise AccessDeniedError("Access denied: Path traversal patterns (..) not allowed")

        results = []
        for match in sorted(self.base_dir.glob(pattern)):
            resolved = match.resolve()
            if not resolved.is_relative_to(self.base_dir):
                continue
            relative_parts = resolved.relative_to(self.base_dir).parts
            if any(part in DEFAULT_FIND_IGNORES for part in relative_parts):
                continue
            results.append(resolved)
        return results
