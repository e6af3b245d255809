"""Path traversal protection for build-context entries."""

import posixpath

from shellbox.exceptions import ShellboxError


class PathTraversalError(ShellboxError, ValueError):
    """Raised when a path cannot be placed inside the build context."""

    pass


def normalize_archive_path(path: str) -> str:
    """
    Normalize a file path so it stays under the build context root.

    Resolves ``.`` and ``..`` segments and drops empty ones. Leading ``..``
    segments are clamped at the root instead of escaping it, and absolute
    paths are made relative.

    Args:
        path: Caller-supplied relative path (POSIX separators)

    Returns:
        Normalized relative path

    Raises:
        PathTraversalError: If nothing remains after normalization
    """
    # Rooting the path first means ".." can never climb above "/"
    normalized = posixpath.normpath("/" + path).lstrip("/")
    if not normalized or normalized == ".":
        raise PathTraversalError(f"Path does not name a file: {path!r}")
    return normalized
