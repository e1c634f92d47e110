"""Document identities shared by tool calls and pushed diagnostics."""

from __future__ import annotations

import os
from pathlib import Path
from urllib.parse import unquote, urlparse


def resolve_document_path(workspace_root: str, file_path: str) -> str:
    """Absolute path of ``file_path``, relative paths anchored at ``workspace_root``."""
    if os.path.isabs(file_path):
        return os.path.normpath(file_path)
    return os.path.normpath(os.path.join(workspace_root, file_path))


def document_identity(workspace_root: str, file_path: str) -> str:
    """file:// URI identifying ``file_path`` within a session's workspace."""
    return Path(resolve_document_path(workspace_root, file_path)).as_uri()


def normalize_document_uri(uri: str) -> str:
    """
    Canonical form of a document URI.

    Servers may echo a URI back with different percent-encoding than we sent
    it with; decoding the path and re-encoding makes both sides compare equal.
    Non-file URIs are returned unchanged.
    """
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        return uri
    path = unquote(parsed.path)
    if not os.path.isabs(path):
        return uri
    return Path(path).as_uri()


def ensure_parent_directory(absolute_path: str) -> None:
    """Create the directory holding ``absolute_path`` if it does not exist."""
    Path(absolute_path).parent.mkdir(parents=True, exist_ok=True)
