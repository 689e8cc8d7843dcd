"""Find the workspace of a source that corresponds to the current project."""

import logging
import posixpath
from typing import Optional

from .core import Workspace

logger = logging.getLogger(__name__)


def normalize_path(path: str) -> str:
    """Compare-friendly form of a path from any platform.

    Backslashes become slashes, redundant separators and ``.`` segments are
    collapsed, case is folded and trailing separators dropped.
    """
    unified = str(path).replace("\\", "/")
    if not unified:
        return ""
    normalized = posixpath.normpath(unified).lower()
    if len(normalized) > 1:
        normalized = normalized.rstrip("/")
    return normalized


def match_workspace(
    workspaces: list[Workspace],
    project_root,
    workspace_file=None,
) -> Optional[Workspace]:
    """Pick the workspace that belongs to ``project_root``.

    Priority: the ``.code-workspace`` file, then the exact folder, then any
    workspace whose folder has the same name (newest wins).
    """
    if not workspaces:
        return None

    root = normalize_path(project_root)
    ws_file = normalize_path(workspace_file) if workspace_file else None

    if ws_file:
        for ws in workspaces:
            if normalize_path(ws.path) == ws_file:
                return ws

    for ws in workspaces:
        if normalize_path(ws.path) == root:
            return ws

    # Same folder name under a different drive letter or parent
    basename = posixpath.basename(root)
    if not basename:
        return None
    candidates = [ws for ws in workspaces if posixpath.basename(normalize_path(ws.path)) == basename]
    if not candidates:
        return None

    best = max(candidates, key=lambda ws: ws.last_modified)
    logger.info("Fuzzy matched %s workspace by name '%s': %s", best.source, basename, best.path)
    return best
