"""Shared access to VS Code style storage (state.vscdb + workspace.json).

All database access is read-only.
"""

import json
import logging
import re
import sqlite3
import urllib.parse
from contextlib import closing
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

_WINDOWS_DRIVE = re.compile(r"^/[A-Za-z]:")


def connect_readonly(db_path: Path) -> sqlite3.Connection:
    return sqlite3.connect(f"file:{db_path}?mode=ro", uri=True)


def _decode(value) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else value.decode("utf-8", errors="replace")


def query_value(db_path: Path, table: str, key: str) -> Optional[str]:
    """Read a single key from a key-value table (ItemTable, cursorDiskKV)."""
    try:
        with closing(connect_readonly(db_path)) as conn:
            row = conn.execute(
                f"SELECT value FROM {table} WHERE [key] = ? LIMIT 1", (key,)
            ).fetchone()
    except (sqlite3.Error, OSError) as e:
        logger.debug("Failed to read key '%s' from %s: %s", key, db_path, e)
        return None
    return _decode(row[0]) if row else None


def query_prefix(db_path: Path, table: str, prefix: str) -> list[str]:
    """Read every value whose key starts with ``prefix``."""
    try:
        with closing(connect_readonly(db_path)) as conn:
            rows = conn.execute(
                f"SELECT value FROM {table} WHERE [key] LIKE ?", (prefix + "%",)
            ).fetchall()
    except (sqlite3.Error, OSError) as e:
        logger.debug("Failed to scan '%s*' in %s: %s", prefix, db_path, e)
        return []
    return [v for v in (_decode(row[0]) for row in rows) if v]


def query_json(db_path: Path, table: str, key: str):
    """Read and parse a JSON value; None when missing or corrupt."""
    raw = query_value(db_path, table, key)
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        logger.debug("Corrupt JSON under '%s' in %s: %s", key, db_path, e)
        return None


def uri_to_path(uri: str) -> str:
    """Turn a ``file://`` URI from workspace.json into a filesystem path."""
    path = urllib.parse.unquote(uri)
    if path.startswith("file://"):
        path = path[len("file://"):]
    # file:///c:/Users/... decodes to /c:/Users/...
    if _WINDOWS_DRIVE.match(path):
        path = path[1:]
    return path


def resolve_workspace_details(ws_dir: Path) -> tuple[Optional[str], Optional[str]]:
    """Return (name, project_path) from a workspace folder's workspace.json.

    Single-folder workspaces carry ``folder``; multi-root ones carry
    ``workspace`` pointing at the .code-workspace file.
    """
    ws_json = ws_dir / "workspace.json"
    try:
        data = json.loads(ws_json.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
        logger.debug("Cannot read %s: %s", ws_json, e)
        return None, None
    if not isinstance(data, dict):
        return None, None

    if data.get("folder"):
        path = uri_to_path(data["folder"])
        return Path(path).name or path, path
    if data.get("workspace"):
        path = uri_to_path(data["workspace"])
        return Path(path).name.replace(".code-workspace", ""), path
    return None, None


def fallback_name(ws_dir: Path) -> str:
    return f"Workspace {ws_dir.name[:6]}"
