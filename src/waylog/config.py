"""Platform-aware path resolution and runtime settings."""

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

HISTORY_DIR_PARTS = (".waylog", "history")


def get_app_data_path() -> Path:
    """Return the per-user application data directory."""
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support"
    elif sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        return Path(appdata) if appdata else Path.home() / "AppData" / "Roaming"
    else:  # Linux
        xdg = os.environ.get("XDG_CONFIG_HOME")
        return Path(xdg) if xdg else Path.home() / ".config"


def get_cursor_workspace_path() -> Path:
    """Return the path to Cursor's workspaceStorage directory."""
    env = os.environ.get("WAYLOG_CURSOR_PATH")
    if env:
        return Path(env)
    return get_app_data_path() / "Cursor" / "User" / "workspaceStorage"


def get_cursor_global_path() -> Path:
    """Return the path to Cursor's globalStorage state.vscdb."""
    env = os.environ.get("WAYLOG_CURSOR_PATH")
    if env:
        # globalStorage sits next to workspaceStorage
        return Path(env).parent / "globalStorage" / "state.vscdb"
    return get_app_data_path() / "Cursor" / "User" / "globalStorage" / "state.vscdb"


def get_vscode_workspace_storage_paths() -> list[Path]:
    """Return VS Code workspaceStorage directories (Stable, then Insiders)."""
    env = os.environ.get("WAYLOG_VSCODE_PATH")
    if env:
        return [Path(env) / "workspaceStorage"]
    base = get_app_data_path()
    return [
        base / "Code" / "User" / "workspaceStorage",
        base / "Code - Insiders" / "User" / "workspaceStorage",
    ]


def get_vscode_global_storage_paths() -> list[Path]:
    """Return VS Code globalStorage directories (Stable, then Insiders)."""
    env = os.environ.get("WAYLOG_VSCODE_PATH")
    if env:
        return [Path(env) / "globalStorage"]
    base = get_app_data_path()
    return [
        base / "Code" / "User" / "globalStorage",
        base / "Code - Insiders" / "User" / "globalStorage",
    ]


def get_claude_code_path() -> Path:
    """Return the path to Claude's projects directory."""
    env = os.environ.get("WAYLOG_CLAUDE_PATH")
    if env:
        return Path(env)
    return Path.home() / ".claude" / "projects"


def get_codex_path() -> Path:
    """Return the path to Codex's sessions directory."""
    env = os.environ.get("WAYLOG_CODEX_PATH")
    if env:
        return Path(env)
    return Path.home() / ".codex" / "sessions"


def get_kiro_path() -> Path:
    """Return Kiro's application data directory."""
    env = os.environ.get("WAYLOG_KIRO_PATH")
    if env:
        return Path(env)
    return get_app_data_path() / "Kiro"


def get_lingma_db_paths() -> list[Path]:
    """Return candidate Lingma local.db paths (Stable, then Insiders)."""
    env = os.environ.get("WAYLOG_LINGMA_PATH")
    if env:
        return [Path(env)]
    base = Path.home() / ".lingma"
    return [
        base / "vscode" / "sharedClientCache" / "cache" / "db" / "local.db",
        base / "vscode-insiders" / "sharedClientCache" / "cache" / "db" / "local.db",
    ]


def get_codebuddy_path() -> Path:
    """Return the root of CodeBuddy's extension data."""
    env = os.environ.get("WAYLOG_CODEBUDDY_PATH")
    if env:
        return Path(env)

    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "CodeBuddyExtension" / "Data"
    elif sys.platform == "win32":
        return Path(os.environ.get("APPDATA", "")) / "CodeBuddyExtension" / "Data"
    else:  # Linux
        return Path.home() / ".codebuddy"


def get_history_dir(project_root) -> Path:
    """Return the archive directory for a project."""
    return Path(project_root).joinpath(*HISTORY_DIR_PARTS)


# ── Settings ─────────────────────────────────────────────────────


@dataclass
class Settings:
    """Runtime settings, read from WAYLOG_* environment variables."""

    enabled: bool = True
    auto_save: bool = True
    sync_interval: float = 60.0  # seconds between ticks
    tick_timeout: float = 30.0  # seconds a tick may spend before stopping early
    probe_timeout: float = 5.0  # seconds an availability check may take
    sources: list[str] = field(default_factory=list)  # empty = every source
    include_details: bool = False


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def load_settings() -> Settings:
    """Build Settings from the environment."""
    sources = os.environ.get("WAYLOG_SOURCES", "")
    return Settings(
        enabled=_env_bool("WAYLOG_ENABLE", True),
        auto_save=_env_bool("WAYLOG_AUTO_SAVE", True),
        sync_interval=_env_float("WAYLOG_SYNC_INTERVAL", 60.0),
        tick_timeout=_env_float("WAYLOG_TICK_TIMEOUT", 30.0),
        probe_timeout=_env_float("WAYLOG_PROBE_TIMEOUT", 5.0),
        sources=[s.strip().lower() for s in sources.split(",") if s.strip()],
        include_details=_env_bool("WAYLOG_INCLUDE_DETAILS", False),
    )
