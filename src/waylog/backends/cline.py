"""Cline-family chat history backends (Cline, Roo Code, Kilo Code).

These extensions share one storage layout under VS Code's globalStorage:

    <globalStorage>/<extension id>/tasks/<task id>/
        api_conversation_history.json   raw API turns (workspace path lives here)
        ui_messages.json                what the chat panel shows

Tasks are grouped into workspaces by the working directory recorded in the
environment details of the first API message. Sessions are listed from
folder metadata and their messages are read on demand.
"""

import json
import logging
import re
from pathlib import Path
from typing import Optional

from ..config import get_vscode_global_storage_paths
from ..core import Message, Session, TaskFolderLocator, Workspace
from ..normalize import file_times, parse_timestamp, read_json, resolve_timestamp, truncate_title
from ..provider import LazyContentProvider, finalize_workspaces

logger = logging.getLogger(__name__)

UNKNOWN_WORKSPACE = "Unknown Workspace"

_WORKSPACE_DIR = re.compile(r"Current (?:Workspace|Working) Directory \((.*?)\)")

_SAY_KINDS = ("text", "completion_result", "user_feedback")


class ClineFamilyProvider(LazyContentProvider):
    """Shared reader for the Cline task-folder layout."""

    extension_id: str

    def get_extension_dirs(self) -> list[Path]:
        return [base / self.extension_id for base in get_vscode_global_storage_paths()]

    def get_base_path(self) -> Path:
        return self.get_extension_dirs()[0]

    def is_available(self) -> bool:
        return any(d.is_dir() for d in self.get_extension_dirs())

    def list_workspaces(self) -> list[Workspace]:
        workspaces = []
        for extension_dir in self.get_extension_dirs():
            grouped: dict[str, Workspace] = {}
            for task_dir in _task_dirs(extension_dir):
                ws_path = task_workspace(task_dir)
                mtime = int(task_dir.stat().st_mtime * 1000)
                ws = grouped.get(ws_path)
                if ws is None:
                    unknown = ws_path == UNKNOWN_WORKSPACE
                    grouped[ws_path] = Workspace(
                        id=f"{self.extension_id}:{ws_path}",
                        name=f"{self.name} (Unknown)" if unknown else f"{self.name}: {Path(ws_path).name}",
                        path=ws_path,
                        locator=TaskFolderLocator(extension_dir, ws_path),
                        last_modified=mtime,
                        session_count=1,
                        source=self.name,
                    )
                else:
                    ws.session_count += 1
                    ws.last_modified = max(ws.last_modified, mtime)
            workspaces.extend(grouped.values())

        logger.debug("%s: %d workspaces", self.name, len(workspaces))
        return finalize_workspaces(workspaces)

    def list_sessions(self, locator: TaskFolderLocator) -> list[Session]:
        """List the tasks of one workspace without reading their messages."""
        sessions = []
        for task_dir in _task_dirs(locator.extension_dir):
            if task_workspace(task_dir) != locator.workspace_path:
                continue

            ui_messages = _load_ui_messages(task_dir)
            created, modified = file_times(task_dir)
            started = _first_ts(ui_messages) or created

            sessions.append(Session(
                id=task_dir.name,
                title=task_title(ui_messages) or task_dir.name[:8] + "...",
                description="Task folder (lazy load)",
                timestamp=started,
                last_updated_at=max(started, modified),
                source=self.name,
                metadata={"sub_channel": self.name},
                loaded=False,
            ))

        sessions.sort(key=lambda s: s.timestamp, reverse=True)
        return sessions

    def fetch_content(self, session_id: str, locator: TaskFolderLocator) -> list[Message]:
        task_dir = locator.extension_dir / "tasks" / session_id
        if not task_dir.is_dir():
            return []
        ui_messages = _load_ui_messages(task_dir)
        created, modified = file_times(task_dir)
        messages = parse_ui_messages(ui_messages, _first_ts(ui_messages) or created, modified)
        logger.debug("%s: %d messages in task %s", self.name, len(messages), session_id)
        return messages


class ClineProvider(ClineFamilyProvider):
    key = "cline"
    name = "Cline"
    description = "From the Cline VS Code extension"
    extension_id = "saoudrizwan.claude-dev"


class RooCodeProvider(ClineFamilyProvider):
    key = "roo_code"
    name = "Roo Code"
    description = "From the Roo Code VS Code extension"
    extension_id = "rooveterinaryinc.roo-cline"


class KiloCodeProvider(ClineFamilyProvider):
    key = "kilo_code"
    name = "Kilo Code"
    description = "From the Kilo Code VS Code extension"
    extension_id = "kilocode.kilo-code"


# ── Task parsing ─────────────────────────────────────────────────


def _task_dirs(extension_dir: Path) -> list[Path]:
    tasks = extension_dir / "tasks"
    if not tasks.is_dir():
        return []
    return sorted(p for p in tasks.iterdir() if p.is_dir())


def _load_ui_messages(task_dir: Path) -> list[dict]:
    data = read_json(task_dir / "ui_messages.json")
    if not isinstance(data, list):
        return []
    return [m for m in data if isinstance(m, dict)]


def _first_ts(ui_messages: list[dict]) -> Optional[int]:
    for msg in ui_messages:
        ts = parse_timestamp(msg.get("ts"))
        if ts:
            return ts
    return None


def extract_workspace_path(history) -> Optional[str]:
    """Find the working directory in the first API message's environment details."""
    if not isinstance(history, list) or not history:
        return None
    first = history[0]
    if not isinstance(first, dict) or first.get("role") != "user":
        return None
    content = first.get("content")
    if not isinstance(content, list):
        return None
    for item in content:
        if not isinstance(item, dict) or item.get("type") != "text":
            continue
        match = _WORKSPACE_DIR.search(item.get("text") or "")
        if match:
            return match.group(1)
    return None


def task_workspace(task_dir: Path) -> str:
    """Workspace path a task belongs to, or the unknown-workspace bucket."""
    history = read_json(task_dir / "api_conversation_history.json")
    return extract_workspace_path(history) or UNKNOWN_WORKSPACE


def _is_user_say(msg: dict) -> bool:
    # The panel attaches an "images" field to whatever the user typed
    return "images" in msg or msg.get("say") == "user_feedback"


def task_title(ui_messages: list[dict]) -> Optional[str]:
    for msg in ui_messages:
        text = msg.get("text")
        if msg.get("type") == "say" and msg.get("say") == "text" and "images" in msg and isinstance(text, str):
            title = truncate_title(text)
            if title:
                return title
    return None


def parse_ui_messages(
    ui_messages: list[dict],
    session_created: Optional[int] = None,
    file_mtime: Optional[int] = None,
) -> list[Message]:
    """Convert panel messages into a conversation, in stored order.

    Messages without a usable ``ts`` take the task's creation time, then
    the folder's modification time.
    """
    messages = []
    for msg in ui_messages:
        text = msg.get("text")
        if not isinstance(text, str):
            continue
        ts = resolve_timestamp(msg.get("ts"), session_created, file_mtime)

        if msg.get("type") == "say" and msg.get("say") in _SAY_KINDS:
            if not text:
                continue
            role = "user" if _is_user_say(msg) else "assistant"
            messages.append(Message(role=role, content=text, timestamp=ts))

        elif msg.get("type") == "ask" and text:
            # Follow-up questions are stored as {"question": ..., "options": [...]}
            content = text
            try:
                parsed = json.loads(text)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, dict) and isinstance(parsed.get("question"), str) and parsed["question"]:
                content = parsed["question"]
            messages.append(Message(
                role="assistant",
                content=content,
                timestamp=ts,
                metadata={"is_question": True},
            ))

    return messages
