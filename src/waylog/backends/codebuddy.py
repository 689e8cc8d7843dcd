"""Tencent CodeBuddy chat history backend.

CodeBuddy stores history under a ``history`` directory somewhere inside
its data folder (the depth differs between the VS Code plugin and the
IDE). Inside, one folder per project is named after the md5 of the project
path, with one folder per conversation:

    history/<md5(project)>/index.json                  conversation list
    history/<md5(project)>/<session>/index.json        message order
    history/<md5(project)>/<session>/messages/<id>.json
"""

import hashlib
import json
import logging
import re
from pathlib import Path
from typing import Optional

from ..config import get_codebuddy_path
from ..core import DirectoryLocator, Message, Session, Workspace
from ..normalize import clean_content, derive_title, file_times, parse_timestamp, read_json
from ..provider import ChatProvider, finalize_workspaces

logger = logging.getLogger(__name__)

HISTORY_SEARCH_DEPTH = 6

NOISE_TAGS = (
    "user_info",
    "project_context",
    "project_layout",
    "system_reminder",
    "additional_data",
    "currently_opened_file",
)

_PROJECT_HASH = re.compile(r"^[a-f0-9]{32}$", re.IGNORECASE)
_USER_QUERY_TAG = re.compile(r"</?user_query>")


class CodeBuddyProvider(ChatProvider):
    """Provider for Tencent CodeBuddy (VS Code plugin and IDE)."""

    key = "codebuddy"
    name = "Tencent CodeBuddy"
    description = "From Tencent CodeBuddy"

    def __init__(self, open_folders=()):
        self.open_folders = [str(f) for f in open_folders]

    def get_base_path(self) -> Path:
        return get_codebuddy_path()

    def find_history_dirs(self) -> list[Path]:
        base = self.get_base_path()
        if not base.is_dir():
            return []
        found = []
        _collect_history_dirs(base, 0, found)
        return found

    def is_available(self) -> bool:
        return bool(self.find_history_dirs())

    def list_workspaces(self) -> list[Workspace]:
        history_dirs = self.find_history_dirs()
        workspaces = []

        # Open folders map onto their md5-named project directory
        for folder in self.open_folders:
            digest = project_hash(folder)
            for history in history_dirs:
                project_dir = history / digest
                if not project_dir.is_dir():
                    continue
                sessions = self.list_sessions(DirectoryLocator(project_dir))
                workspaces.append(Workspace(
                    id=f"codebuddy-{digest}",
                    name=f"CodeBuddy ({Path(folder).name})",
                    path=folder,
                    locator=DirectoryLocator(project_dir),
                    last_modified=_newest(sessions),
                    session_count=len(sessions),
                    source=self.name,
                ))

        # Whole history roots, for browsing projects that are not open
        for history in history_dirs:
            sessions = self.list_sessions(DirectoryLocator(history))
            workspaces.append(Workspace(
                id=str(history),
                name=f"CodeBuddy Raw - {history.parent.parent.name}",
                path=str(history),
                locator=DirectoryLocator(history),
                last_modified=_newest(sessions),
                session_count=len(sessions),
                source=self.name,
            ))

        return finalize_workspaces(workspaces)

    def list_sessions(self, locator: DirectoryLocator) -> list[Session]:
        """Read one project directory, or every project under a history root."""
        path = locator.path
        if _PROJECT_HASH.match(path.name):
            project_dirs = [path]
        elif path.is_dir():
            project_dirs = sorted(p for p in path.iterdir() if p.is_dir())
        else:
            project_dirs = []

        sessions = []
        for project_dir in project_dirs:
            sessions.extend(read_project(project_dir, self.name))
        sessions.sort(key=lambda s: s.timestamp, reverse=True)
        return sessions


def _collect_history_dirs(directory: Path, depth: int, found: list[Path]):
    if depth > HISTORY_SEARCH_DEPTH:
        return
    try:
        children = sorted(p for p in directory.iterdir() if p.is_dir())
    except OSError:
        return
    for child in children:
        if child.name == "history":
            found.append(child)
        else:
            _collect_history_dirs(child, depth + 1, found)


def _newest(sessions: list[Session]) -> int:
    return max((s.last_updated_at or s.timestamp for s in sessions), default=0)


def project_hash(project_path: str) -> str:
    return hashlib.md5(project_path.encode("utf-8")).hexdigest()


def clean_text(text: str) -> Optional[str]:
    """Strip injected context blocks and unwrap the user's query."""
    cleaned = clean_content(text, NOISE_TAGS)
    if cleaned is None:
        return None
    return _USER_QUERY_TAG.sub("", cleaned).strip() or None


def _body_text(body) -> str:
    if isinstance(body, dict):
        content = body.get("content")
        if isinstance(content, list):
            return "\n".join(
                c["text"] for c in content
                if isinstance(c, dict) and c.get("type") == "text" and isinstance(c.get("text"), str)
            )
        if isinstance(content, str):
            return content
        return ""
    return body if isinstance(body, str) else ""


def read_messages(session_dir: Path) -> list[Message]:
    """Read a conversation's messages in the order its index lists them."""
    index = read_json(session_dir / "index.json")
    if not isinstance(index, dict):
        return []

    messages = []
    for ref in index.get("messages") or []:
        if not isinstance(ref, dict) or not ref.get("id"):
            continue
        msg_file = session_dir / "messages" / f"{ref['id']}.json"
        raw = read_json(msg_file)
        if not isinstance(raw, dict):
            continue

        # "message" is itself a JSON document, or occasionally plain text
        payload = raw.get("message")
        try:
            body = json.loads(payload) if isinstance(payload, str) else payload
        except json.JSONDecodeError:
            body = {"content": payload}

        text = clean_text(_body_text(body))
        if not text:
            continue

        metadata = {}
        if isinstance(body, dict) and body.get("model"):
            metadata["model"] = body["model"]
        messages.append(Message(
            role="assistant" if ref.get("role") == "assistant" else "user",
            content=text,
            timestamp=int(msg_file.stat().st_mtime * 1000),
            metadata=metadata,
        ))
    return messages


def read_project(project_dir: Path, source: str = "Tencent CodeBuddy") -> list[Session]:
    created_at = {}
    project_index = read_json(project_dir / "index.json")
    if isinstance(project_index, dict):
        for conv in project_index.get("conversations") or []:
            if isinstance(conv, dict) and conv.get("id"):
                created_at[conv["id"]] = parse_timestamp(conv.get("createdAt"))

    sessions = []
    for session_dir in sorted(p for p in project_dir.iterdir() if p.is_dir()):
        index_path = session_dir / "index.json"
        if not index_path.is_file():
            continue
        messages = read_messages(session_dir)
        if not messages:
            continue

        modified = int(index_path.stat().st_mtime * 1000)
        # index.json is rewritten on every message; the folder is not
        created = created_at.get(session_dir.name) or file_times(session_dir)[0]
        sessions.append(Session(
            id=f"{project_dir.name}/{session_dir.name}",
            title=derive_title(messages, "New Chat"),
            description=f"{len(messages)} messages",
            timestamp=created,
            last_updated_at=max(created, modified),
            messages=messages,
            source=source,
        ))
    return sessions
