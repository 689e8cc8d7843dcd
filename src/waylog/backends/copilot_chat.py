"""GitHub Copilot Chat history backend.

Copilot Chat keeps one JSON document per session under
``workspaceStorage/<hash>/chatSessions/`` of VS Code Stable and Insiders.
"""

import logging
import re
from pathlib import Path
from typing import Optional

from ..config import get_vscode_workspace_storage_paths
from ..core import DirectoryLocator, Message, Session, Workspace
from ..normalize import file_times, parse_timestamp, read_json, resolve_timestamp, truncate_title
from ..provider import ChatProvider, finalize_workspaces
from .vscdb import fallback_name, resolve_workspace_details

logger = logging.getLogger(__name__)

# "**Planning todo list**" style headers Copilot emits before each reasoning step
_THINKING_HEADER = re.compile(r"^\*\*[A-Z][a-z]+(?:\s+[a-z]+)*\*\*\s*$")

# Replies are stamped just after their request so they sort after it
RESPONSE_OFFSET_MS = 1000


class CopilotChatProvider(ChatProvider):
    """Provider for Copilot Chat in VS Code (Stable and Insiders)."""

    key = "copilot_chat"
    name = "Copilot Chat"
    description = "From GitHub Copilot Chat in VS Code"

    def get_storage_paths(self) -> list[Path]:
        return get_vscode_workspace_storage_paths()

    def get_base_path(self) -> Path:
        return self.get_storage_paths()[0]

    def is_available(self) -> bool:
        return any(p.is_dir() for p in self.get_storage_paths())

    def list_workspaces(self) -> list[Workspace]:
        workspaces = []
        for storage in self.get_storage_paths():
            if not storage.is_dir():
                continue
            for ws_dir in storage.iterdir():
                sessions_dir = ws_dir / "chatSessions"
                if not sessions_dir.is_dir():
                    continue

                count = len(self.list_sessions(DirectoryLocator(ws_dir)))
                if count == 0:
                    continue

                name, project_path = resolve_workspace_details(ws_dir)
                workspaces.append(Workspace(
                    id=ws_dir.name,
                    name=name or fallback_name(ws_dir),
                    path=project_path or str(ws_dir),
                    locator=DirectoryLocator(ws_dir),
                    last_modified=int(sessions_dir.stat().st_mtime * 1000),
                    session_count=count,
                    source=self.name,
                ))
        return finalize_workspaces(workspaces)

    def list_sessions(self, locator: DirectoryLocator) -> list[Session]:
        sessions_dir = locator.path / "chatSessions"
        if not sessions_dir.is_dir():
            return []

        sessions = []
        for path in sorted(sessions_dir.glob("*.json")):
            data = read_json(path)
            if not isinstance(data, dict):
                continue
            try:
                session = parse_session(data, path.stem, self.name, file_times(path)[0])
            except (AttributeError, KeyError, TypeError, ValueError, OSError) as e:
                logger.debug("Skipping malformed Copilot session %s: %s", path.name, e)
                continue
            if session:
                sessions.append(session)

        sessions.sort(key=lambda s: s.timestamp, reverse=True)
        return sessions


def remove_thinking_process(text: str) -> str:
    """Drop each ``**Header**`` paragraph and the paragraph that follows it."""
    kept = []
    skip_next = False
    for para in text.split("\n\n"):
        if _THINKING_HEADER.match(para.strip()):
            skip_next = True
            continue
        if skip_next:
            skip_next = False
            continue
        kept.append(para)
    return "\n\n".join(kept).strip()


def response_text(response) -> str:
    """Join the visible parts of a request's response."""
    if isinstance(response, str):
        return response
    if isinstance(response, dict):
        value = response.get("value")
        return value if isinstance(value, str) else ""
    if not isinstance(response, list):
        return ""

    parts = []
    for part in response:
        if not isinstance(part, dict) or part.get("kind") == "thinking":
            continue
        value = part.get("value") or part.get("response")
        if isinstance(value, str) and value:
            parts.append(value)
    return "\n".join(parts)


def _request_text(req: dict) -> str:
    for key in ("message", "userRequest"):
        value = req.get(key)
        if isinstance(value, dict):
            value = value.get("text")
        if isinstance(value, str) and value:
            return value
    return ""


def parse_session(
    data: dict,
    session_id: str,
    source: str = "Copilot Chat",
    file_created: Optional[int] = None,
) -> Optional[Session]:
    created = parse_timestamp(data.get("creationDate"))
    last_message = parse_timestamp(data.get("lastMessageDate"))

    requests = data.get("requests")
    if not isinstance(requests, list):
        return None

    messages = []
    for req in requests:
        if not isinstance(req, dict):
            continue
        ts = resolve_timestamp(req.get("timestamp"), created, file_created)

        prompt = _request_text(req)
        if prompt:
            messages.append(Message(role="user", content=prompt, timestamp=ts))

        reply = remove_thinking_process(response_text(req.get("response")))
        if reply:
            messages.append(Message(role="assistant", content=reply, timestamp=ts + RESPONSE_OFFSET_MS))

    if not messages:
        return None

    # creationDate is stable; lastMessageDate moves with every request
    timestamp = created or messages[0].timestamp
    return Session(
        id=session_id,
        title=truncate_title(messages[0].content) or session_id,
        description=f"Copilot Chat: {len(messages)} messages",
        timestamp=timestamp,
        last_updated_at=max(timestamp, last_message or 0),
        messages=messages,
        source=source,
    )
