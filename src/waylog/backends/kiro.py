"""Kiro IDE chat history backend.

Kiro's agent keeps a ``sessions.json`` index plus one ``<session>.json``
history per workspace under
``Kiro/User/globalStorage/kiro.kiroagent/workspace-sessions/<dir>/``.
Histories store shortened assistant replies; the complete replies are
recovered from the ``q-chat-api-log.log`` files in Kiro's logs.
"""

import json
import logging
import re
from pathlib import Path

from ..config import get_kiro_path
from ..core import DirectoryLocator, Message, Session, Workspace
from ..normalize import derive_title, file_times, now_ms, parse_timestamp, read_json, truncate_title
from ..provider import ChatProvider, finalize_workspaces

logger = logging.getLogger(__name__)

API_LOG_SUFFIX = "q-chat-api-log.log"

# Every prompt first goes through an intent classifier answering
# {"chat": ..., "do": ..., "spec": ...}; those replies are not conversation.
CLASSIFIER_KEYS = ("chat", "do", "spec")

_JSON_FENCE = re.compile(r"^```json\s*|\s*```$")


class KiroProvider(ChatProvider):
    """Provider for Kiro IDE agent sessions."""

    key = "kiro"
    name = "Kiro"
    description = "Chat history from Kiro IDE"

    def get_base_path(self) -> Path:
        return get_kiro_path()

    def get_sessions_path(self) -> Path:
        return (
            self.get_base_path() / "User" / "globalStorage"
            / "kiro.kiroagent" / "workspace-sessions"
        )

    def is_available(self) -> bool:
        return self.get_sessions_path().is_dir()

    def list_workspaces(self) -> list[Workspace]:
        base = self.get_sessions_path()
        if not base.is_dir():
            return []

        workspaces = []
        for ws_dir in base.iterdir():
            if not ws_dir.is_dir():
                continue
            visible = _visible_entries(ws_dir)
            if not visible:
                continue
            ws_path = visible[0].get("workspaceDirectory")
            if not isinstance(ws_path, str) or not ws_path:
                continue

            workspaces.append(Workspace(
                id=f"kiro:{ws_dir.name}",
                name=Path(ws_path).name,
                path=ws_path,
                locator=DirectoryLocator(ws_dir),
                last_modified=max(parse_timestamp(e.get("dateCreated")) or 0 for e in visible),
                session_count=len(visible),
                source=self.name,
            ))
        return finalize_workspaces(workspaces)

    def list_sessions(self, locator: DirectoryLocator) -> list[Session]:
        responses = load_api_responses(self.get_base_path() / "logs")

        sessions = []
        for entry in _visible_entries(locator.path):
            session_id = entry.get("sessionId")
            if not isinstance(session_id, str) or not session_id:
                continue
            session_file = locator.path / f"{session_id}.json"
            data = read_json(session_file)
            if not isinstance(data, dict):
                continue

            created = parse_timestamp(entry.get("dateCreated"))
            if not created:
                created, _ = file_times(session_file)
            messages = parse_history(data, responses.get(session_id, []), created)
            if not messages:
                continue

            modified = int(session_file.stat().st_mtime * 1000)
            sessions.append(Session(
                id=session_id,
                title=session_title(entry, messages),
                description=f"{len(messages)} messages",
                timestamp=created,
                last_updated_at=max(created, modified),
                messages=messages,
                source=self.name,
            ))

        sessions.sort(key=lambda s: s.timestamp, reverse=True)
        return sessions


def _visible_entries(ws_dir: Path) -> list[dict]:
    index = read_json(ws_dir / "sessions.json")
    if not isinstance(index, list):
        return []
    return [e for e in index if isinstance(e, dict) and not e.get("hidden")]


def session_title(entry: dict, messages: list[Message]) -> str:
    title = entry.get("title")
    if isinstance(title, str) and title.strip():
        return truncate_title(title)
    return derive_title(messages, "Kiro Session")


def _content_text(content) -> str:
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    return "\n".join(
        part["text"] for part in content
        if isinstance(part, dict) and part.get("type") in ("text", "mention")
        and isinstance(part.get("text"), str)
    )


def parse_history(data: dict, full_responses: list[str], created: int = None) -> list[Message]:
    """Convert a session history, swapping in full replies in order."""
    messages = []
    remaining = iter(full_responses)
    ts = created or now_ms()

    history = data.get("history")
    if not isinstance(history, list):
        return []

    for item in history:
        msg = item.get("message") if isinstance(item, dict) else None
        if not isinstance(msg, dict):
            continue
        role = msg.get("role")
        if role not in ("user", "assistant"):
            continue

        text = None
        if role == "assistant":
            text = next(remaining, None)
        if text is None:
            text = _content_text(msg.get("content"))
        text = text.strip()
        if text:
            messages.append(Message(role=role, content=text, timestamp=ts))
    return messages


def find_api_logs(logs_dir: Path) -> list[Path]:
    """Locate ``logs/*/window*/exthost/output_logging_*/*q-chat-api-log.log``."""
    if not logs_dir.is_dir():
        return []
    return sorted(
        p for p in logs_dir.glob(f"*/window*/exthost/output_logging_*/*{API_LOG_SUFFIX}")
        if p.is_file()
    )


def is_classifier_reply(text: str) -> bool:
    cleaned = _JSON_FENCE.sub("", text.strip()).strip()
    if not (cleaned.startswith("{") and cleaned.endswith("}")):
        return False
    try:
        obj = json.loads(cleaned)
    except json.JSONDecodeError:
        return False
    return isinstance(obj, dict) and all(k in obj for k in CLASSIFIER_KEYS)


def parse_api_log(text: str, result: dict[str, list[str]]):
    """Collect full replies per conversation from one API log.

    Each line is a log prefix followed by a JSON object. A request names the
    conversation; the responses that follow belong to it.
    """
    conversation = ""
    for line in text.splitlines():
        start = line.find("{")
        if start < 0:
            continue
        try:
            data = json.loads(line[start:])
        except json.JSONDecodeError:
            continue
        if not isinstance(data, dict):
            continue

        request = data.get("request")
        if isinstance(request, dict):
            state = request.get("conversationState")
            if isinstance(state, dict) and state.get("conversationId"):
                conversation = state["conversationId"]

        response = data.get("response")
        if isinstance(response, dict) and conversation:
            full = response.get("fullResponse")
            if not isinstance(full, str) or not full or is_classifier_reply(full):
                continue
            result.setdefault(conversation, []).append(full)


def load_api_responses(logs_dir: Path) -> dict[str, list[str]]:
    result: dict[str, list[str]] = {}
    for log_file in find_api_logs(logs_dir):
        try:
            parse_api_log(log_file.read_text(encoding="utf-8", errors="replace"), result)
        except OSError as e:
            logger.debug("Cannot read %s: %s", log_file, e)
    return result
