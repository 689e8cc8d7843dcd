"""OpenAI Codex chat history backend.

Codex writes one JSONL rollout per session under ~/.codex/sessions/
(nested by date). Sessions are grouped into workspaces by the ``cwd`` the
rollout records in its ``turn_context`` or ``session_meta`` events.
"""

import logging
from pathlib import Path
from typing import Optional

from ..config import get_codex_path
from ..core import EventLogLocator, Message, Session, Workspace
from ..normalize import (
    derive_title,
    file_times,
    iter_json_lines,
    resolve_timestamp,
)
from ..provider import ChatProvider, finalize_workspaces

logger = logging.getLogger(__name__)

# Injected prompt scaffolding, not conversation
SKIPPED_MARKERS = ("<INSTRUCTIONS>", "<environment_context>")


class CodexProvider(ChatProvider):
    """Provider for OpenAI Codex CLI / extension rollouts."""

    key = "codex"
    name = "OpenAI Codex"
    description = "Chat history from OpenAI Codex CLI and extension"

    def get_base_path(self) -> Path:
        return get_codex_path()

    def is_available(self) -> bool:
        return self.get_base_path().is_dir()

    def list_workspaces(self) -> list[Workspace]:
        root = self.get_base_path()
        if not root.is_dir():
            return []

        grouped: dict[str, Workspace] = {}
        for path in _rollout_files(root):
            events = _read_events(path)
            cwd = find_cwd(events)
            if not cwd:
                continue
            if not any(_has_message(e) for e in events):
                continue

            mtime = int(path.stat().st_mtime * 1000)
            ws = grouped.get(cwd)
            if ws is None:
                grouped[cwd] = Workspace(
                    id=f"codex:{cwd}",
                    name=f"Codex: {Path(cwd).name}",
                    path=cwd,
                    locator=EventLogLocator(root, cwd),
                    last_modified=mtime,
                    session_count=1,
                    source=self.name,
                )
            else:
                ws.session_count += 1
                ws.last_modified = max(ws.last_modified, mtime)

        return finalize_workspaces(list(grouped.values()))

    def list_sessions(self, locator: EventLogLocator) -> list[Session]:
        sessions = []
        for path in _rollout_files(locator.root):
            events = _read_events(path)
            if find_cwd(events) != locator.cwd:
                continue

            created, modified = file_times(path)
            messages = parse_events(events, created)
            if not messages:
                continue

            started = messages[0].timestamp or created
            sessions.append(Session(
                id=path.name,
                title=derive_title(messages, "Codex Session"),
                description=f"{len(messages)} messages",
                timestamp=started,
                last_updated_at=max(started, modified),
                messages=messages,
                source=self.name,
            ))

        sessions.sort(key=lambda s: s.timestamp, reverse=True)
        return sessions


def _rollout_files(root: Path) -> list[Path]:
    try:
        return sorted(p for p in root.rglob("*.jsonl") if p.is_file())
    except OSError as e:
        logger.debug("Cannot scan %s: %s", root, e)
        return []


def _read_events(path: Path) -> list[dict]:
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.debug("Cannot read %s: %s", path, e)
        return []
    return list(iter_json_lines(text))


def _payload(event: dict) -> dict:
    payload = event.get("payload")
    return payload if isinstance(payload, dict) else {}


def _has_message(event: dict) -> bool:
    kind = event.get("type")
    ptype = _payload(event).get("type")
    return (kind == "response_item" and ptype == "message") or (
        kind == "event_msg" and ptype in ("user_message", "error")
    )


def find_cwd(events: list[dict]) -> Optional[str]:
    """Working directory recorded by the rollout, if any."""
    for event in events:
        if event.get("type") in ("turn_context", "session_meta"):
            cwd = _payload(event).get("cwd")
            if cwd:
                return cwd
    return None


def _message_text(payload: dict) -> str:
    content = payload.get("content")
    if not isinstance(content, list):
        return ""

    parts = []
    for part in content:
        if not isinstance(part, dict) or part.get("type") not in ("input_text", "output_text", "text"):
            continue
        text = part.get("text")
        if not isinstance(text, str) or any(marker in text for marker in SKIPPED_MARKERS):
            continue
        parts.append(text)
    return "".join(parts).strip()


def parse_events(events: list[dict], created_ms: int) -> list[Message]:
    """Convert rollout events into messages in file order."""
    messages = []
    seen_user = set()

    for event in events:
        payload = _payload(event)
        ptype = payload.get("type")
        ts = resolve_timestamp(event.get("timestamp"), created_ms)

        if event.get("type") == "response_item" and ptype == "message":
            role = payload.get("role")
            if role not in ("user", "assistant"):
                continue
            text = _message_text(payload)
            if not text:
                continue
            if role == "user":
                seen_user.add(text)
            messages.append(Message(role=role, content=text, timestamp=ts))

        elif event.get("type") == "event_msg" and ptype == "user_message":
            # The same prompt is often echoed as a response_item
            text = payload.get("message")
            text = text.strip() if isinstance(text, str) else ""
            if not text or text in seen_user:
                continue
            seen_user.add(text)
            messages.append(Message(role="user", content=text, timestamp=ts))

        elif event.get("type") == "event_msg" and ptype == "error":
            error = payload.get("message") or "Unknown Error"
            messages.append(Message(
                role="assistant",
                content=f"⚠️ **Codex Error**: {error}",
                timestamp=ts,
            ))

    return messages
