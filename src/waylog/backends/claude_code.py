"""Claude chat history backend.

Reads the append-only event logs under ~/.claude/projects/. Each project
directory is named after the encoded working directory and holds one
``<session>.jsonl`` per conversation (CLI and VS Code extension alike).

JSONL entry types:
- "user": User prompts. Content is a string or an array of blocks; arrays
  made only of tool_result blocks carry no prompt text and are skipped.
- "assistant": AI responses. Text blocks become the message; thinking and
  tool_use blocks are kept in metadata.
- Error events (``isApiErrorMessage``) become "Error: ..." assistant messages.
- Everything else ("summary", "file-history-snapshot", "progress", ...) is
  skipped.
"""

import logging
import re
from pathlib import Path
from typing import Optional

from ..config import get_claude_code_path
from ..core import DirectoryLocator, Message, Session, Workspace
from ..normalize import (
    derive_title,
    file_times,
    iter_json_lines,
    read_prefix,
    resolve_timestamp,
    strip_tags,
)
from ..provider import ChatProvider, finalize_workspaces

logger = logging.getLogger(__name__)

# IDE state and injected reminders are not part of what the user typed
USER_NOISE_TAGS = ("ide_[a-z_]+", "system-reminder")

SIDECHAIN_MARKER = '"isSidechain":true'
SIDECHAIN_PEEK = 1000
CWD_PEEK = 16 * 1024

_COMMAND_NAME = re.compile(r"<command-name>(.*?)</command-name>", re.DOTALL)
_COMMAND_STDOUT = re.compile(r"<local-command-stdout>(.*?)</local-command-stdout>", re.DOTALL)


class ClaudeCodeProvider(ChatProvider):
    """Provider for Claude (CLI and VS Code extension) chat history."""

    key = "claude"
    name = "Claude"
    description = "Chat history from Claude CLI and VS Code extension"

    def get_base_path(self) -> Path:
        return get_claude_code_path()

    def is_available(self) -> bool:
        return self.get_base_path().is_dir()

    def list_workspaces(self) -> list[Workspace]:
        base = self.get_base_path()
        if not base.is_dir():
            return []

        workspaces = []
        for project_dir in base.iterdir():
            if not project_dir.is_dir():
                continue

            files = _session_files(project_dir)
            if not files:
                continue

            # Newest first; an empty or truncated latest log falls through
            files.sort(key=lambda p: p.stat().st_mtime, reverse=True)
            cwd = None
            for path in files:
                cwd = extract_cwd(path)
                if cwd:
                    break

            workspaces.append(Workspace(
                id=project_dir.name,
                name=Path(cwd).name if cwd else project_dir.name,
                path=cwd or project_dir.name,
                locator=DirectoryLocator(project_dir),
                last_modified=int(files[0].stat().st_mtime * 1000),
                session_count=len(files),
                source=self.name,
            ))

        logger.debug("Claude: %d project directories with sessions", len(workspaces))
        return finalize_workspaces(workspaces)

    def list_sessions(self, locator: DirectoryLocator) -> list[Session]:
        sessions = []
        for path in _session_files(locator.path):
            if is_sidechain(read_prefix(path, SIDECHAIN_PEEK)):
                continue
            try:
                text = path.read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                logger.debug("Cannot read %s: %s", path, e)
                continue

            created, _ = file_times(path)
            session = parse_session(text, path.stem, created, self.name)
            if session:
                sessions.append(session)

        sessions.sort(key=lambda s: s.timestamp, reverse=True)
        return sessions


# ── Parsing ──────────────────────────────────────────────────────


def _session_files(project_dir: Path) -> list[Path]:
    try:
        return [p for p in project_dir.glob("*.jsonl") if p.is_file() and p.stat().st_size > 0]
    except OSError as e:
        logger.debug("Cannot list %s: %s", project_dir, e)
        return []


def extract_cwd(path: Path) -> Optional[str]:
    """Return the first ``cwd`` recorded in the log's leading 16 KiB."""
    for entry in iter_json_lines(read_prefix(path, CWD_PEEK)):
        if entry.get("cwd"):
            return entry["cwd"]
    return None


def parse_session(text: str, file_stem: str, created_ms: int, source: str = "Claude") -> Optional[Session]:
    """Parse a whole JSONL log into a session, or None if it has no messages."""
    session_id = ""
    messages = []

    for entry in iter_json_lines(text):
        if not session_id and entry.get("sessionId"):
            session_id = entry["sessionId"]
        if entry.get("type") not in ("user", "assistant"):
            continue
        msg = parse_entry(entry, created_ms)
        if msg:
            messages.append(msg)

    if not messages:
        return None

    session_id = session_id or file_stem
    started = messages[0].timestamp or created_ms
    return Session(
        id=session_id,
        title=derive_title(messages, session_id),
        description=f"Chat ({len(messages)} msg)",
        timestamp=started,
        last_updated_at=max(started, messages[-1].timestamp or started),
        messages=messages,
        source=source,
    )


def parse_entry(entry: dict, default_ts: int = 0) -> Optional[Message]:
    """Convert one user/assistant event into a message, or None to skip it."""
    role = entry.get("type")
    if role not in ("user", "assistant"):
        return None

    msg_data = entry.get("message")
    metadata = {}
    content = ""

    if isinstance(msg_data, dict):
        content = _collect_blocks(msg_data.get("content"), metadata)
        if msg_data.get("model"):
            metadata["model"] = msg_data["model"]
        usage = msg_data.get("usage")
        if isinstance(usage, dict):
            metadata["tokens"] = {
                "input": usage.get("input_tokens") or 0,
                "output": usage.get("output_tokens") or 0,
                "cached": usage.get("cache_read_input_tokens") or 0,
            }

    error = entry.get("error") if entry.get("isApiErrorMessage") or not msg_data else None
    if not content.strip() and error:
        content = f"Error: {error}"

    if role == "user":
        content = strip_tags(content, USER_NOISE_TAGS).strip()
        if not content:
            return None
        content = format_command_tags(content)

    if not content.strip():
        return None

    if entry.get("uuid"):
        metadata["id"] = entry["uuid"]

    return Message(
        role=role,
        content=content,
        timestamp=resolve_timestamp(entry.get("timestamp"), default_ts or None),
        metadata=metadata,
    )


def _collect_blocks(content, metadata: dict) -> str:
    """Join text blocks; record tool names, thinking and todos in metadata."""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""

    texts = []
    for block in content:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "text":
            text = block.get("text")
            if isinstance(text, str):
                texts.append(text)
        elif block_type == "thinking":
            thought = block.get("thinking")
            if isinstance(thought, str) and thought.strip():
                metadata.setdefault("thinking", []).append(thought.strip())
        elif block_type == "tool_use":
            name = block.get("name") or "unknown"
            metadata.setdefault("tool_calls", []).append(name)
            tool_input = block.get("input")
            if name == "TodoWrite" and isinstance(tool_input, dict):
                todos = tool_input.get("todos")
                if isinstance(todos, list):
                    metadata["todos"] = [t for t in todos if isinstance(t, dict)]
    return "\n".join(texts)


def format_command_tags(content: str) -> str:
    """Render slash-command echoes the way the terminal shows them."""
    match = _COMMAND_NAME.search(content)
    if match:
        cmd = match.group(1).strip()
        if cmd.startswith("/"):
            return f"> {cmd}"

    match = _COMMAND_STDOUT.search(content)
    if match:
        return f"> ⎿ {match.group(1).strip()}"

    return content


def is_sidechain(prefix: str) -> bool:
    """Helper-agent logs mark themselves on their first event."""
    return SIDECHAIN_MARKER in prefix
