"""Render sessions as Markdown archive files.

An archive file is a header followed by one block per message. Every block
ends with a ``---`` rule, so the number of ``\\n---\\n`` separators in a file
is the number of messages it already holds.
"""

import re
from datetime import datetime, timezone
from typing import Optional

from .core import Message, Session

SEPARATOR = "\n---\n"
SLUG_MAX_LENGTH = 50
FILENAME_TITLE_MAX_LENGTH = 50
DEFAULT_ROLE_LABEL = "Assistant"

_RULE_LINE = re.compile(r"^---$", re.MULTILINE)
_LINE_BREAKS = re.compile(r"\r\n?|\n")
_UNSAFE_TITLE_CHARS = re.compile(r"[^a-zA-Z0-9_一-龥]")


# ── Header ───────────────────────────────────────────────────────


def format_export_date(now: Optional[datetime] = None) -> str:
    """Format a local time like ``12/29/2025 at 09:45:49 GMT+8``."""
    now = now or datetime.now().astimezone()
    offset = now.utcoffset()
    minutes = int(offset.total_seconds() // 60) if offset else 0
    sign = "+" if minutes >= 0 else "-"
    hours, mins = divmod(abs(minutes), 60)
    tz = f"GMT{sign}{hours}" + (f":{mins}" if mins else "")
    return f"{now.strftime('%m/%d/%Y')} at {now.strftime('%H:%M:%S')} {tz}"


def format_header(session: Session, now: Optional[datetime] = None) -> str:
    # The title must stay on the heading line.
    title = " ".join(_LINE_BREAKS.split(session.title)).strip()
    return (
        f"# {title}\n"
        f"_Exported on {format_export_date(now)} from {session.source} via WayLog_\n\n"
    )


# ── Message blocks ───────────────────────────────────────────────


def escape_separators(content: str) -> str:
    """Rewrite bare ``---`` lines so content never adds a separator."""
    content = _LINE_BREAKS.sub("\n", content)
    return _RULE_LINE.sub("- - -", content)


def render_details(msg: Message) -> str:
    """Thinking, tool calls and plan progress kept in a message's metadata."""
    parts = []
    thinking = msg.metadata.get("thinking")
    if thinking:
        body = "\n\n".join(thinking)
        parts.append(f"<details>\n<summary>Thinking</summary>\n\n{body}\n\n</details>")

    tool_calls = msg.metadata.get("tool_calls")
    if tool_calls:
        parts.append("_Tools: " + ", ".join(str(t) for t in tool_calls) + "_")

    todos = msg.metadata.get("todos")
    if todos:
        lines = []
        for todo in todos:
            status = todo.get("status")
            mark = "x" if status == "completed" else ("~" if status == "in_progress" else " ")
            lines.append(f"- [{mark}] {todo.get('content', '')}")
        parts.append("**Plan**\n\n" + "\n".join(lines))

    return "\n\n".join(parts)


def format_message(msg: Message, source: str = DEFAULT_ROLE_LABEL, include_details: bool = False) -> str:
    """Render one message block, terminated by its separator."""
    label = "User" if msg.role == "user" else source
    content = msg.content
    if include_details:
        details = render_details(msg)
        if details:
            content = f"{content}\n\n{details}"
    return f"\n**{label}**\n\n{escape_separators(content)}\n" + SEPARATOR


def format_messages(messages: list[Message], source: str = DEFAULT_ROLE_LABEL, include_details: bool = False) -> str:
    """Render message blocks joined the way archive files store them."""
    return "\n".join(format_message(m, source, include_details) for m in messages)


def session_to_markdown(session: Session, include_details: bool = False, now: Optional[datetime] = None) -> str:
    """Render a complete archive file for a session."""
    return format_header(session, now) + format_messages(session.messages, session.source, include_details)


def count_messages(text: str) -> int:
    """Number of messages an archive file holds."""
    return text.count(SEPARATOR)


# ── Filenames ────────────────────────────────────────────────────


def slugify(text: str) -> str:
    """Lowercase letters and digits, everything else collapsed to ``-``."""
    chars = [c.lower() if c.isalnum() else "-" for c in text[:SLUG_MAX_LENGTH]]
    slug = re.sub(r"-+", "-", "".join(chars)).strip("-")
    return slug or "new-chat"


def _utc(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def artifact_filename(session: Session) -> str:
    """Deterministic archive filename for a session.

    Derived from the creation timestamp only, never from the last update,
    so later syncs find the same file again.
    """
    created = _utc(session.timestamp)

    if session.source.lower() == "claude":
        first_user = next((m for m in session.messages if m.role == "user"), None)
        slug = slugify(first_user.content) if first_user else (session.id or "new-chat")
        return f"{created.strftime('%Y-%m-%d_%H-%M-%S')}Z-claude-{slug}.md"

    title = _UNSAFE_TITLE_CHARS.sub("_", session.title)[:FILENAME_TITLE_MAX_LENGTH]
    return f"{created.strftime('%Y-%m-%d_%H-%M')}Z-{title}.md"
