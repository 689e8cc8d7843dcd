"""Shared helpers for turning source records into canonical messages."""

import json
import logging
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .core import Message

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 50

# Claude renders local command output as "> ⎿ ..."; never a real prompt.
NOISE_PREFIXES = ("> ⎿",)


def now_ms() -> int:
    return int(time.time() * 1000)


# ── Timestamps ───────────────────────────────────────────────────


def parse_timestamp(value) -> Optional[int]:
    """Convert an ISO-8601 string or epoch number to epoch millis."""
    if value is None or value == "" or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        try:
            number = float(text)
        except ValueError:
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            try:
                parsed = datetime.fromisoformat(text)
            except ValueError:
                return None
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return int(parsed.timestamp() * 1000)

    if number <= 0:
        return None
    # Values below ~2001 in millis are epoch seconds
    if number < 1e12:
        number *= 1000
    return int(number)


def resolve_timestamp(
    explicit=None,
    session_created: Optional[int] = None,
    file_mtime: Optional[int] = None,
) -> int:
    """Pick a message timestamp: explicit, session creation, file mtime, now."""
    for candidate in (parse_timestamp(explicit), session_created, file_mtime):
        if candidate:
            return candidate
    return now_ms()


def file_times(path: Path) -> tuple[int, int]:
    """Return (created, modified) epoch millis for a path.

    Creation time uses st_birthtime where the platform exposes it and
    falls back to the modification time.
    """
    stat = path.stat()
    modified = int(stat.st_mtime * 1000)
    birth = getattr(stat, "st_birthtime", None)
    created = int(birth * 1000) if birth else modified
    return created, modified


# ── File access ──────────────────────────────────────────────────


def read_json(path: Path):
    """Read a JSON file, returning None when missing or malformed."""
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
        logger.debug("Cannot read JSON %s: %s", path, e)
        return None


def read_prefix(path: Path, size: int = 16 * 1024) -> str:
    """Read at most ``size`` bytes from the start of a file."""
    try:
        with path.open("rb") as f:
            data = f.read(size)
    except OSError as e:
        logger.debug("Cannot read %s: %s", path, e)
        return ""
    return data.decode("utf-8", errors="ignore")


def iter_json_lines(text: str) -> Iterator[dict]:
    """Yield each JSON object in a JSONL document, skipping bad lines."""
    for line_num, line in enumerate(text.splitlines(), 1):
        line = line.strip()
        if not line:
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError as e:
            logger.debug("Bad JSON at line %d: %s", line_num, e)
            continue
        if isinstance(entry, dict):
            yield entry


# ── Rich text ────────────────────────────────────────────────────


def flatten_rich_text(nodes) -> str:
    """Flatten a tree of rich-text nodes into plain text.

    Adjacent text leaves are concatenated; nested groups are separated by
    newlines. Document order is preserved.
    """
    if not isinstance(nodes, list):
        return ""

    parts = []
    run = []
    for node in nodes:
        if not isinstance(node, dict):
            continue
        text = node.get("text")
        if isinstance(text, str) and text:
            run.append(text)
        elif isinstance(node.get("children"), list):
            if run:
                parts.append("".join(run))
                run = []
            group = flatten_rich_text(node["children"])
            if group:
                parts.append(group)
    if run:
        parts.append("".join(run))

    return "\n".join(parts).strip()


def extract_rich_text(raw) -> str:
    """Flatten a Lexical JSON document (``{"root": {"children": [...]}}``)."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            return ""
    if not isinstance(raw, dict):
        return ""
    root = raw.get("root")
    if not isinstance(root, dict):
        return ""
    return flatten_rich_text(root.get("children"))


# ── Noise stripping ──────────────────────────────────────────────


def strip_tags(text: str, tags: Iterable[str]) -> str:
    """Delete every ``<tag>...</tag>`` region for the given tag names.

    Tag names may be regex fragments (``ide_[a-z_]+``); the closing tag must
    repeat the opening name.
    """
    for tag in tags:
        pattern = rf"<({tag})(?:\s[^<>]*)?>.*?</\1>"
        text = re.sub(pattern, "", text, flags=re.DOTALL)
    return text


def clean_content(text: str, tags: Iterable[str], error: Optional[str] = None) -> Optional[str]:
    """Strip noise regions from a message body.

    Returns None when nothing but noise was left, so the caller drops the
    message. When the record carried an error signal, an error message is
    synthesized instead.
    """
    cleaned = strip_tags(text or "", tags).strip()
    if cleaned:
        return cleaned
    if error:
        return f"Error: {error}"
    return None


# ── Message shaping ──────────────────────────────────────────────


def merge_assistant_runs(messages: list[Message]) -> list[Message]:
    """Merge adjacent assistant records into one message per turn.

    Contents are joined with a blank line and the merged message keeps the
    first record's timestamp. Any other role flushes the pending turn.
    """
    merged: list[Message] = []
    pending: Optional[Message] = None

    for msg in messages:
        if msg.role == "assistant":
            if pending is None:
                pending = Message(
                    role="assistant",
                    content=msg.content,
                    timestamp=msg.timestamp,
                    metadata=dict(msg.metadata),
                )
            else:
                pending.content += "\n\n" + msg.content
                for key, value in msg.metadata.items():
                    pending.metadata.setdefault(key, value)
            continue

        if pending is not None:
            pending.content = pending.content.strip()
            merged.append(pending)
            pending = None
        merged.append(msg)

    if pending is not None:
        pending.content = pending.content.strip()
        merged.append(pending)

    return merged


def truncate_title(text: str, max_len: int = TITLE_MAX_LENGTH) -> str:
    return " ".join(re.split(r"\r\n?|\n", text)).strip()[:max_len]


def derive_title(messages: list[Message], fallback: str) -> str:
    """Title a session after its first real user message."""
    for msg in messages:
        if msg.role != "user":
            continue
        text = msg.content.strip()
        if not text or text.startswith(NOISE_PREFIXES):
            continue
        title = truncate_title(text)
        if title:
            return title
    return fallback
