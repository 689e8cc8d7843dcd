"""Cursor IDE chat history backend.

Workspace databases (``workspaceStorage/*/state.vscdb``) hold the legacy chat
tabs and composer metadata. Composer message bubbles live in the global
database's ``cursorDiskKV`` table and are only read on demand.
All database access is read-only.
"""

import json
import logging
from pathlib import Path
from typing import Optional

from ..config import get_cursor_global_path, get_cursor_workspace_path
from ..core import DatabaseLocator, Message, Session, Workspace
from ..normalize import (
    extract_rich_text,
    merge_assistant_runs,
    now_ms,
    parse_timestamp,
    resolve_timestamp,
    truncate_title,
)
from ..provider import LazyContentProvider, finalize_workspaces
from .vscdb import fallback_name, query_json, query_prefix, resolve_workspace_details

logger = logging.getLogger(__name__)

CHAT_DATA_KEY = "workbench.panel.aichat.view.aichat.chatdata"
COMPOSER_DATA_KEY = "composer.composerData"
UNTITLED_COMPOSER = "Untitled Composer"
ACTIVE_THRESHOLD_MS = 5000


class CursorProvider(LazyContentProvider):
    """Provider for Cursor IDE chat history (legacy chat and composer/agent)."""

    key = "cursor"
    name = "Cursor"
    description = "From Cursor IDE (Chat & Composer/Agent)"

    def get_base_path(self) -> Path:
        return get_cursor_workspace_path()

    def get_global_db_path(self) -> Path:
        return get_cursor_global_path()

    def is_available(self) -> bool:
        return self.get_base_path().is_dir()

    def list_workspaces(self) -> list[Workspace]:
        base = self.get_base_path()
        if not base.is_dir():
            return []

        workspaces = []
        for ws_dir in base.iterdir():
            db_path = ws_dir / "state.vscdb"
            if not db_path.is_file():
                continue

            count = self._count_sessions(db_path)
            if count == 0:
                continue

            name, project_path = resolve_workspace_details(ws_dir)
            workspaces.append(Workspace(
                id=ws_dir.name,
                name=name or fallback_name(ws_dir),
                path=project_path or str(db_path),
                locator=DatabaseLocator(db_path),
                last_modified=int(db_path.stat().st_mtime * 1000),
                session_count=count,
                source=self.name,
            ))

        logger.debug("Cursor: %d workspaces with chat data", len(workspaces))
        return finalize_workspaces(workspaces)

    def list_sessions(self, locator: DatabaseLocator) -> list[Session]:
        """Return legacy tabs (fully loaded) and composers (metadata only)."""
        sessions = []

        chat_data = query_json(locator.db_path, "ItemTable", CHAT_DATA_KEY)
        if isinstance(chat_data, dict):
            for tab in chat_data.get("tabs") or []:
                if not isinstance(tab, dict):
                    continue
                session = parse_legacy_tab(tab, self.name)
                if session:
                    sessions.append(session)

        composer_data = query_json(locator.db_path, "ItemTable", COMPOSER_DATA_KEY)
        if isinstance(composer_data, dict):
            composers = composer_data.get("allComposers") or []
            sessions.extend(parse_composers(composers, self.name))

        sessions.sort(key=lambda s: s.timestamp, reverse=True)
        return sessions

    def fetch_content(self, session_id: str, locator: DatabaseLocator) -> list[Message]:
        """Read the bubbles of one composer from the global database."""
        composer_data = query_json(locator.db_path, "ItemTable", COMPOSER_DATA_KEY)
        if not isinstance(composer_data, dict):
            return []
        composer = next(
            (c for c in composer_data.get("allComposers") or []
             if isinstance(c, dict) and c.get("composerId") == session_id),
            None,
        )
        if composer is None:
            logger.debug("Composer %s not found in %s", session_id, locator.db_path)
            return []

        global_db = self.get_global_db_path()
        if not global_db.is_file():
            return []

        bubbles = []
        for raw in query_prefix(global_db, "cursorDiskKV", f"bubbleId:{session_id}:"):
            try:
                bubble = json.loads(raw)
            except json.JSONDecodeError as e:
                logger.debug("Skipping corrupt bubble in %s: %s", session_id, e)
                continue
            if isinstance(bubble, dict):
                bubbles.append(bubble)

        messages = parse_bubbles(bubbles, parse_timestamp(composer.get("createdAt")))
        logger.debug("Cursor: fetched %d messages for composer %s", len(messages), session_id)
        return messages

    # ── Private helpers ──────────────────────────────────────────────

    def _count_sessions(self, db_path: Path) -> int:
        count = 0
        chat_data = query_json(db_path, "ItemTable", CHAT_DATA_KEY)
        if isinstance(chat_data, dict):
            count += sum(
                1 for tab in chat_data.get("tabs") or []
                if isinstance(tab, dict) and tab.get("bubbles")
            )
        composer_data = query_json(db_path, "ItemTable", COMPOSER_DATA_KEY)
        if isinstance(composer_data, dict):
            count += sum(
                1 for c in composer_data.get("allComposers") or []
                if isinstance(c, dict) and is_valid_composer(c)
            )
        return count


# ── Parsers ──────────────────────────────────────────────────────


def _is_user(bubble: dict) -> bool:
    return bubble.get("type") in (1, "user")


def bubble_text(bubble: dict) -> str:
    """Plain text of a bubble, falling back to its Lexical rich text."""
    text = bubble.get("text")
    if not isinstance(text, str):
        text = ""
    if not text and bubble.get("richText"):
        text = extract_rich_text(bubble["richText"])
    return text.strip()


def parse_bubbles(bubbles: list[dict], fallback_ts: Optional[int] = None) -> list[Message]:
    """Convert composer bubbles into messages, one assistant message per turn.

    Bubbles without ``createdAt`` take ``fallback_ts``, the composer's
    creation time.
    """
    ordered = sorted(bubbles, key=lambda b: parse_timestamp(b.get("createdAt")) or 0)

    messages = []
    for bubble in ordered:
        content = bubble_text(bubble)
        # Tool-call and thinking bubbles carry no text
        if not content:
            continue
        messages.append(Message(
            role="user" if _is_user(bubble) else "assistant",
            content=content,
            timestamp=resolve_timestamp(bubble.get("createdAt"), fallback_ts),
        ))
    return merge_assistant_runs(messages)


def is_valid_composer(comp: dict) -> bool:
    """Whether a composer has enough activity to be worth exporting."""
    if not comp.get("composerId"):
        return False

    has_custom_name = bool(comp.get("name")) and comp.get("name") != UNTITLED_COMPOSER
    has_subtitle = bool(comp.get("subtitle"))
    has_code_changes = (comp.get("totalLinesAdded") or 0) > 0 or (comp.get("totalLinesRemoved") or 0) > 0
    created = parse_timestamp(comp.get("createdAt")) or 0
    last_update = parse_timestamp(comp.get("lastUpdatedAt")) or created
    is_active = last_update - created > ACTIVE_THRESHOLD_MS

    return has_custom_name or has_subtitle or has_code_changes or is_active


def parse_composers(composers: list, source: str) -> list[Session]:
    """Build metadata-only sessions for valid composers."""
    sessions = []
    for comp in composers:
        if not isinstance(comp, dict) or not is_valid_composer(comp):
            continue

        name, subtitle = comp.get("name"), comp.get("subtitle")
        title = truncate_title(name) if isinstance(name, str) else ""
        if (not title or title == UNTITLED_COMPOSER) and isinstance(subtitle, str):
            title = truncate_title(subtitle)
        title = title or UNTITLED_COMPOSER

        updated = parse_timestamp(comp.get("lastUpdatedAt"))
        created = parse_timestamp(comp.get("createdAt")) or updated or now_ms()
        sessions.append(Session(
            id=comp["composerId"],
            title=title,
            description=f"{comp.get('unifiedMode') or 'Agent'} Mode",
            timestamp=created,
            last_updated_at=updated or created,
            source=source,
            loaded=False,
        ))
    return sessions


def parse_legacy_tab_messages(tab: dict, fallback_ts: int = None) -> list[Message]:
    """Convert a legacy chat tab's bubbles, in stored order."""
    messages = []
    for bubble in tab.get("bubbles") or []:
        if not isinstance(bubble, dict):
            continue
        text = bubble.get("text") or bubble.get("modelResponse")
        if not isinstance(text, str) or not text:
            continue
        messages.append(Message(
            role="user" if _is_user(bubble) else "assistant",
            content=text,
            timestamp=parse_timestamp(bubble.get("createdAt")) or fallback_ts,
            metadata={"model": bubble.get("modelType") or "unknown", "type": "legacy"},
        ))
    return messages


def legacy_tab_created(tab: dict):
    """Stable creation time of a legacy tab.

    ``lastUpdatedAt`` moves on every reply, so the earliest bubble time wins,
    then the tab's own creation time.
    """
    stamps = [
        ts for ts in (
            parse_timestamp(b.get("createdAt"))
            for b in tab.get("bubbles") or [] if isinstance(b, dict)
        ) if ts
    ]
    if stamps:
        return min(stamps)
    return parse_timestamp(tab.get("createdAt")) or parse_timestamp(tab.get("lastUpdatedAt"))


def _tab_title(tab: dict, messages: list[Message]) -> str:
    chat_title = tab.get("chatTitle")
    if isinstance(chat_title, str) and chat_title.strip():
        return truncate_title(chat_title)
    return truncate_title(messages[0].content) or "Chat"


def parse_legacy_tab(tab: dict, source: str):
    """Build a fully loaded session from a legacy chat tab, or None if empty."""
    created = legacy_tab_created(tab) or now_ms()
    messages = parse_legacy_tab_messages(tab, created)
    if not messages:
        return None

    tab_id = tab.get("id") or tab.get("tabId")
    if not tab_id:
        return None

    return Session(
        id=tab_id,
        title=_tab_title(tab, messages),
        description=f"Chat ({len(messages)} msg)",
        timestamp=created,
        last_updated_at=parse_timestamp(tab.get("lastUpdatedAt")) or created,
        messages=messages,
        source=source,
    )
