"""Alibaba Lingma chat history backend.

Lingma keeps every conversation of every project in one SQLite database.
Full answers are stored encrypted, so only the plaintext summary of each
answer is exported. Because the database carries no project path, the
database is offered as a workspace for each folder open in the host.
"""

import logging
import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Optional

from ..config import get_lingma_db_paths
from ..core import DatabaseLocator, Message, Session, Workspace
from ..normalize import parse_timestamp, truncate_title
from ..provider import ChatProvider, finalize_workspaces
from .vscdb import connect_readonly

logger = logging.getLogger(__name__)

SUMMARY_OFFSET_MS = 100

RECORDS_QUERY = """
    SELECT session_id, request_id, chat_prompt, summary, error_result, gmt_create, extra
    FROM chat_record
    WHERE chat_prompt != ''
    ORDER BY gmt_create ASC
"""


class LingmaProvider(ChatProvider):
    """Provider for Alibaba Lingma (Tongyi Lingma) summaries."""

    key = "lingma"
    name = "Alibaba Lingma"
    description = "Summaries only"

    def __init__(self, open_folders=()):
        self.open_folders = [str(f) for f in open_folders]

    def get_db_path(self) -> Optional[Path]:
        for path in get_lingma_db_paths():
            if path.is_file():
                return path
        return None

    def get_base_path(self) -> Path:
        return self.get_db_path() or get_lingma_db_paths()[0]

    def is_available(self) -> bool:
        return self.get_db_path() is not None

    def list_workspaces(self) -> list[Workspace]:
        db_path = self.get_db_path()
        if db_path is None or not self.open_folders:
            return []

        count = len(read_sessions(db_path, self.name))
        mtime = int(db_path.stat().st_mtime * 1000)
        return finalize_workspaces([
            Workspace(
                id=f"lingma-{folder}",
                name=f"Lingma History ({Path(folder).name})",
                path=folder,
                locator=DatabaseLocator(db_path),
                last_modified=mtime,
                session_count=count,
                source=self.name,
            )
            for folder in self.open_folders
        ])

    def list_sessions(self, locator: DatabaseLocator) -> list[Session]:
        sessions = read_sessions(locator.db_path, self.name)
        sessions.sort(key=lambda s: s.last_updated_at or s.timestamp, reverse=True)
        return sessions


def summary_text(summary, error_result) -> str:
    if summary:
        return str(summary)
    if error_result and error_result != "{}":
        return f"⚠️ Error: {error_result}"
    return "[No summary available]"


def read_sessions(db_path: Path, source: str = "Alibaba Lingma") -> list[Session]:
    """Group chat_record rows into sessions of prompt/summary pairs."""
    try:
        with closing(connect_readonly(db_path)) as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(RECORDS_QUERY).fetchall()
    except (sqlite3.Error, OSError) as e:
        logger.debug("Cannot read chat_record from %s: %s", db_path, e)
        return []

    sessions: dict[str, Session] = {}
    for row in rows:
        session_id = row["session_id"]
        if not session_id:
            continue
        created = parse_timestamp(row["gmt_create"])
        if not created:
            # Archive filenames need a stored creation time
            logger.debug("Skipping Lingma record %s without gmt_create", row["request_id"])
            continue
        prompt = str(row["chat_prompt"] or "") or "Empty Query"

        session = sessions.get(session_id)
        if session is None:
            session = sessions[session_id] = Session(
                id=session_id,
                title=truncate_title(prompt) or "Empty Query",
                description="Summary version (original answer is encrypted)",
                timestamp=created,
                last_updated_at=created,
                source=source,
            )

        session.messages.append(Message(role="user", content=prompt, timestamp=created))
        session.messages.append(Message(
            role="assistant",
            content=summary_text(row["summary"], row["error_result"]),
            timestamp=created + SUMMARY_OFFSET_MS,
        ))
        session.last_updated_at = max(session.last_updated_at, created)

    return list(sessions.values())
