"""Core data models for waylog."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union


@dataclass
class Message:
    """A single message within a chat session."""

    role: str  # "user" | "assistant" | "system"
    content: str
    timestamp: Optional[int] = None  # epoch millis
    metadata: dict = field(default_factory=dict)  # model, tokens, thinking, tool_calls, todos


@dataclass
class Session:
    """A single chat conversation from one source.

    ``timestamp`` is the stable creation time and drives the artifact
    filename. ``loaded`` is False for metadata-only sessions whose messages
    still have to be fetched with ``fetch_content``.
    """

    id: str
    title: str
    timestamp: int  # epoch millis
    source: str
    description: str = ""
    last_updated_at: Optional[int] = None
    messages: list[Message] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)
    loaded: bool = True

    @property
    def message_count(self) -> int:
        return len(self.messages)


# ── Locators ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class DatabaseLocator:
    """A workspace backed by a SQLite key-value/table store."""

    db_path: Path


@dataclass(frozen=True)
class DirectoryLocator:
    """A workspace backed by a directory of session files."""

    path: Path


@dataclass(frozen=True)
class TaskFolderLocator:
    """A Cline-family extension dir filtered to one workspace path."""

    extension_dir: Path
    workspace_path: str


@dataclass(frozen=True)
class EventLogLocator:
    """A tree of event logs filtered to one working directory."""

    root: Path
    cwd: str


Locator = Union[DatabaseLocator, DirectoryLocator, TaskFolderLocator, EventLogLocator]


@dataclass
class Workspace:
    """A project/folder that contains chat sessions for one source."""

    id: str
    name: str
    path: str  # project root used for matching
    locator: Locator
    last_modified: int  # epoch millis
    session_count: int
    source: str
