"""Abstract base classes for chat history providers."""

from abc import ABC, abstractmethod
from pathlib import Path

from .core import Locator, Message, Session, Workspace


class ChatProvider(ABC):
    """Base class for chat history sources.

    Each backend (Cursor, Claude, Cline, ...) implements this interface to
    expose its storage as workspaces and sessions. All access is read-only.
    """

    key: str  # registry key: "cursor", "claude", "roo_code", ...
    name: str  # display name written into artifacts: "Cursor", "Roo Code", ...
    description: str = ""

    @abstractmethod
    def get_base_path(self) -> Path:
        """Return the root directory where this source stores chat data."""
        ...

    @abstractmethod
    def is_available(self) -> bool:
        """Return True if this source's data exists on this machine."""
        ...

    @abstractmethod
    def list_workspaces(self) -> list[Workspace]:
        """Return workspaces with at least one non-empty session, newest first."""
        ...

    @abstractmethod
    def list_sessions(self, locator: Locator) -> list[Session]:
        """Return the sessions of one workspace.

        Sessions may be metadata-only (``loaded=False``) when their content
        is expensive to read.
        """
        ...


class LazyContentProvider(ChatProvider):
    """A provider whose sessions are listed before their messages are read."""

    @abstractmethod
    def fetch_content(self, session_id: str, locator: Locator) -> list[Message]:
        """Return the messages of a metadata-only session."""
        ...


def supports_lazy_load(provider: ChatProvider) -> bool:
    return isinstance(provider, LazyContentProvider)


def finalize_workspaces(workspaces: list[Workspace]) -> list[Workspace]:
    """Drop workspaces without sessions and sort newest first."""
    result = [ws for ws in workspaces if ws.session_count > 0]
    result.sort(key=lambda ws: ws.last_modified, reverse=True)
    return result
