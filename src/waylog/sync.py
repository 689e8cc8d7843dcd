"""Incremental, append-only sync of chat sessions into the project archive.

Each session maps to exactly one archive file whose name is derived from
the session's creation time. A sync never rewrites an archive file: it
creates it once, then only appends the messages beyond the count already
stored, which is read back from the file itself.
"""

import enum
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .config import get_history_dir
from .context import AppContext
from .core import Locator, Session, Workspace
from .errors import ArchiveDirectoryError, ArtifactWriteError, WorkspaceNotFoundError
from .export import artifact_filename, count_messages, format_messages, session_to_markdown
from .matcher import match_workspace
from .provider import ChatProvider, supports_lazy_load

logger = logging.getLogger(__name__)


class SyncOutcome(enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


@dataclass
class SyncReport:
    """What one sync pass did."""

    created: list[str] = field(default_factory=list)  # archive filenames
    updated: list[str] = field(default_factory=list)
    skipped: int = 0
    failed: list[str] = field(default_factory=list)  # one line per failure
    timed_out: bool = False

    def record(self, outcome: SyncOutcome, filename: str = ""):
        if outcome is SyncOutcome.CREATED:
            self.created.append(filename)
        elif outcome is SyncOutcome.UPDATED:
            self.updated.append(filename)
        else:
            self.skipped += 1

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "timed_out": self.timed_out,
        }


def _expired(deadline: Optional[float]) -> bool:
    return deadline is not None and time.monotonic() >= deadline


def write_new_file(path: Path, text: str):
    """Create ``path`` with ``text`` so it is either complete or absent."""
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(text)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def append_to_file(path: Path, text: str):
    with path.open("a", encoding="utf-8", newline="") as f:
        f.write(text)


def read_artifact(path: Path) -> str:
    # newline="" keeps the bytes as written; separators are counted verbatim.
    with path.open(encoding="utf-8", errors="replace", newline="") as f:
        return f.read()


class SyncEngine:
    """Merge sessions from every active source into ``.waylog/history``."""

    def __init__(self, context: AppContext):
        self.context = context

    @property
    def include_details(self) -> bool:
        return self.context.settings.include_details

    def ensure_history_dir(self, project_root) -> Path:
        history_dir = get_history_dir(project_root)
        try:
            history_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ArchiveDirectoryError(history_dir, e) from e
        return history_dir

    def load_content(self, provider: ChatProvider, session: Session, locator: Locator):
        """Fetch the messages of a metadata-only session in place."""
        if session.loaded:
            return
        if supports_lazy_load(provider):
            session.messages = provider.fetch_content(session.id, locator)
            logger.debug("Loaded %d messages for %s session %s",
                         len(session.messages), provider.name, session.id)
        session.loaded = True

    def sync_session(
        self,
        provider: ChatProvider,
        session: Session,
        locator: Locator,
        history_dir: Path,
    ) -> SyncOutcome:
        """Bring one session's archive file up to date."""
        self.load_content(provider, session, locator)
        if not session.messages:
            logger.debug("Session %s has no messages, skipping", session.id)
            return SyncOutcome.SKIPPED

        path = history_dir / artifact_filename(session)

        if not path.exists():
            try:
                write_new_file(path, session_to_markdown(session, self.include_details))
            except OSError as e:
                raise ArtifactWriteError(path, session.id, e) from e
            logger.debug("Created %s", path.name)
            return SyncOutcome.CREATED

        try:
            stored = count_messages(read_artifact(path))
        except OSError as e:
            raise ArtifactWriteError(path, session.id, e) from e

        if len(session.messages) <= stored:
            return SyncOutcome.SKIPPED

        new_messages = session.messages[stored:]
        text = "\n" + format_messages(new_messages, session.source, self.include_details)
        try:
            append_to_file(path, text)
        except OSError as e:
            raise ArtifactWriteError(path, session.id, e) from e
        logger.info("Updating %s: %d -> %d messages", path.name, stored, len(session.messages))
        return SyncOutcome.UPDATED

    def resolve_workspace(self, provider: ChatProvider, project_root, workspace_file=None) -> Optional[Workspace]:
        workspaces = provider.list_workspaces()
        return match_workspace(workspaces, str(project_root), workspace_file)

    def find_project_sessions(self, provider: ChatProvider, project_root, workspace_file=None):
        """Return (workspace, sessions) of a source for the project.

        Raises WorkspaceNotFoundError when the source has no matching
        workspace.
        """
        workspace = self.resolve_workspace(provider, project_root, workspace_file)
        if workspace is None:
            raise WorkspaceNotFoundError(provider.name, project_root)
        return workspace, provider.list_sessions(workspace.locator)

    def _sync_one(self, provider, session, locator, history_dir, report: SyncReport):
        try:
            outcome = self.sync_session(provider, session, locator, history_dir)
        except ArtifactWriteError as e:
            logger.error("%s", e)
            report.failed.append(str(e))
            return
        except Exception as e:
            logger.exception("Error syncing %s session %s", provider.name, session.id)
            report.failed.append(f"{provider.name} session {session.id}: {e}")
            return
        report.record(outcome, artifact_filename(session) if outcome is not SyncOutcome.SKIPPED else "")

    def sync_provider(
        self,
        provider: ChatProvider,
        project_root,
        history_dir: Path,
        report: SyncReport,
        workspace_file=None,
        deadline: Optional[float] = None,
    ):
        """Sync every session of the workspace matching the project."""
        workspace = self.resolve_workspace(provider, project_root, workspace_file)
        if workspace is None:
            logger.debug("No %s workspace found for %s", provider.name, project_root)
            return

        sessions = provider.list_sessions(workspace.locator)
        logger.info("Got %d sessions from %s", len(sessions), provider.name)

        for session in sessions:
            if _expired(deadline):
                report.timed_out = True
                return
            self._sync_one(provider, session, workspace.locator, history_dir, report)

    def sync_project(self, project_root, workspace_file=None, deadline: Optional[float] = None) -> SyncReport:
        """One auto-save pass over every active source.

        Raises ArchiveDirectoryError when the archive directory cannot be
        created; failures inside one source or session are recorded in the
        report and do not stop the pass.
        """
        history_dir = self.ensure_history_dir(project_root)
        report = SyncReport()

        for provider in self.context.active_providers():
            if _expired(deadline):
                logger.warning("Sync deadline reached before %s", provider.name)
                report.timed_out = True
                break
            try:
                self.sync_provider(provider, project_root, history_dir, report, workspace_file, deadline)
            except Exception as e:
                logger.exception("Error syncing %s", provider.name)
                report.failed.append(f"{provider.name}: {e}")

        if report.created or report.updated:
            logger.info("Sync completed: %d created, %d updated", len(report.created), len(report.updated))
        else:
            logger.debug("Sync completed: nothing new")
        return report

    def save_sessions(
        self,
        provider: ChatProvider,
        sessions: list[Session],
        locator: Locator,
        project_root,
    ) -> SyncReport:
        """Save a user-selected set of sessions into the archive."""
        history_dir = self.ensure_history_dir(project_root)
        report = SyncReport()
        for session in sessions:
            self._sync_one(provider, session, locator, history_dir, report)
        return report
