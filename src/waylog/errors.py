"""Exceptions raised by waylog.

Readers never raise for missing or malformed source data; they return empty
results. These errors cover the failures a user has to see.
"""


class WaylogError(Exception):
    """Base class for user-visible waylog failures."""


class ArchiveDirectoryError(WaylogError):
    """The archive directory could not be created."""

    def __init__(self, path, cause: Exception):
        super().__init__(f"Failed to create archive directory {path}: {cause}")
        self.path = path
        self.cause = cause


class ArtifactWriteError(WaylogError):
    """Writing or appending one session's artifact failed."""

    def __init__(self, path, session_id: str, cause: Exception):
        super().__init__(f"Failed to write {path} for session {session_id}: {cause}")
        self.path = path
        self.session_id = session_id
        self.cause = cause


class UnknownSourceError(WaylogError):
    """No provider is registered under the requested key."""

    def __init__(self, key: str):
        super().__init__(f"Unknown source: {key}")
        self.key = key


class WorkspaceNotFoundError(WaylogError):
    """A source has no workspace matching the current project."""

    def __init__(self, source: str, project_root):
        super().__init__(f"No {source} chat history found for workspace {project_root}")
        self.source = source
        self.project_root = project_root
