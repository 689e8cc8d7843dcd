"""FastAPI web server for waylog.

Lets a browser or editor plugin list sources and sessions for one project,
save a selection into the archive and trigger a sync. While the app runs,
the auto-save scheduler keeps the archive up to date.
"""

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel

from .context import AppContext
from .errors import ArchiveDirectoryError, UnknownSourceError, WorkspaceNotFoundError
from .export import artifact_filename
from .provider import ChatProvider, supports_lazy_load
from .scheduler import AutoSaveScheduler, run_exclusive
from .sync import SyncEngine

logger = logging.getLogger(__name__)


class SaveRequest(BaseModel):
    source: str
    session_ids: Optional[list[str]] = None  # None saves every session


def _workspace_to_dict(ws, matched: bool = False) -> dict:
    return {
        "id": ws.id,
        "name": ws.name,
        "path": ws.path,
        "last_modified": ws.last_modified,
        "session_count": ws.session_count,
        "source": ws.source,
        "matched": matched,
    }


def _session_to_dict(session) -> dict:
    return {
        "id": session.id,
        "title": session.title,
        "description": session.description,
        "timestamp": session.timestamp,
        "last_updated_at": session.last_updated_at,
        "message_count": session.message_count,
        "loaded": session.loaded,
        "source": session.source,
        "filename": artifact_filename(session) if session.loaded else None,
    }


def create_app(context: AppContext, project_root, workspace_file=None) -> FastAPI:
    """Build the app for one project."""
    project_root = Path(project_root)
    engine = SyncEngine(context)
    scheduler = AutoSaveScheduler(engine, project_root, workspace_file)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings = context.settings
        if settings.enabled and settings.auto_save:
            scheduler.start()
        else:
            logger.info("Auto-save disabled")
        yield
        scheduler.stop(timeout=5)

    app = FastAPI(title="waylog", version="0.1.0", lifespan=lifespan)
    app.state.context = context
    app.state.engine = engine
    app.state.scheduler = scheduler

    def _provider(key: str) -> ChatProvider:
        try:
            return context.get_provider(key)
        except UnknownSourceError as e:
            raise HTTPException(status_code=404, detail=str(e))

    def _project_sessions(provider: ChatProvider):
        try:
            return engine.find_project_sessions(provider, project_root, workspace_file)
        except WorkspaceNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))

    # ── Routes ───────────────────────────────────────────────────────

    @app.get("/api/sources")
    def get_sources():
        """Return every registered source and whether it has data here."""
        available = {p.key for p in context.available_providers()}
        enabled = {p.key for p in context.enabled_providers()}
        return [
            {
                "key": p.key,
                "name": p.name,
                "description": p.description,
                "available": p.key in available,
                "enabled": p.key in enabled,
                "lazy": supports_lazy_load(p),
            }
            for p in context.providers
        ]

    @app.get("/api/workspaces")
    def get_workspaces(source: str = Query(..., description="Source key")):
        """Return a source's workspaces, flagging the one matching this project."""
        provider = _provider(source)
        try:
            workspaces = provider.list_workspaces()
        except Exception:
            logger.exception("Failed to list workspaces for %s", provider.name)
            raise HTTPException(status_code=500, detail="Failed to list workspaces")

        matched = engine.resolve_workspace(provider, project_root, workspace_file)
        return [
            _workspace_to_dict(ws, matched is not None and ws.id == matched.id)
            for ws in workspaces
        ]

    @app.get("/api/sessions")
    def get_sessions(source: str = Query(..., description="Source key")):
        """Return the sessions of the workspace matching this project."""
        provider = _provider(source)
        workspace, sessions = _project_sessions(provider)
        return {
            "workspace": _workspace_to_dict(workspace, True),
            "sessions": [_session_to_dict(s) for s in sessions],
        }

    @app.post("/api/save")
    def save_sessions(request: SaveRequest):
        """Save selected sessions (or all of them) into the archive."""
        provider = _provider(request.source)
        workspace, sessions = _project_sessions(provider)
        if request.session_ids is not None:
            wanted = set(request.session_ids)
            sessions = [s for s in sessions if s.id in wanted]
            if not sessions:
                raise HTTPException(status_code=404, detail="No matching sessions")

        try:
            report = engine.save_sessions(provider, sessions, workspace.locator, project_root)
        except ArchiveDirectoryError as e:
            raise HTTPException(status_code=500, detail=str(e))
        return report.to_dict()

    @app.post("/api/sync")
    def sync_now():
        """Run one sync pass now."""
        try:
            report = run_exclusive(engine, project_root, workspace_file)
        except ArchiveDirectoryError as e:
            raise HTTPException(status_code=500, detail=str(e))
        if report is None:
            raise HTTPException(status_code=409, detail="A sync is already running")
        return report.to_dict()

    return app


def create_default_app() -> FastAPI:
    """App factory for ``uvicorn --factory``; serves WAYLOG_PROJECT or the cwd."""
    project_root = Path(os.environ.get("WAYLOG_PROJECT") or os.getcwd()).resolve()
    context = AppContext.create(open_folders=[str(project_root)])
    return create_app(context, project_root)
