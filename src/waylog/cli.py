"""CLI entry point for waylog."""

import logging
import time
from datetime import datetime
from pathlib import Path

import click
import uvicorn

from .config import load_settings
from .context import AppContext
from .errors import WaylogError
from .scheduler import AutoSaveScheduler
from .server import create_app
from .sync import SyncEngine, SyncReport


def _fmt_ms(ms) -> str:
    if not ms:
        return "-"
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M")


def _echo_report(report: SyncReport):
    for name in report.created:
        click.echo(f"created  {name}")
    for name in report.updated:
        click.echo(f"updated  {name}")
    for failure in report.failed:
        click.echo(f"failed   {failure}", err=True)
    click.echo(
        f"{len(report.created)} created, {len(report.updated)} updated, "
        f"{report.skipped} unchanged, {len(report.failed)} failed"
        + (" (stopped early: timeout)" if report.timed_out else "")
    )


@click.group()
@click.option(
    "--project",
    type=click.Path(file_okay=False, path_type=Path),
    default=".",
    show_default=True,
    help="Project whose history is archived.",
)
@click.option("--workspace-file", default=None, help="The project's .code-workspace file, if any.")
@click.option("-v", "--verbose", is_flag=True, help="Log debug output.")
@click.pass_context
def main(ctx, project: Path, workspace_file, verbose: bool):
    """Archive AI coding chat history into <project>/.waylog/history."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    project = project.resolve()
    context = AppContext.create(load_settings(), open_folders=[str(project)])
    ctx.obj = {
        "project": project,
        "workspace_file": workspace_file,
        "context": context,
        "engine": SyncEngine(context),
    }


@main.command()
@click.pass_obj
def sources(obj):
    """List chat history sources and whether they have data here."""
    context: AppContext = obj["context"]
    available = {p.key for p in context.available_providers()}
    for provider in context.providers:
        mark = "yes" if provider.key in available else "no"
        click.echo(f"{provider.key:<14} {provider.name:<20} available: {mark}")


@main.command()
@click.argument("source")
@click.pass_obj
def workspaces(obj, source: str):
    """List the workspaces of SOURCE."""
    try:
        provider = obj["context"].get_provider(source)
    except WaylogError as e:
        raise click.ClickException(str(e))

    for ws in provider.list_workspaces():
        click.echo(f"{_fmt_ms(ws.last_modified)}  {ws.session_count:>4}  {ws.name}  ({ws.path})")


@main.command()
@click.argument("source")
@click.pass_obj
def sessions(obj, source: str):
    """List the sessions SOURCE holds for the project."""
    engine: SyncEngine = obj["engine"]
    try:
        provider = obj["context"].get_provider(source)
        _, found = engine.find_project_sessions(provider, obj["project"], obj["workspace_file"])
    except WaylogError as e:
        raise click.ClickException(str(e))

    for session in found:
        count = session.message_count if session.loaded else "?"
        click.echo(f"{session.id}  {_fmt_ms(session.timestamp)}  {count:>4}  {session.title}")


@main.command()
@click.argument("source")
@click.argument("session_ids", nargs=-1)
@click.pass_obj
def save(obj, source: str, session_ids: tuple):
    """Save sessions of SOURCE into the archive (all when no ids are given)."""
    engine: SyncEngine = obj["engine"]
    try:
        provider = obj["context"].get_provider(source)
        workspace, found = engine.find_project_sessions(provider, obj["project"], obj["workspace_file"])
        if session_ids:
            wanted = set(session_ids)
            found = [s for s in found if s.id in wanted]
            if not found:
                raise click.ClickException("No matching sessions")
        report = engine.save_sessions(provider, found, workspace.locator, obj["project"])
    except WaylogError as e:
        raise click.ClickException(str(e))
    _echo_report(report)


@main.command()
@click.option("--once", is_flag=True, help="Run a single pass and exit.")
@click.option("--interval", type=float, default=None, help="Seconds between passes.")
@click.pass_obj
def sync(obj, once: bool, interval):
    """Sync every active source into the archive."""
    engine: SyncEngine = obj["engine"]
    settings = obj["context"].settings
    if not settings.enabled:
        raise click.ClickException("waylog is disabled (WAYLOG_ENABLE)")

    if once:
        deadline = time.monotonic() + settings.tick_timeout
        try:
            report = engine.sync_project(obj["project"], obj["workspace_file"], deadline)
        except WaylogError as e:
            raise click.ClickException(str(e))
        _echo_report(report)
        return

    scheduler = AutoSaveScheduler(engine, obj["project"], obj["workspace_file"], interval)
    click.echo(f"Syncing {obj['project']} every {scheduler.interval:.0f}s (Ctrl+C to stop)")
    scheduler.start()
    try:
        while scheduler.running:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop()


@main.command()
@click.option("--port", default=8080, help="Port to serve on.")
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
@click.pass_obj
def serve(obj, port: int, host: str):
    """Start the web API (auto-save runs while it is up)."""
    click.echo(f"Starting waylog for {obj['project']} on http://{host}:{port}")
    uvicorn.run(create_app(obj["context"], obj["project"], obj["workspace_file"]), host=host, port=port)
