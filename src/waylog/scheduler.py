"""Periodic auto-save of the current project's chat history."""

import logging
import threading
import time
from typing import Optional

from .errors import WaylogError
from .sync import SyncEngine, SyncReport

logger = logging.getLogger(__name__)

# One sync at a time per process, whichever scheduler or request starts it
_tick_lock = threading.Lock()


class AutoSaveScheduler:
    """Run a sync pass now and then every ``interval`` seconds.

    A tick that comes due while another sync is still running is skipped
    rather than queued.
    """

    def __init__(self, engine: SyncEngine, project_root, workspace_file=None, interval: Optional[float] = None):
        self.engine = engine
        self.project_root = project_root
        self.workspace_file = workspace_file
        settings = engine.context.settings
        self.interval = interval if interval is not None else settings.sync_interval
        self.tick_timeout = settings.tick_timeout
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            logger.info("Auto-save already running")
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name="waylog-autosave", daemon=True)
        self._thread.start()
        logger.info("Auto-save started (every %.0fs) for %s", self.interval, self.project_root)

    def stop(self, timeout: Optional[float] = None):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            logger.info("Auto-save stopped")

    def run_forever(self):
        """Tick immediately, then on every interval until stopped."""
        self.run_tick()
        while not self._stop.wait(self.interval):
            self.run_tick()

    def run_tick(self) -> Optional[SyncReport]:
        """Run one sync pass; returns None when skipped or failed."""
        if not _tick_lock.acquire(blocking=False):
            logger.info("Previous sync still running, skipping this tick")
            return None
        try:
            deadline = time.monotonic() + self.tick_timeout
            return self.engine.sync_project(self.project_root, self.workspace_file, deadline)
        except WaylogError as e:
            logger.error("%s", e)
            return None
        except Exception:
            logger.exception("Error in auto-sync")
            return None
        finally:
            _tick_lock.release()


def run_exclusive(engine: SyncEngine, project_root, workspace_file=None) -> Optional[SyncReport]:
    """Run a sync pass unless one is already in flight.

    Raises WaylogError like ``SyncEngine.sync_project``; returns None when
    another pass holds the lock.
    """
    if not _tick_lock.acquire(blocking=False):
        return None
    try:
        deadline = time.monotonic() + engine.context.settings.tick_timeout
        return engine.sync_project(project_root, workspace_file, deadline)
    finally:
        _tick_lock.release()
