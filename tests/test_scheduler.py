"""Tests for the auto-save scheduler."""

import threading
from unittest.mock import MagicMock

import pytest

from waylog import scheduler as scheduler_module
from waylog.config import Settings
from waylog.errors import ArchiveDirectoryError
from waylog.scheduler import AutoSaveScheduler, run_exclusive
from waylog.sync import SyncReport


@pytest.fixture
def mock_engine():
    engine = MagicMock()
    engine.context.settings = Settings(sync_interval=3600, tick_timeout=5)
    engine.sync_project.return_value = SyncReport(created=["a.md"])
    return engine


@pytest.fixture
def held_lock():
    assert scheduler_module._tick_lock.acquire(blocking=False)
    yield
    scheduler_module._tick_lock.release()


def test_interval_defaults_to_settings(mock_engine):
    assert AutoSaveScheduler(mock_engine, "/p").interval == 3600
    assert AutoSaveScheduler(mock_engine, "/p", interval=10).interval == 10


def test_run_tick_runs_a_sync(mock_engine):
    report = AutoSaveScheduler(mock_engine, "/p", "/p/p.code-workspace").run_tick()

    assert report.created == ["a.md"]
    args = mock_engine.sync_project.call_args.args
    assert args[:2] == ("/p", "/p/p.code-workspace")
    assert args[2] is not None  # deadline


def test_tick_is_skipped_while_another_sync_runs(mock_engine, held_lock):
    assert AutoSaveScheduler(mock_engine, "/p").run_tick() is None
    mock_engine.sync_project.assert_not_called()


def test_run_tick_survives_errors(mock_engine):
    mock_engine.sync_project.side_effect = ArchiveDirectoryError("/p/.waylog/history", PermissionError("denied"))
    tick = AutoSaveScheduler(mock_engine, "/p")
    assert tick.run_tick() is None

    mock_engine.sync_project.side_effect = RuntimeError("boom")
    assert tick.run_tick() is None
    # The lock is released after a failure
    assert scheduler_module._tick_lock.acquire(blocking=False)
    scheduler_module._tick_lock.release()


def test_run_exclusive(mock_engine):
    assert run_exclusive(mock_engine, "/p").created == ["a.md"]


def test_run_exclusive_when_busy(mock_engine, held_lock):
    assert run_exclusive(mock_engine, "/p") is None


def test_run_exclusive_propagates_errors(mock_engine):
    mock_engine.sync_project.side_effect = ArchiveDirectoryError("/p", OSError("read-only"))
    with pytest.raises(ArchiveDirectoryError):
        run_exclusive(mock_engine, "/p")


def test_start_ticks_immediately_and_stops(mock_engine):
    ticked = threading.Event()
    mock_engine.sync_project.side_effect = lambda *args: ticked.set() or SyncReport()

    scheduler = AutoSaveScheduler(mock_engine, "/p")
    scheduler.start()
    try:
        assert ticked.wait(5)
        assert scheduler.running
    finally:
        scheduler.stop(timeout=5)

    assert not scheduler.running
    assert mock_engine.sync_project.call_count == 1
