"""Tests for periodic background sync."""

import logging
import threading
from unittest.mock import Mock

import pytest

from vaultsync.attachments.exceptions import ConfigurationIncompleteError
from vaultsync.attachments.scheduler import AutoSync
from vaultsync.attachments.sync import SyncResult


@pytest.fixture
def engine():
    engine = Mock()
    engine.sync_all.return_value = SyncResult()
    return engine


@pytest.fixture
def auto_sync(engine):
    auto_sync = AutoSync(engine)
    yield auto_sync
    auto_sync.stop()


def test_zero_interval_installs_nothing(auto_sync):
    auto_sync.start(0)
    assert not auto_sync.running
    assert auto_sync.interval_minutes == 0


def test_start_and_stop(auto_sync, engine):
    auto_sync.start(1)
    assert auto_sync.running
    assert auto_sync.interval_minutes == 1

    auto_sync.stop()

    assert not auto_sync.running
    # The first tick is a full interval away
    engine.sync_all.assert_not_called()


def test_restart_replaces_timer(auto_sync):
    auto_sync.start(1)
    first = auto_sync._thread

    auto_sync.start(5)

    assert auto_sync._thread is not first
    assert not first.is_alive()
    assert auto_sync.interval_minutes == 5


def test_reconfigure(auto_sync):
    auto_sync.reconfigure(True, 5)
    assert auto_sync.running

    auto_sync.reconfigure(False, 5)
    assert not auto_sync.running


def test_run_once_is_silent(auto_sync, engine):
    auto_sync.run_once()
    engine.sync_all.assert_called_once_with(silent=True)


def test_run_once_logs_failures(auto_sync, engine, caplog):
    engine.sync_all.side_effect = ConfigurationIncompleteError(["bucket"])

    with caplog.at_level(logging.WARNING):
        auto_sync.run_once()

    assert "Auto sync failed" in caplog.text


def test_run_once_logs_skipped_pass(auto_sync, engine, caplog):
    engine.sync_all.return_value = SyncResult(skipped=True)

    with caplog.at_level(logging.INFO):
        auto_sync.run_once()

    assert "previous pass still running" in caplog.text


def test_run_loops_until_stopped(auto_sync, engine):
    stop_event = threading.Event()
    calls = []

    def fake_sync(silent):
        calls.append(silent)
        if len(calls) == 3:
            stop_event.set()
        return SyncResult()

    engine.sync_all.side_effect = fake_sync

    auto_sync._run(0, stop_event)

    assert calls == [True, True, True]
