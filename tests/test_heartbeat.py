"""
Heartbeat scheduler - task registration, timing and error isolation.
"""

import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from release_gate.core import heartbeat
from release_gate.core.heartbeat import (
    get_status,
    list_tasks,
    register_task,
    reset_task,
    run_task,
    should_run_task,
    start,
    stop,
    unregister_task,
)


@pytest.fixture(autouse=True)
def reset_heartbeat():
    """Reset heartbeat state between tests."""
    heartbeat.tasks.clear()
    heartbeat.running = False
    heartbeat.shutdown_event = None
    yield
    heartbeat.tasks.clear()
    heartbeat.running = False


@pytest.fixture
def sweep_enabled(monkeypatch):
    monkeypatch.setenv("LETTER_SWEEP_ENABLED", "true")


class TestHeartbeatRegistration:

    def test_register_task_valid(self):
        register_task("test_task", 30, lambda: None)
        assert list_tasks() == ["test_task"]

    def test_register_task_invalid_func(self):
        with pytest.raises(ValueError, match="Task function must be callable"):
            register_task("bad_task", 30, "not_callable")

    def test_register_task_invalid_interval(self):
        with pytest.raises(ValueError, match="Interval must be >= 1 second"):
            register_task("bad_task", 0, lambda: None)

    def test_register_duplicate_task(self):
        register_task("duplicate", 30, lambda: None)
        register_task("duplicate", 60, lambda: None)

        assert len(list_tasks()) == 1
        assert heartbeat.tasks["duplicate"]["interval"] == 60

    def test_unregister_task(self):
        register_task("test_task", 30, lambda: None)
        unregister_task("test_task")
        assert "test_task" not in list_tasks()

    def test_invalid_config_blocks_registration(self):
        with patch("release_gate.core.heartbeat.validate_sweep_config", return_value=["bad interval"]):
            with pytest.raises(ValueError, match="configuration invalid"):
                register_task("test_task", 30, lambda: None)


class TestTaskExecution:

    def test_should_run_when_never_run(self):
        assert should_run_task("t", {"func": None, "interval": 30, "last_run": None})

    def test_should_not_run_before_interval(self):
        assert not should_run_task("t", {"func": None, "interval": 30, "last_run": time.monotonic()})

    def test_should_run_after_interval(self):
        assert should_run_task("t", {"func": None, "interval": 1, "last_run": time.monotonic() - 2})

    def test_run_task_records_last_run(self):
        func = MagicMock()
        task_info = {"func": func, "interval": 30, "last_run": None}

        run_task("t", task_info)

        func.assert_called_once()
        assert task_info["last_run"] is not None

    def test_run_task_failure(self):
        task_info = {"func": MagicMock(side_effect=KeyError("boom")), "interval": 30, "last_run": None}

        with pytest.raises(RuntimeError, match="Task 't' failed"):
            run_task("t", task_info)

        # Failed runs wait for the next interval instead of spinning
        assert task_info["last_run"] is not None

    def test_reset_task(self):
        register_task("t", 30, lambda: None)
        heartbeat.tasks["t"]["last_run"] = time.monotonic()
        reset_task("t")
        assert heartbeat.tasks["t"]["last_run"] is None


class TestLoop:

    def test_start_disabled(self, monkeypatch):
        monkeypatch.setenv("LETTER_SWEEP_ENABLED", "false")
        start()
        assert not heartbeat.running

    def test_status_disabled(self, monkeypatch):
        monkeypatch.setenv("LETTER_SWEEP_ENABLED", "false")
        assert get_status()["status"] == "disabled"

    def test_loop_runs_tasks_and_isolates_failures(self, sweep_enabled):
        ran = threading.Event()
        register_task("broken", 1, MagicMock(side_effect=ValueError("broken task")))
        register_task("good", 1, ran.set)

        loop = threading.Thread(target=start, daemon=True)
        loop.start()

        assert ran.wait(5)
        assert get_status()["status"] == "running"

        stop()
        loop.join(5)
        assert not loop.is_alive()
        assert get_status()["status"] == "stopped"

    def test_start_twice_is_an_error(self, sweep_enabled):
        heartbeat.running = True
        with pytest.raises(RuntimeError, match="already running"):
            start()
