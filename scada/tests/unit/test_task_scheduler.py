"""
Unit tests for the background task scheduler
"""
import asyncio
import pytest
from unittest.mock import Mock

from scada.services.scheduler.task_scheduler import TaskScheduler, historian_retention_task


class TestTaskScheduler:

    @pytest.mark.unit
    def test_register_and_toggle(self):
        scheduler = TaskScheduler()
        scheduler.register_task("cleanup", Mock(), interval_seconds=60)

        assert scheduler.disable_task("cleanup") is True
        assert scheduler.get_task_status("cleanup")['enabled'] is False
        assert scheduler.enable_task("cleanup") is True
        assert scheduler.enable_task("missing") is False
        assert "error" in scheduler.get_task_status("missing")

    @pytest.mark.unit
    def test_invalid_interval(self):
        with pytest.raises(ValueError):
            TaskScheduler().register_task("bad", Mock(), interval_seconds=0)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_runs_sync_and_async_tasks(self):
        sync_task = Mock()
        calls = []

        async def async_task():
            calls.append(1)

        scheduler = TaskScheduler(check_interval=0.01)
        scheduler.register_task("sync", sync_task, interval_seconds=0.02, run_immediately=True)
        scheduler.register_task("async", async_task, interval_seconds=0.02, run_immediately=True)

        await scheduler.start()
        await asyncio.sleep(0.15)
        await scheduler.stop()

        assert sync_task.call_count >= 2
        assert len(calls) >= 2
        status = scheduler.get_task_status()
        assert status['scheduler_running'] is False
        assert status['tasks']['sync']['run_count'] == sync_task.call_count

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_task_errors_counted(self):
        scheduler = TaskScheduler()
        scheduler.register_task("failing", Mock(side_effect=RuntimeError("nope")), interval_seconds=60)

        assert await scheduler.run_task_now("failing") is True
        assert await scheduler.run_task_now("missing") is False

        status = scheduler.get_task_status("failing")
        assert status['error_count'] == 1
        assert status['last_error'] == "nope"
        assert status['running'] is False

    @pytest.mark.unit
    def test_historian_retention_task(self):
        historian = Mock()
        historian.cleanup.return_value = 3

        task = historian_retention_task(historian, retention_days=2)

        assert task() == 3
        historian.cleanup.assert_called_once_with(2 * 86400)
