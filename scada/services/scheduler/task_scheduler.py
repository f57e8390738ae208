"""
Background Task Scheduler
Runs periodic maintenance tasks of the SCADA core, such as historian
retention cleanup
"""
import asyncio
import logging
import time
from typing import Dict, Any, Callable, Optional
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class ScheduledTask:
    """Represents a scheduled task"""
    name: str
    func: Callable
    interval_seconds: float
    enabled: bool = True
    last_run: Optional[float] = None
    next_run: Optional[float] = None
    run_count: int = 0
    error_count: int = 0
    last_error: Optional[str] = None
    running: bool = False


class TaskScheduler:
    """
    Interval-based task scheduler.

    Sync task functions run in a worker thread, coroutine functions on the
    event loop. A task that is still running when it comes due again is
    not started twice.
    """

    def __init__(self, check_interval: float = 1.0):
        """
        Initialize task scheduler.

        Args:
            check_interval: Seconds between due-task checks
        """
        self.tasks: Dict[str, ScheduledTask] = {}
        self.check_interval = check_interval
        self.running = False
        self.scheduler_task: Optional[asyncio.Task] = None
        self._inflight: Dict[str, asyncio.Task] = {}

    def register_task(
        self,
        name: str,
        func: Callable,
        interval_seconds: float,
        enabled: bool = True,
        run_immediately: bool = False
    ) -> None:
        """
        Register a periodic task.

        Args:
            name: Task identifier
            func: Sync or async callable without arguments
            interval_seconds: Execution interval in seconds
            enabled: Whether task is enabled
            run_immediately: First run on the next check instead of after one interval
        """
        if interval_seconds <= 0:
            raise ValueError(f"Task '{name}' interval must be > 0")

        now = time.time()
        self.tasks[name] = ScheduledTask(
            name=name,
            func=func,
            interval_seconds=interval_seconds,
            enabled=enabled,
            next_run=now if run_immediately else now + interval_seconds
        )
        logger.info(
            f"Registered task '{name}': "
            f"interval={interval_seconds}s, enabled={enabled}"
        )

    def enable_task(self, name: str) -> bool:
        """Enable a task"""
        if name in self.tasks:
            self.tasks[name].enabled = True
            logger.info(f"Enabled task '{name}'")
            return True
        return False

    def disable_task(self, name: str) -> bool:
        """Disable a task"""
        if name in self.tasks:
            self.tasks[name].enabled = False
            logger.info(f"Disabled task '{name}'")
            return True
        return False

    async def start(self) -> None:
        """Start the task scheduler"""
        if self.running:
            logger.warning("Task scheduler already running")
            return

        self.running = True
        self.scheduler_task = asyncio.create_task(self._scheduler_loop())
        logger.info("Task scheduler started")

    async def stop(self) -> None:
        """Stop the scheduler; runs already in progress complete"""
        if not self.running:
            return

        self.running = False

        if self.scheduler_task:
            self.scheduler_task.cancel()
            try:
                await self.scheduler_task
            except asyncio.CancelledError:
                pass
            self.scheduler_task = None

        if self._inflight:
            await asyncio.gather(*self._inflight.values(), return_exceptions=True)

        logger.info("Task scheduler stopped")

    async def _scheduler_loop(self) -> None:
        """Main scheduler loop"""
        while self.running:
            try:
                now = time.time()
                for task in self.tasks.values():
                    if not task.enabled or task.running:
                        continue
                    if task.next_run is None or now >= task.next_run:
                        self._launch(task)
                        task.next_run = now + task.interval_seconds

                await asyncio.sleep(self.check_interval)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in scheduler loop: {e}", exc_info=True)
                await asyncio.sleep(self.check_interval)

    def _launch(self, task: ScheduledTask) -> None:
        runner = asyncio.create_task(self._execute_task(task), name=f"task-{task.name}")
        self._inflight[task.name] = runner
        runner.add_done_callback(lambda _: self._inflight.pop(task.name, None))

    async def run_task_now(self, name: str) -> bool:
        """Run a registered task once, outside its schedule"""
        task = self.tasks.get(name)
        if task is None or task.running:
            return False
        await self._execute_task(task)
        return True

    async def _execute_task(self, task: ScheduledTask) -> None:
        """
        Execute a scheduled task.

        Errors are counted on the task and logged; they never stop the
        scheduler.
        """
        start_time = time.time()
        task.running = True

        try:
            logger.debug(f"Executing task '{task.name}'")

            if asyncio.iscoroutinefunction(task.func):
                await task.func()
            else:
                await asyncio.to_thread(task.func)

            task.last_run = start_time
            task.run_count += 1

            duration = time.time() - start_time
            logger.info(
                f"Task '{task.name}' completed in {duration:.2f}s "
                f"(run #{task.run_count})"
            )

        except Exception as e:
            task.error_count += 1
            task.last_error = str(e)
            logger.error(
                f"Error executing task '{task.name}': {e}",
                exc_info=True,
                extra={'details': {'task_name': task.name, 'error_count': task.error_count}}
            )
        finally:
            task.running = False

    def get_task_status(self, name: Optional[str] = None) -> Dict[str, Any]:
        """
        Get status of tasks.

        Args:
            name: Optional task name to get specific task status
        """
        if name:
            if name not in self.tasks:
                return {"error": f"Task '{name}' not found"}
            return self._format_task_status(self.tasks[name])

        return {
            'scheduler_running': self.running,
            'total_tasks': len(self.tasks),
            'enabled_tasks': sum(1 for t in self.tasks.values() if t.enabled),
            'tasks': {
                task_name: self._format_task_status(task)
                for task_name, task in self.tasks.items()
            }
        }

    def _format_task_status(self, task: ScheduledTask) -> Dict[str, Any]:
        """Format task status for display"""
        now = time.time()

        return {
            'name': task.name,
            'enabled': task.enabled,
            'running': task.running,
            'interval_seconds': task.interval_seconds,
            'run_count': task.run_count,
            'error_count': task.error_count,
            'last_run': task.last_run,
            'last_run_ago_seconds': (
                round(now - task.last_run, 1)
                if task.last_run else None
            ),
            'next_run': task.next_run,
            'next_run_in_seconds': (
                round(task.next_run - now, 1)
                if task.next_run else None
            ),
            'last_error': task.last_error
        }


def historian_retention_task(historian, retention_days: float = 7.0) -> Callable[[], int]:
    """
    Build the periodic retention cleanup task of a historian.

    Returns:
        Sync callable deleting samples older than ``retention_days``
    """
    max_age = retention_days * 86400

    def cleanup() -> int:
        deleted = historian.cleanup(max_age)
        logger.info(f"Historian retention: removed {deleted} samples older than {retention_days} days")
        return deleted

    return cleanup
