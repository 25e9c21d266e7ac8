"""Recurring maintenance tasks on independent asyncio timers.

Each registered task sleeps its own interval, runs, and records the
outcome. A failing run is logged and retried on the next tick; it never
stops the task or affects the others.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from barback.core.logging import get_logger

logger = get_logger(__name__)

TaskFunc = Callable[[], Awaitable[Any]]


@dataclass
class PeriodicTask:
    name: str
    interval: float
    func: TaskFunc
    runs: int = 0
    failures: int = 0
    last_run: Optional[float] = None
    last_result: Any = None
    last_error: Optional[str] = None
    _task: Optional[asyncio.Task] = field(default=None, repr=False)

    async def run_once(self) -> None:
        start = time.monotonic()
        try:
            self.last_result = await self.func()
            self.last_error = None
        except Exception as exc:
            self.failures += 1
            self.last_error = str(exc)
            logger.exception("scheduler.task_failed", task=self.name)
        finally:
            self.runs += 1
            self.last_run = time.monotonic()
            logger.debug(
                "scheduler.task_ran",
                task=self.name,
                duration_ms=int((self.last_run - start) * 1000),
            )

    async def run_forever(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.run_once()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()


class Scheduler:
    def __init__(self) -> None:
        self._tasks: dict[str, PeriodicTask] = {}

    def register(self, name: str, interval_seconds: float, func: TaskFunc) -> PeriodicTask:
        """Register a task to run every ``interval_seconds``."""
        if not callable(func):
            raise ValueError(f"Task function must be callable: {func}")
        if interval_seconds <= 0:
            raise ValueError(f"Interval must be > 0 seconds: {interval_seconds}")
        if name in self._tasks:
            raise ValueError(f"Task already registered: {name}")

        task = PeriodicTask(name=name, interval=interval_seconds, func=func)
        self._tasks[name] = task
        logger.info("scheduler.registered", task=name, interval_seconds=interval_seconds)
        return task

    def list_tasks(self) -> list[str]:
        return list(self._tasks)

    def start(self) -> None:
        for task in self._tasks.values():
            if not task.running:
                task._task = asyncio.create_task(task.run_forever(), name=f"periodic:{task.name}")
        logger.info("scheduler.started", tasks=self.list_tasks())

    async def stop(self) -> None:
        running = [task._task for task in self._tasks.values() if task.running]
        for handle in running:
            handle.cancel()
        if running:
            await asyncio.gather(*running, return_exceptions=True)
        for task in self._tasks.values():
            task._task = None
        logger.info("scheduler.stopped")

    def status(self) -> dict[str, dict[str, Any]]:
        return {
            name: {
                "interval_seconds": task.interval,
                "running": task.running,
                "runs": task.runs,
                "failures": task.failures,
                "last_error": task.last_error,
            }
            for name, task in self._tasks.items()
        }
