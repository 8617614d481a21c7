"""Owner of the periodic maintenance jobs (cache sweep, limiter sweep, metrics flush).

Jobs run as asyncio tasks on the application's event loop. They are created by
``start()`` and cancelled and awaited by ``stop()``, so nothing keeps running
after the application shuts down.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntervalJob:
    name: str
    interval_seconds: float
    func: Callable[[], Any]


class BackgroundScheduler:
    def __init__(self) -> None:
        self._jobs: dict[str, IntervalJob] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def job_names(self) -> list[str]:
        return list(self._jobs)

    def add_interval_job(self, name: str, interval_seconds: float, func: Callable[[], Any]) -> None:
        """Register ``func`` to run every ``interval_seconds``.

        Raises:
            ValueError: If the name is taken or the interval is not positive.
            RuntimeError: If the scheduler is already running.
        """

        if self.running:
            raise RuntimeError("cannot add jobs while the scheduler is running")
        if name in self._jobs:
            raise ValueError(f"job {name!r} already registered")
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._jobs[name] = IntervalJob(name=name, interval_seconds=interval_seconds, func=func)

    async def start(self) -> None:
        if self.running:
            return
        for job in self._jobs.values():
            self._tasks[job.name] = asyncio.create_task(self._run(job), name=f"scheduler:{job.name}")
        logger.info("scheduler.started", extra={"jobs": self.job_names})

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if tasks:
            logger.info("scheduler.stopped", extra={"jobs": self.job_names})

    async def run_job(self, name: str) -> None:
        """Run one job immediately, outside its schedule."""

        await self._execute(self._jobs[name])

    async def _run(self, job: IntervalJob) -> None:
        while True:
            await asyncio.sleep(job.interval_seconds)
            await self._execute(job)

    async def _execute(self, job: IntervalJob) -> None:
        try:
            result = job.func()
            if asyncio.iscoroutine(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("scheduler.job_failed", extra={"job": job.name})
