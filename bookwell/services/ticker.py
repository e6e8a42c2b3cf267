"""
Ticker: in-process periodic task runner that drives the sweeper.

Each task has its own cadence and optional jitter. The loop wakes every
``poll_interval`` seconds, runs whatever is due and goes back to sleep.
``stop()`` lets a pass that is already running finish instead of cancelling
it halfway through a sweep.

Usage:
    ticker = Ticker(clock=utcnow)
    ticker.add_task("expire_unconfirmed", 300, sweeper.expire_unconfirmed)
    await ticker.start()
    ...
    await ticker.stop()
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from bookwell.utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)


@dataclass
class TickerTask:
    name: str
    interval_seconds: float
    func: Callable[[], Awaitable[Any]]
    jitter_seconds: float = 0.0
    next_run_at: Optional[datetime] = None  # None means due on the next tick
    runs: int = 0
    last_error: Optional[str] = None

    def is_due(self, now: datetime) -> bool:
        return self.next_run_at is None or self.next_run_at <= now


class Ticker:
    def __init__(
        self,
        clock: Clock = utcnow,
        poll_interval: float = 1.0,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._clock = clock
        self._poll_interval = poll_interval
        self._rng = rng or random.Random()
        self._tasks: dict[str, TickerTask] = {}
        self._loop_task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    @property
    def tasks(self) -> list[TickerTask]:
        return list(self._tasks.values())

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def add_task(
        self,
        name: str,
        interval_seconds: float,
        func: Callable[[], Awaitable[Any]],
        jitter_seconds: float = 0.0,
    ) -> TickerTask:
        if interval_seconds <= 0:
            raise ValueError(f"Interval for {name} must be positive")
        if name in self._tasks:
            raise ValueError(f"Task {name} is already registered")
        task = TickerTask(name, interval_seconds, func, jitter_seconds)
        self._tasks[name] = task
        return task

    def _schedule_next(self, task: TickerTask, now: datetime) -> None:
        delay = task.interval_seconds
        if task.jitter_seconds:
            delay += self._rng.uniform(0, task.jitter_seconds)
        task.next_run_at = now + timedelta(seconds=delay)

    async def _run(self, task: TickerTask) -> None:
        try:
            await task.func()
            task.last_error = None
        except Exception as exc:
            task.last_error = str(exc)
            logger.error("Ticker task %s failed: %s", task.name, exc, exc_info=True)
        finally:
            task.runs += 1

    async def tick(self) -> list[str]:
        """Run every due task once; returns the names that ran."""
        now = self._clock()
        due = [task for task in self._tasks.values() if task.is_due(now)]
        for task in due:
            self._schedule_next(task, now)
        if due:
            await asyncio.gather(*(self._run(task) for task in due))
        return [task.name for task in due]

    async def start(self) -> None:
        if self.running:
            logger.warning("Ticker already running")
            return
        self._stopping.clear()
        self._loop_task = asyncio.create_task(self._loop())
        logger.info("Ticker started with %d tasks", len(self._tasks))

    async def stop(self) -> None:
        if not self.running:
            return
        self._stopping.set()
        await self._loop_task
        self._loop_task = None
        logger.info("Ticker stopped")

    async def _loop(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.tick()
            except Exception as exc:
                logger.error("Ticker loop error: %s", exc, exc_info=True)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass
