import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

from common.core.telemetry import get_logger

logger = get_logger(__name__)


@dataclass
class RecurringJob:
    """A coroutine function run repeatedly with a fixed delay between runs."""

    name: str
    func: Callable[[], Awaitable[object]]
    delay_seconds: float
    initial_delay_seconds: float = 0.0
    runs: int = 0
    failures: int = 0


class FixedDelayScheduler:
    """
    Runs each registered job in its own asyncio task.

    The next run of a job starts delay_seconds after the previous run
    finished, so a slow run delays its successor instead of overlapping it.
    Jobs run concurrently with each other. An exception in a run is logged
    and the loop carries on.
    """

    def __init__(self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self._jobs: Dict[str, RecurringJob] = {}
        self._tasks: List[asyncio.Task] = []
        self._sleep = sleep
        self.running = False

    def add_job(
        self,
        name: str,
        func: Callable[[], Awaitable[object]],
        delay_seconds: float,
        initial_delay_seconds: float = 0.0,
    ) -> RecurringJob:
        if name in self._jobs:
            raise ValueError(f"Job {name} is already registered")
        job = RecurringJob(
            name=name,
            func=func,
            delay_seconds=delay_seconds,
            initial_delay_seconds=initial_delay_seconds,
        )
        self._jobs[name] = job
        return job

    @property
    def jobs(self) -> List[RecurringJob]:
        return list(self._jobs.values())

    def get_job(self, name: str) -> Optional[RecurringJob]:
        return self._jobs.get(name)

    async def _run_job(self, job: RecurringJob):
        if job.initial_delay_seconds > 0:
            await self._sleep(job.initial_delay_seconds)

        while self.running:
            try:
                await job.func()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                job.failures += 1
                logger.error(f"Scheduled job {job.name} failed: {e}", exc_info=True)
            finally:
                job.runs += 1

            if not self.running:
                break
            await self._sleep(job.delay_seconds)

    def start(self):
        """Start one loop per registered job on the running event loop."""
        if self.running:
            logger.warning("Scheduler is already running")
            return

        self.running = True
        for job in self._jobs.values():
            logger.info(
                f"Scheduling {job.name} every {job.delay_seconds}s (initial delay {job.initial_delay_seconds}s)"
            )
            self._tasks.append(
                asyncio.create_task(self._run_job(job), name=f"scheduler:{job.name}")
            )

    async def wait(self):
        """Wait until every job loop has finished."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def stop(self):
        """Cancel all job loops and wait for them to unwind."""
        self.running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Scheduler stopped")
