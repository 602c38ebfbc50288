"""Job dispatcher interface and in-process implementation."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Dict, Optional

from beatflo.exceptions import BeatfloError
from beatflo.jobs.registry import JobRegistry

logger = logging.getLogger(__name__)

# Builds the orchestration coroutine for one job. Called once, when the
# dispatcher is ready to run it.
JobFactory = Callable[[], Awaitable[None]]


class JobDispatcher(ABC):
    """Abstract interface for running job orchestrations."""

    @abstractmethod
    def submit(self, job_id: str, factory: JobFactory) -> None:
        """Schedule a job's orchestration. Returns immediately."""
        ...

    @abstractmethod
    def cancel(self, job_id: str) -> bool:
        """Cancel a running job. Returns False if nothing was running."""
        ...

    @abstractmethod
    def is_running(self, job_id: str) -> bool:
        ...

    @abstractmethod
    def active_count(self) -> int:
        """Number of orchestrations currently scheduled or running."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Start the dispatcher."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the dispatcher, cancelling outstanding work."""
        ...


class InProcessDispatcher(JobDispatcher):
    """Runs orchestrations as tracked asyncio tasks on the current loop.

    A semaphore bounds how many run at once; jobs waiting for a slot stay in
    the starting state. Every task is wrapped so that failures, timeouts and
    cancellation end in a terminal error state instead of escaping the task.
    """

    def __init__(
        self,
        registry: JobRegistry,
        max_concurrent: int = 4,
        job_timeout: Optional[float] = None,
    ):
        self._registry = registry
        self._max_concurrent = max_concurrent
        self._job_timeout = job_timeout
        self._tasks: Dict[str, asyncio.Task] = {}
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._running = False

    async def start(self) -> None:
        self._semaphore = asyncio.Semaphore(self._max_concurrent)
        self._running = True

    async def stop(self) -> None:
        self._running = False
        tasks = list(self._tasks.values())
        for job_id, task in list(self._tasks.items()):
            task.cancel()
            self._registry.fail(job_id, "Job cancelled")
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    def submit(self, job_id: str, factory: JobFactory) -> None:
        if not self._running or self._semaphore is None:
            raise RuntimeError("Dispatcher is not running")
        task = asyncio.create_task(self._run(job_id, factory), name=f"job-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda _t: self._tasks.pop(job_id, None))

    def cancel(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        if task is None or task.done():
            return False
        task.cancel()
        # A task cancelled before its first step never reaches _run's handler
        self._registry.fail(job_id, "Job cancelled")
        return True

    def is_running(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        return task is not None and not task.done()

    def active_count(self) -> int:
        return sum(1 for t in self._tasks.values() if not t.done())

    async def _run(self, job_id: str, factory: JobFactory) -> None:
        """Task boundary: nothing raised by the orchestration escapes here."""
        try:
            async with self._semaphore:
                if self._job_timeout:
                    await asyncio.wait_for(factory(), timeout=self._job_timeout)
                else:
                    await factory()
        except asyncio.CancelledError:
            self._registry.fail(job_id, "Job cancelled")
            raise
        except asyncio.TimeoutError:
            logger.warning("Job %s exceeded %ss, aborted", job_id, self._job_timeout)
            self._registry.fail(job_id, "Job timed out")
        except BeatfloError as e:
            logger.warning("Job %s failed: %s", job_id, e)
            self._registry.fail(job_id, str(e))
        except Exception:
            logger.exception("Unexpected error in job %s", job_id)
            self._registry.fail(job_id, "Internal error")
