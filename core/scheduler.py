"""
Core Module - Scheduling & Locking.

============================================================
RESPONSIBILITY
============================================================
Cancellable background work and per-key mutual exclusion.

- PeriodicTask: fixed-interval loop with start/stop lifecycle
  (risk monitor tick, reconciliation sweep)
- TaskScheduler: delayed one-shot coroutines tracked so they can
  be awaited or cancelled together (confirmation trackers)
- KeyedLocks: one asyncio.Lock per key (client id, settlement id),
  dropped once no task holds or waits for it

No threads are created; everything runs on the event loop.

============================================================
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional, Set


logger = logging.getLogger(__name__)


# ============================================================
# PERIODIC TASK
# ============================================================

class PeriodicTask:
    """
    Runs a coroutine function on a fixed interval.

    Errors raised by one run are logged and the loop continues.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        func: Callable[[], Awaitable[object]],
        run_immediately: bool = False,
    ):
        """
        Initialize periodic task.

        Args:
            name: Name used in logs
            interval_seconds: Delay between runs
            func: Coroutine function to run
            run_immediately: Run once before the first sleep
        """
        self._name = name
        self._interval = interval_seconds
        self._func = func
        self._run_immediately = run_immediately
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._run_count = 0

    @property
    def is_running(self) -> bool:
        """Whether the loop is active."""
        return self._running

    @property
    def run_count(self) -> int:
        """Number of completed runs."""
        return self._run_count

    async def start(self) -> None:
        """Start the loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run(), name=self._name)
        logger.info(f"{self._name} started (interval={self._interval}s)")

    async def stop(self) -> None:
        """Stop the loop and wait for it to exit."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info(f"{self._name} stopped")

    async def _run(self) -> None:
        if self._run_immediately:
            await self._run_once()

        while self._running:
            try:
                await asyncio.sleep(self._interval)
            except asyncio.CancelledError:
                break

            if not self._running:
                break

            await self._run_once()

    async def _run_once(self) -> None:
        try:
            await self._func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{self._name} run failed: {e}")
        finally:
            self._run_count += 1


# ============================================================
# TASK SCHEDULER
# ============================================================

class TaskScheduler:
    """
    Tracks delayed one-shot coroutines.

    Tasks remove themselves from the tracked set when done.
    """

    def __init__(self, name: str = "scheduler"):
        self._name = name
        self._tasks: Set[asyncio.Task] = set()

    def schedule(
        self,
        delay_seconds: float,
        func: Callable[[], Awaitable[object]],
        name: Optional[str] = None,
    ) -> asyncio.Task:
        """
        Run func after a delay.

        Args:
            delay_seconds: Delay before running
            func: Coroutine function to run
            name: Task name for debugging

        Returns:
            The created asyncio.Task
        """
        async def runner() -> None:
            if delay_seconds > 0:
                await asyncio.sleep(delay_seconds)
            await func()

        task = asyncio.create_task(runner(), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"{self._name}: task {task.get_name()} failed: {error}")

    @property
    def pending_count(self) -> int:
        """Number of tasks not yet finished."""
        return len(self._tasks)

    async def join(self) -> None:
        """Wait until every tracked task (including ones they schedule) is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        """Cancel every tracked task."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


# ============================================================
# KEYED LOCKS
# ============================================================

class KeyedLocks:
    """
    One asyncio.Lock per key (client id, settlement id).

    A key's lock only exists while some task holds or waits for it,
    so the map stays as small as the set of keys in contention.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Acquire the lock for a key for the duration of the block."""
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1

        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def locked(self, key: str) -> bool:
        """Whether some task currently holds the key."""
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
