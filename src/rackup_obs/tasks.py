"""
Deferred task queue.

Runs delayed, fire-and-forget work (post-finalization renames, discard
cleanup) on a single background worker, detached from the HTTP request
that scheduled it. Failures are logged and never retried.
"""

import heapq
import itertools
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(order=True)
class DeferredTask:
    """A unit of delayed work."""
    due: float
    seq: int
    func: Callable[..., Any] = field(compare=False)
    args: Tuple[Any, ...] = field(compare=False, default=())
    description: str = field(compare=False, default="")


class DeferredTaskQueue:
    """
    Single-worker delayed task runner.

    Features:
    - Tasks run in due-time order
    - Each failure is logged with the task's description
    - join() waits until every scheduled task has run
    """

    def __init__(self, name: str = "deferred-tasks"):
        self.name = name
        self._heap: List[DeferredTask] = []
        self._counter = itertools.count()
        self._cond = threading.Condition()
        self._pending = 0
        self._running = False
        self._worker: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start the worker thread."""
        with self._cond:
            if self._running:
                return
            self._running = True

        self._worker = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._worker.start()
        logger.info(f"Deferred task queue '{self.name}' started")

    def stop(self, timeout: float = 5.0) -> None:
        """Let scheduled tasks finish, then stop the worker."""
        with self._cond:
            self._running = False
            self._cond.notify_all()
        if self._worker:
            self._worker.join(timeout=timeout)
        if self._heap:
            logger.warning(f"{len(self._heap)} deferred task(s) dropped at shutdown")

    def schedule(
        self,
        delay: float,
        func: Callable[..., Any],
        *args: Any,
        description: str = "",
    ) -> DeferredTask:
        """
        Run ``func(*args)`` after ``delay`` seconds.

        Returns:
            The queued task
        """
        task = DeferredTask(
            due=time.monotonic() + max(delay, 0.0),
            seq=next(self._counter),
            func=func,
            args=args,
            description=description or getattr(func, "__name__", "task"),
        )
        with self._cond:
            heapq.heappush(self._heap, task)
            self._pending += 1
            self._cond.notify_all()

        if not self._running:
            self.start()

        logger.debug(f"Scheduled '{task.description}' in {delay:g}s")
        return task

    @property
    def pending(self) -> int:
        with self._cond:
            return self._pending

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for all scheduled tasks to finish.

        Returns:
            True if the queue drained before the timeout
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._pending:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._cond.wait(remaining)
            return True

    def _run(self) -> None:
        while True:
            with self._cond:
                while True:
                    if self._heap:
                        wait = self._heap[0].due - time.monotonic()
                        if wait <= 0:
                            task = heapq.heappop(self._heap)
                            break
                    elif not self._running:
                        return
                    else:
                        wait = None
                    self._cond.wait(wait)

            self._execute(task)

            with self._cond:
                self._pending -= 1
                self._cond.notify_all()

    def _execute(self, task: DeferredTask) -> None:
        try:
            task.func(*task.args)
        except Exception:
            logger.exception(f"Deferred task '{task.description}' failed")
