"""
notify/tasks.py -- Bounded background pool for fire-and-forget work.

Used for side effects that must not hold up a response (the "new trusted
device" email). submit() returns immediately; a failing task is logged with
its traceback and otherwise ignored. At most queue_limit tasks may be queued
or running; further submissions are refused and logged rather than growing
the queue without bound.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor

logger = logging.getLogger("permitauth.notify.tasks")


class TaskPool:
    def __init__(self, workers: int = 2, queue_limit: int = 100, log: logging.Logger | None = None) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max(workers, 1), thread_name_prefix="permitauth-task")
        self._slots = threading.BoundedSemaphore(max(queue_limit, 1))
        self._log = log or logger

    def submit(self, name: str, fn: Callable[..., object], *args, **kwargs) -> Future | None:
        """Schedule fn(*args, **kwargs). Returns None if the pool is saturated."""
        if not self._slots.acquire(blocking=False):
            self._log.error("Task pool full -- dropping task %s", name)
            return None
        try:
            future = self._executor.submit(fn, *args, **kwargs)
        except RuntimeError:
            self._slots.release()
            self._log.error("Task pool shut down -- dropping task %s", name)
            return None
        future.add_done_callback(lambda f: self._finished(name, f))
        return future

    def _finished(self, name: str, future: Future) -> None:
        self._slots.release()
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            self._log.error("Background task %s failed", name, exc_info=(type(exc), exc, exc.__traceback__))

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
