"""
Bounded executor for detached post-commit work.

The request thread hands work off and returns immediately; the work keeps
running even if the client disconnects. Tests call flush() to wait for
everything that was submitted instead of sleeping.
"""

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any

from core.logging import get_logger

logger = get_logger("background")


class BackgroundExecutor:
    """
    Usage:
        executor = BackgroundExecutor(max_workers=4)
        executor.submit(publisher.publish, "task-created", payload)
        ...
        executor.flush(timeout=5)   # tests only
    """

    def __init__(self, max_workers: int = 4, name: str = "taskflow-bg"):
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, fn: Callable[..., Any], *args: Any, label: str | None = None, **kwargs: Any) -> Future:
        """Run ``fn`` in the background. Exceptions are logged, never re-raised to the submitter."""
        label = label or getattr(fn, "__qualname__", repr(fn))
        future = self._pool.submit(fn, *args, **kwargs)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(lambda done: self._finished(done, label))
        return future

    def _finished(self, future: Future, label: str) -> None:
        with self._lock:
            self._pending.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error(
                "background_work_failed",
                work=label,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def flush(self, timeout: float | None = None) -> bool:
        """Wait until every submitted item has finished. Returns False on timeout."""
        with self._lock:
            snapshot = list(self._pending)
        if not snapshot:
            return True
        _, not_done = wait(snapshot, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)
