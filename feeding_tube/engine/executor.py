"""Fixed-concurrency task runner with a drainable wait-group."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from threading import Condition
from typing import Any, Callable, TypeVar

T = TypeVar("T")


class BoundedExecutor:
    """Run at most ``max_workers`` tasks at once; queue the rest in FIFO order.

    Each task resolves its own future, so one failure never affects its
    siblings. :meth:`drain` waits on a condition variable counting outstanding
    tasks and may be called while other threads keep submitting.
    """

    def __init__(self, max_workers: int, thread_name_prefix: str = "feeding-tube") -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix=thread_name_prefix
        )
        self._outstanding = 0
        self._idle = Condition()

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> Future[T]:
        with self._idle:
            self._outstanding += 1
        try:
            future = self._executor.submit(fn, *args, **kwargs)
        except BaseException:
            self._task_done(None)
            raise
        future.add_done_callback(self._task_done)
        return future

    def _task_done(self, _future: Future | None) -> None:
        with self._idle:
            self._outstanding -= 1
            if self._outstanding == 0:
                self._idle.notify_all()

    @property
    def outstanding(self) -> int:
        with self._idle:
            return self._outstanding

    def drain(self, timeout: float | None = None) -> bool:
        """Block until nothing is queued or running; ``False`` if ``timeout`` expired."""

        with self._idle:
            return self._idle.wait_for(lambda: self._outstanding == 0, timeout=timeout)

    def shutdown(self, wait: bool = True, cancel_pending: bool = False) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=cancel_pending)

    def __enter__(self) -> "BoundedExecutor":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.shutdown(wait=True)


__all__ = ["BoundedExecutor"]
