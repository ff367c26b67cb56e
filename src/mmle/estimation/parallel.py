"""Fork-join execution of recursive divide-and-conquer tasks.

Both EM phases split their work in halves: the right half is forked to the
pool while the calling thread computes the left half, then joins. A join
on a task that no worker has started yet runs it in the joining thread
instead of waiting, so a bounded pool never deadlocks on nested joins.
"""

import os
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class ForkedTask(Generic[T]):
    """Handle to a forked computation."""

    def __init__(
        self,
        fn: Callable[..., T],
        args: tuple[Any, ...],
        future: Optional[Future] = None,
    ) -> None:
        self._fn = fn
        self._args = args
        self._future = future

    def join(self) -> T:
        """Block until the result is available and return it.

        Exceptions raised by the task propagate to the caller.
        """
        if self._future is None or self._future.cancel():
            return self._fn(*self._args)
        return self._future.result()


class ForkJoinPool:
    """Thread pool for fork-join parallelism over one estimation run.

    Parameters
    ----------
    n_workers : int, optional
        Number of worker threads. Defaults to ``os.cpu_count()``. With a
        single worker forked tasks run lazily in the joining thread.

    Examples
    --------
    >>> with ForkJoinPool(4) as pool:
    ...     task = pool.fork(sum, [1, 2, 3])
    ...     task.join()
    6
    """

    def __init__(self, n_workers: Optional[int] = None) -> None:
        if n_workers is None or n_workers == -1:
            n_workers = os.cpu_count() or 1
        if n_workers < 1:
            raise ValueError("n_workers must be at least 1")
        self.n_workers = n_workers
        self._executor: Optional[ThreadPoolExecutor] = None
        if n_workers > 1:
            self._executor = ThreadPoolExecutor(
                max_workers=n_workers, thread_name_prefix="mmle-forkjoin"
            )

    def fork(self, fn: Callable[..., T], *args: Any) -> ForkedTask[T]:
        """Schedule ``fn(*args)`` and return a handle to join later."""
        if self._executor is None:
            return ForkedTask(fn, args)
        return ForkedTask(fn, args, self._executor.submit(fn, *args))

    def invoke(self, fn: Callable[..., T], *args: Any) -> T:
        """Run ``fn(*args)`` as the root task in the calling thread."""
        return fn(*args)

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> "ForkJoinPool":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()

    def __repr__(self) -> str:
        return f"ForkJoinPool(n_workers={self.n_workers})"
