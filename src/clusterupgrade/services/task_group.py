"""Fixed-size task group with an explicit join barrier."""

from concurrent.futures import ALL_COMPLETED, ThreadPoolExecutor, wait
from typing import Any, Callable, List, Optional, Tuple


class TaskGroup:
    """Runs one task per worker and joins them all before anyone proceeds.

    ``join()`` waits for every spawned task, successful or not, and only then
    re-raises the failure of the earliest-spawned failed task.
    """

    def __init__(self, size: int, name: str = "task"):
        self.size = size
        self.name = name
        self._executor: Optional[ThreadPoolExecutor] = None
        self._futures: List[Tuple[Any, Any]] = []
        self.failures: List[Tuple[Any, BaseException]] = []

    def __enter__(self):
        self._executor = ThreadPoolExecutor(max_workers=max(1, self.size), thread_name_prefix=self.name)
        return self

    def __exit__(self, exc_type, exc, tb):
        self._executor.shutdown(wait=True)
        self._executor = None
        return False

    def spawn(self, label: Any, fn: Callable, *args, **kwargs):
        if self._executor is None:
            raise RuntimeError("TaskGroup must be entered before spawning tasks")
        self._futures.append((label, self._executor.submit(fn, *args, **kwargs)))

    def join(self) -> List[Any]:
        wait([future for _, future in self._futures], return_when=ALL_COMPLETED)

        self.failures = [
            (label, future.exception()) for label, future in self._futures if future.exception() is not None
        ]
        if self.failures:
            raise self.failures[0][1]
        return [future.result() for _, future in self._futures]
