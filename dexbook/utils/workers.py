"""
Script contains the worker pools used by a build run
"""

from __future__ import annotations

import logging
from concurrent import futures
from typing import Callable, Iterable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class ThreadExecutor:
    """
    Bounded thread pool for network-bound work (page fetches, image sources).

    The functions handed to :meth:`map_ordered` deal with recoverable
    errors themselves.  Anything they raise is fatal: pending work is
    cancelled and the exception propagates to the caller.
    """

    def __init__(self, max_workers: int, name: str = "dexbook"):
        self.executor = futures.ThreadPoolExecutor(
            max_workers=max(1, max_workers), thread_name_prefix=name
        )
        self.name = name

    def __enter__(self) -> "ThreadExecutor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown(cancel=exc_type is not None)

    def shutdown(self, cancel: bool = False) -> None:
        self.executor.shutdown(wait=True, cancel_futures=cancel)

    def submit(self, fn, *args, **kwargs):
        return self.executor.submit(fn, *args, **kwargs)

    def wait_on_futures(self, futures_iter) -> None:
        """Block until every future is done, or until the first one fails."""
        futures_list = list(futures_iter)
        logger.debug("%s: waiting on %d futures", self.name, len(futures_list))
        done, pending = futures.wait(futures_list, return_when=futures.FIRST_EXCEPTION)
        failed = next((f for f in done if not f.cancelled() and f.exception() is not None), None)
        if failed is not None:
            for future in pending:
                future.cancel()
            self.shutdown(cancel=True)
            raise failed.exception()
        logger.debug("%s: done waiting", self.name)

    def map_ordered(self, fn: Callable[[T], R], items: Iterable[T]) -> list[R]:
        """Run *fn* over *items* in parallel; results keep the input order."""
        futures_list = [self.submit(fn, item) for item in items]
        self.wait_on_futures(futures_list)
        return [future.result() for future in futures_list]


class ProcessExecutor:
    """Process pool for CPU-bound image encoding.

    ``max_workers=0`` means no pool: :attr:`executor` is ``None`` and the
    caller encodes inline.
    """

    def __init__(self, max_workers: int):
        self.executor: Optional[futures.ProcessPoolExecutor] = (
            futures.ProcessPoolExecutor(max_workers=max_workers) if max_workers > 0 else None
        )

    def __enter__(self) -> "ProcessExecutor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown(cancel=exc_type is not None)

    def shutdown(self, cancel: bool = False) -> None:
        if self.executor is not None:
            self.executor.shutdown(wait=True, cancel_futures=cancel)
