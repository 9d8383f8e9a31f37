#!/usr/bin/env python3

"""
executor.py

Managed thread pool for per-account work.

Accounts are independent, so the backup and cleanup loops can fan out over a
pool. With a single worker (the default) tasks run in the calling thread in
submission order, which keeps the run sequential. A global interrupt manager lets the
signal handler stop every active pool at once.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, Future, as_completed
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, TypeVar, Generic, Any, Optional

from hestiabackup.logger import get_logger

T = TypeVar('T')
R = TypeVar('R')


@dataclass
class TaskResult(Generic[T]):
    """Result wrapper for task execution."""
    success: bool
    result: Optional[T] = None
    exception: Optional[BaseException] = None
    item: Optional[Any] = None  # account the task ran for


class GlobalInterruptManager:
    """Tracks active executors so a signal handler can interrupt all of them."""

    def __init__(self):
        self._flag = threading.Event()
        self._executors: list[ManagedThreadPoolExecutor] = []
        self._lock = threading.Lock()
        self.logger = get_logger(__name__)

    def register_executor(self, executor: ManagedThreadPoolExecutor):
        with self._lock:
            if executor not in self._executors:
                self._executors.append(executor)

    def unregister_executor(self, executor: ManagedThreadPoolExecutor):
        with self._lock:
            if executor in self._executors:
                self._executors.remove(executor)

    def interrupt_all(self):
        """Signal interrupt to all registered executors."""
        self.logger.warning("Interrupt signaled - stopping all account workers...")
        self._flag.set()

        with self._lock:
            executors = list(self._executors)

        for executor in executors:
            try:
                executor.interrupt()
            except Exception as e:
                self.logger.error(f"Error interrupting executor {executor.name}: {e}")

    def is_interrupted(self) -> bool:
        return self._flag.is_set()

    def reset(self):
        """Reset the interrupt state (for testing)."""
        self._flag.clear()
        with self._lock:
            self._executors.clear()


_global_interrupt_manager = GlobalInterruptManager()


class ManagedThreadPoolExecutor:
    """
    Thread pool that stops scheduling work once interrupted and turns each
    task outcome into a TaskResult instead of raising.
    """

    def __init__(self, max_workers: int, name: str = "Worker", progress_interval: int = 25):
        self.logger = get_logger(__name__)
        self.max_workers = max(1, max_workers)
        self.name = name
        self.progress_interval = progress_interval
        self.interrupt_flag = threading.Event()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._futures: list[Future] = []
        self._lock = threading.Lock()

    def __enter__(self):
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix=self.name)
        _global_interrupt_manager.register_executor(self)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _global_interrupt_manager.unregister_executor(self)
        self.shutdown(wait=True)
        return False  # Don't suppress exceptions

    def is_interrupted(self) -> bool:
        return self.interrupt_flag.is_set() or _global_interrupt_manager.is_interrupted()

    def submit(self, fn: Callable[[T], R], item: T) -> Future[R]:
        if self._executor is None:
            raise RuntimeError("Executor not started. Use context manager.")
        if self.is_interrupted():
            raise InterruptedError("Executor has been interrupted")

        def wrapped():
            if self.is_interrupted():
                raise InterruptedError("Task cancelled due to interrupt")
            return fn(item)

        future = self._executor.submit(wrapped)
        with self._lock:
            self._futures.append(future)
        return future

    def _outcome(self, item: T, call: Callable[[], R]) -> TaskResult[R]:
        try:
            return TaskResult(success=True, result=call(), item=item)
        except InterruptedError as e:
            self.logger.warning(f"Task interrupted for account: {item}")
            return TaskResult(success=False, exception=e, item=item)
        except Exception as e:
            self.logger.error(f"Task failed for account {item}: {e}", exc_info=True)
            return TaskResult(success=False, exception=e, item=item)

    def _run_inline(self, fn: Callable[[T], R], items: list[T]) -> Iterator[TaskResult[R]]:
        # One worker: run in the calling thread, strictly in order
        for item in items:
            if self.is_interrupted():
                self.logger.warning(f"{self.name} interrupted, {item} and later accounts not started")
                return
            yield self._outcome(item, lambda: fn(item))

    def _run_pooled(self, fn: Callable[[T], R], items: list[T]) -> Iterator[TaskResult[R]]:
        futures_map: dict[Future[R], T] = {}
        for item in items:
            if self.is_interrupted():
                self.logger.warning(f"{self.name} interrupted before all accounts were scheduled")
                break
            futures_map[self.submit(fn, item)] = item

        for future in as_completed(futures_map.keys()):
            if self.is_interrupted():
                self.logger.warning(f"{self.name} interrupted, stopping result collection")
                return
            yield self._outcome(futures_map[future], future.result)

    def map(self, fn: Callable[[T], R], items: Iterable[T]) -> list[TaskResult[R]]:
        """
        Run `fn` for every item and collect TaskResults.

        With one worker results come back in item order, otherwise in
        completion order. A task that raises is logged and reported as
        unsuccessful; the remaining items still run. KeyboardInterrupt sets
        the interrupt flag and propagates.
        """
        if self._executor is None:
            raise RuntimeError("Executor not started. Use context manager.")

        results: list[TaskResult[R]] = []
        items_list = list(items)
        total = len(items_list)
        if total == 0:
            return results

        self.logger.debug(f"Starting {self.name} for {total} accounts with {self.max_workers} workers")
        runner = self._run_inline if self.max_workers == 1 else self._run_pooled

        try:
            for task_res in runner(fn, items_list):
                results.append(task_res)
                if len(results) % self.progress_interval == 0 and len(results) != total:
                    self.logger.info(f"[{self.name} Progress] {len(results)}/{total} accounts done")

        except KeyboardInterrupt:
            self.logger.warning(f"{self.name} received KeyboardInterrupt")
            self.interrupt_flag.set()
            raise

        return results

    def shutdown(self, wait: bool = True, cancel_futures: bool = True):
        if self._executor is None:
            return

        if cancel_futures:
            with self._lock:
                for future in self._futures:
                    if not future.done():
                        future.cancel()

        try:
            self._executor.shutdown(wait=wait, cancel_futures=cancel_futures)
        except Exception as e:
            self.logger.error(f"Error during executor shutdown: {e}")
        finally:
            self._executor = None
            self._futures.clear()

    def interrupt(self):
        """Signal interrupt to all running tasks."""
        self.logger.warning(f"Interrupting {self.name}...")
        self.interrupt_flag.set()
        self.shutdown(wait=False, cancel_futures=True)


def create_managed_executor(max_workers: int, name: str = "Worker",
                            progress_interval: int = 25) -> ManagedThreadPoolExecutor:
    return ManagedThreadPoolExecutor(max_workers=max_workers, name=name, progress_interval=progress_interval)


def get_global_interrupt_manager() -> GlobalInterruptManager:
    return _global_interrupt_manager
