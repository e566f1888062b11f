"""Single-slot coordination of long-running, cancellable operations."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from contextlib import contextmanager
from typing import Any

from bluetui.core.errors import BusyError

LOGGER = logging.getLogger(__name__)


class Operation:
    """Handle for a running operation: its cancellation flag and result."""

    def __init__(self, name: str, on_cancel: Callable[[], object]) -> None:
        self.name = name
        self.on_cancel = on_cancel
        self.future: Future[Any] = Future()
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def wait_cancelled(self, timeout: float | None = None) -> bool:
        return self._cancelled.wait(timeout)

    def result(self, timeout: float | None = None) -> Any:
        return self.future.result(timeout)

    def done(self) -> bool:
        return self.future.done()

    def _signal(self) -> None:
        self._cancelled.set()


class OperationCoordinator:
    """At most one user-initiated operation runs at a time.

    ``start`` returns immediately; the work runs on the executor and clears
    the slot when it finishes without invoking the cancel callback. ``cancel``
    clears the slot and runs the callback exactly once, asynchronously.
    """

    def __init__(self, executor: Executor | None = None) -> None:
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="bluetui-op")
        self._lock = threading.Lock()
        self._active: Operation | None = None

    @property
    def active(self) -> Operation | None:
        with self._lock:
            return self._active

    def start(
        self,
        work: Callable[[Operation], Any],
        on_cancel: Callable[[], object],
        *,
        name: str = "operation",
    ) -> Operation:
        operation = Operation(name, on_cancel)
        with self._lock:
            if self._active is not None:
                raise BusyError(f"Operation still in progress: {self._active.name}")
            self._active = operation
        try:
            self._executor.submit(self._run, operation, work)
        except RuntimeError:
            self.release(operation)
            raise
        return operation

    def release(self, operation: Operation) -> bool:
        """Free the slot held by ``operation`` without cancelling it."""
        with self._lock:
            if self._active is not operation:
                return False
            self._active = None
            return True

    def cancel(self) -> Future[Any] | None:
        with self._lock:
            operation = self._active
            self._active = None
        if operation is None:
            return None
        operation._signal()
        LOGGER.info("Cancelling %s", operation.name)
        return self._executor.submit(operation.on_cancel)

    def _run(self, operation: Operation, work: Callable[[Operation], Any]) -> None:
        # The slot is free before anyone waiting on the result wakes up.
        if not operation.future.set_running_or_notify_cancel():
            self.release(operation)
            return
        try:
            result = work(operation)
        except BaseException as exc:
            self.release(operation)
            operation.future.set_exception(exc)
        else:
            self.release(operation)
            operation.future.set_result(result)


class AdapterLocks:
    """Per-adapter advisory locks that are never waited on."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, adapter_path: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(adapter_path, threading.Lock())

    def try_acquire(self, adapter_path: str) -> bool:
        return self._lock_for(adapter_path).acquire(blocking=False)

    def release(self, adapter_path: str) -> None:
        lock = self._lock_for(adapter_path)
        if lock.locked():
            lock.release()

    def locked(self, adapter_path: str) -> bool:
        return self._lock_for(adapter_path).locked()

    @contextmanager
    def hold(self, adapter_path: str) -> Iterator[None]:
        if not self.try_acquire(adapter_path):
            raise BusyError(f"Operation in progress on {adapter_path}")
        try:
            yield
        finally:
            self.release(adapter_path)
