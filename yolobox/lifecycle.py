"""
Asynchronous, one-shot model loading with a lock-free readiness flag.

A `ModelLifecycle` loads exactly once. Readiness can be polled from any thread
without blocking; everything else is meant for the owning processing thread.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Generic, Optional, TypeVar

from .errors import LoadFailedError, NotReadyError, StateError

logger = logging.getLogger(__name__)

H = TypeVar("H")


class LifecycleState(enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


class ModelLifecycle(Generic[H]):
    """
    Owns a model handle produced by a background load.

    - begin_load() returns immediately; the loader runs on a single worker thread
    - is_ready() is safe from any thread and never blocks
    - require_ready() gives the handle or raises NotReadyError / LoadFailedError
    - close() waits for an in-flight load before releasing the handle
    """

    def __init__(self, name: str = "model"):
        self.name = name
        self._ready = threading.Event()
        self._failed = threading.Event()
        self._state = LifecycleState.IDLE
        self._handle: Optional[H] = None
        self._error: Optional[BaseException] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._future: Optional[Future] = None

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #
    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def error(self) -> Optional[BaseException]:
        """The exception that made the load fail, if it did."""
        return self._error

    def is_ready(self) -> bool:
        return self._ready.is_set()

    def require_ready(self) -> H:
        if self._ready.is_set() and self._handle is not None:
            return self._handle
        if self._failed.is_set():
            raise LoadFailedError(f"{self.name} failed to load: {self._error}") from self._error
        if self._state is LifecycleState.CLOSED:
            raise NotReadyError(f"{self.name} has been released")
        if self._state is LifecycleState.IDLE:
            raise NotReadyError(f"{self.name} load was never started")
        raise NotReadyError(f"{self.name} is still loading")

    # ------------------------------------------------------------------ #
    # Load / teardown
    # ------------------------------------------------------------------ #
    def begin_load(self, loader: Callable[[Any], H], config: Any = None) -> None:
        if self._state is not LifecycleState.IDLE:
            raise StateError(f"{self.name} load already started (state={self._state.value}); create a new instance")

        self._state = LifecycleState.LOADING
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"{self.name}-load")
        self._future = self._executor.submit(self._run_load, loader, config)
        logger.info("Started loading %s", self.name)

    def _run_load(self, loader: Callable[[Any], H], config: Any) -> None:
        t0 = time.perf_counter()
        try:
            handle = loader(config)
        except Exception as exc:
            self._error = exc
            self._state = LifecycleState.FAILED
            self._failed.set()
            logger.error("Failed to load %s", self.name, exc_info=exc)
            return

        self._handle = handle
        self._state = LifecycleState.READY
        self._ready.set()
        logger.info("Loaded %s in %.1f ms", self.name, (time.perf_counter() - t0) * 1000.0)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the load has finished (either way) or `timeout` elapses.

        Operations never call this; it exists for callers that want to impose
        their own bound. Returns True when the load is no longer in flight.
        """
        if self._future is None:
            return self._state is not LifecycleState.LOADING
        if self._future.cancelled():
            return True
        try:
            self._future.result(timeout=timeout)
        except FutureTimeoutError:
            return False
        return True

    def close(self) -> None:
        if self._state is LifecycleState.CLOSED:
            return

        if self._future is not None:
            if self._future.cancel():
                logger.info("Cancelled pending load of %s", self.name)
            else:
                # running loads cannot be interrupted; wait so the handle is released below
                self._future.result()
        if self._executor is not None:
            self._executor.shutdown(wait=True)

        handle, self._handle = self._handle, None
        self._ready.clear()
        self._state = LifecycleState.CLOSED
        if handle is not None:
            close = getattr(handle, "close", None)
            if callable(close):
                close()
            logger.info("Released %s", self.name)

    def __enter__(self) -> "ModelLifecycle[H]":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
