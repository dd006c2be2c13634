from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional

from dualsub.app.logging_setup import log_event


class TaskSupervisor:
    """
    Owner of a stage's background work.

    Each named pool is a ThreadPoolExecutor; submitted work is tracked until it
    finishes. Failures are logged with traceback, counted, and reported to
    `on_failure`, so no background error goes unseen. `shutdown()` cancels
    queued work and does not wait for calls already running.
    """

    def __init__(
        self,
        name: str,
        *,
        logger: logging.Logger | None = None,
        on_failure: Optional[Callable[[str, BaseException], None]] = None,
    ) -> None:
        self.name = name
        self.logger = logger
        self.on_failure = on_failure
        self.failures = 0
        self._pools: Dict[str, ThreadPoolExecutor] = {}
        self._inflight: set[Future] = set()
        self._lock = threading.Lock()
        self._closed = False

    def add_pool(self, pool: str, max_workers: int) -> None:
        if max_workers <= 0:
            raise ValueError(f"{pool}: max_workers must be > 0")
        with self._lock:
            if pool in self._pools:
                raise ValueError(f"pool already exists: {pool}")
            self._pools[pool] = ThreadPoolExecutor(
                max_workers=int(max_workers),
                thread_name_prefix=f"dualsub-{self.name}-{pool}",
            )

    def submit(self, pool: str, label: str, fn: Callable[..., Any], *args: Any) -> Optional[Future]:
        with self._lock:
            if self._closed:
                return None
            future = self._pools[pool].submit(fn, *args)
            self._inflight.add(future)
        future.add_done_callback(lambda f: self._on_done(label, f))
        return future

    def _on_done(self, label: str, future: Future) -> None:
        with self._lock:
            self._inflight.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is None:
            return
        with self._lock:
            self.failures += 1
        log_event(
            self.logger,
            logging.ERROR,
            "background_task_failed",
            supervisor=self.name,
            task=label,
            error=repr(exc),
        )
        if self.on_failure is not None:
            self.on_failure(label, exc)

    def pending(self) -> int:
        with self._lock:
            return len(self._inflight)

    def inflight(self) -> List[Future]:
        with self._lock:
            return list(self._inflight)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until all tracked work has finished; work may submit more work."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            futures = self.inflight()
            if not futures:
                return True
            remaining = None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
            _done, not_done = wait(futures, timeout=remaining)
            if not not_done:
                # done callbacks may not have untracked the futures yet
                time.sleep(0.001)

    def shutdown(self, *, wait: bool = False) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            pools = list(self._pools.values())
        for executor in pools:
            executor.shutdown(wait=wait, cancel_futures=True)
        log_event(self.logger, logging.INFO, "supervisor_shutdown", supervisor=self.name)
