from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum


class RuntimeState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    DEGRADED = "degraded"
    ERROR = "error"


@dataclass
class RuntimeStateTracker:
    state: RuntimeState = RuntimeState.STOPPED
    last_error: str | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def set_starting(self) -> None:
        with self._lock:
            self.state = RuntimeState.STARTING
            self.last_error = None

    def set_running(self) -> None:
        with self._lock:
            if self.state in (RuntimeState.STARTING, RuntimeState.DEGRADED):
                self.state = RuntimeState.RUNNING

    def set_degraded(self, degraded: bool) -> None:
        with self._lock:
            if degraded and self.state == RuntimeState.RUNNING:
                self.state = RuntimeState.DEGRADED
            elif not degraded and self.state == RuntimeState.DEGRADED:
                self.state = RuntimeState.RUNNING

    def set_stopped(self) -> None:
        with self._lock:
            if self.state != RuntimeState.ERROR:
                self.state = RuntimeState.STOPPED

    def set_error(self, detail: str) -> None:
        with self._lock:
            self.state = RuntimeState.ERROR
            self.last_error = detail

    @property
    def active(self) -> bool:
        return self.state in (RuntimeState.STARTING, RuntimeState.RUNNING, RuntimeState.DEGRADED)
