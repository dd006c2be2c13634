from __future__ import annotations

import queue
import threading
from typing import Callable, Optional

from dualsub.contracts import DisplayEvent, DisplayEventKind


class SubtitleBus:
    """
    Thread-safe handoff from worker threads -> UI thread.
    Workers emit DisplayEvents. UI polls (non-blocking).
    """
    def __init__(self, maxsize: int = 100):
        self.q: "queue.Queue[DisplayEvent]" = queue.Queue(maxsize=maxsize)
        self.dropped = 0
        self._lock = threading.Lock()

    def emit(self, event: DisplayEvent) -> None:
        with self._lock:
            try:
                self.q.put_nowait(event)
                return
            except queue.Full:
                pass
            # drop oldest to keep UI responsive
            try:
                _ = self.q.get_nowait()
                self.dropped += 1
            except queue.Empty:
                pass
            try:
                self.q.put_nowait(event)
            except queue.Full:
                self.dropped += 1

    def pop(self) -> Optional[DisplayEvent]:
        try:
            return self.q.get_nowait()
        except queue.Empty:
            return None


class ConsoleSink:
    """Print display events as console lines."""

    def __init__(self, *, show_partials: bool = True, print_fn: Callable[[str], None] = print) -> None:
        self.show_partials = show_partials
        self.print_fn = print_fn

    def emit(self, event: DisplayEvent) -> None:
        line = format_event(event, show_partials=self.show_partials)
        if line:
            self.print_fn(line)


def format_event(event: DisplayEvent, *, show_partials: bool = True) -> str:
    tag = f"[seg {event.segment_id} @{event.start_ts:.2f}]"
    if event.kind == DisplayEventKind.SHOW_PARTIAL:
        return f"{tag} ... {event.text}" if show_partials else ""
    if event.kind == DisplayEventKind.SHOW_FINAL:
        return f"{tag} EN: {event.text}"
    if event.kind == DisplayEventKind.UPDATE_TRANSLATION:
        return f"{tag} JA: {event.text}"
    return ""
