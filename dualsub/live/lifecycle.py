from __future__ import annotations

import bisect
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from dualsub.app.logging_setup import log_event
from dualsub.contracts import (
    DisplayEvent,
    DisplayEventKind,
    SubtitleKind,
    SubtitleState,
    TranscriptionResult,
)
from dualsub.live.translation import TranslationOutcome

UNTRANSLATED_MARKER = "[untranslated] "
_REMOVED_ID_LIMIT = 1024


class SubtitleSink(Protocol):
    def emit(self, event: DisplayEvent) -> None:
        ...


@dataclass
class SubtitleDisplayItem:
    segment_id: int
    start_ts: float
    created_at: float
    displayed_text: str = ""
    source_text: str = ""
    kind: SubtitleKind = SubtitleKind.PARTIAL
    state: SubtitleState = SubtitleState.ABSENT
    shown: bool = False
    final_at: Optional[float] = None
    expires_at: Optional[float] = None  # fade-out starts
    fade_ends_at: Optional[float] = None
    translation: Optional[TranslationOutcome] = None


class SubtitleLifecycleManager:
    """
    Own per-segment display state and turn transcription/translation updates
    into display events for a sink.

    States: absent -> partial -> final -> fading_out -> removed. A final
    overwrites a partial in place; a later translation updates the final text
    in place. Finals fade after `display_duration` and are removed after a
    further `fade_duration`. Events for a removed segment are ignored.

    Segments registered with `register()` are shown in start order: the first
    event of a segment is held back until every earlier-started registered
    segment has been shown or discarded.

    Past `max_visible` shown items, the oldest finals start fading early.
    Partials are never pushed out; they wait for their final.
    """

    def __init__(
        self,
        *,
        sink: SubtitleSink | Callable[[DisplayEvent], None],
        display_duration: float = 5.0,
        fade_duration: float = 0.5,
        max_visible: int = 3,
        untranslated_marker: str = UNTRANSLATED_MARKER,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        if display_duration <= 0:
            raise ValueError("display_duration must be > 0")
        if fade_duration < 0:
            raise ValueError("fade_duration must be >= 0")
        if max_visible <= 0:
            raise ValueError("max_visible must be > 0")

        self._emit_fn: Callable[[DisplayEvent], None] = getattr(sink, "emit", sink)  # type: ignore[assignment]
        self.display_duration = float(display_duration)
        self.fade_duration = float(fade_duration)
        self.max_visible = int(max_visible)
        self.untranslated_marker = untranslated_marker
        self.clock = clock
        self.logger = logger

        self._lock = threading.RLock()
        self._items: Dict[int, SubtitleDisplayItem] = {}
        self._waiting: List[Tuple[float, int]] = []  # registered, not yet shown
        self._removed: "OrderedDict[int, None]" = OrderedDict()

    # -- inputs -----------------------------------------------------------

    def register(self, segment_id: int, start_ts: float) -> None:
        with self._lock:
            if segment_id in self._removed or segment_id in self._items:
                return
            self._items[segment_id] = SubtitleDisplayItem(
                segment_id=segment_id,
                start_ts=float(start_ts),
                created_at=self.clock(),
            )
            bisect.insort(self._waiting, (float(start_ts), segment_id))

    def on_transcription(self, result: TranscriptionResult) -> None:
        with self._lock:
            if result.segment_id in self._removed:
                log_event(self.logger, logging.DEBUG, "late_event_ignored", segment_id=result.segment_id)
                return
            self.register(result.segment_id, result.start_ts)
            item = self._items[result.segment_id]
            now = self.clock()

            if result.is_final:
                if item.state in (SubtitleState.FINAL, SubtitleState.FADING_OUT):
                    return
                item.kind = SubtitleKind.FINAL
                item.state = SubtitleState.FINAL
                item.source_text = result.text
                item.displayed_text = result.text
                if item.shown:
                    self._show_final(item, now)
                    self._enforce_max_visible(now)
            else:
                if item.state not in (SubtitleState.ABSENT, SubtitleState.PARTIAL):
                    return
                item.kind = SubtitleKind.PARTIAL
                item.state = SubtitleState.PARTIAL
                item.source_text = result.text
                item.displayed_text = result.text
                if item.shown:
                    self._emit(DisplayEventKind.SHOW_PARTIAL, item, now)

            self._release_ready(now)

    def on_translation(self, outcome: TranslationOutcome) -> None:
        with self._lock:
            item = self._items.get(outcome.segment_id)
            if item is None or item.state not in (SubtitleState.FINAL, SubtitleState.FADING_OUT):
                return
            item.translation = outcome
            if item.shown:
                self._apply_translation(item, self.clock())

    def discard(self, segment_id: int) -> None:
        """Forget a segment that will never be finalized."""
        with self._lock:
            item = self._items.get(segment_id)
            if item is not None:
                self._remove(item, self.clock())
            self._release_ready(self.clock())

    def clear(self) -> None:
        """Hard clear: remove everything, shown or pending."""
        with self._lock:
            now = self.clock()
            for item in self._ordered(shown_only=False):
                self._remove(item, now)
            self._waiting.clear()

    def tick(self, now: Optional[float] = None) -> None:
        with self._lock:
            if now is None:
                now = self.clock()
            for item in self._ordered(shown_only=True):
                if item.state == SubtitleState.FINAL and item.expires_at is not None and now >= item.expires_at:
                    self._start_fade(item, now)
                if (
                    item.state == SubtitleState.FADING_OUT
                    and item.fade_ends_at is not None
                    and now >= item.fade_ends_at
                ):
                    self._remove(item, now)

    # -- views ------------------------------------------------------------

    def state_of(self, segment_id: int) -> SubtitleState:
        with self._lock:
            if segment_id in self._removed:
                return SubtitleState.REMOVED
            item = self._items.get(segment_id)
            return item.state if item is not None else SubtitleState.ABSENT

    def snapshot(self) -> List[SubtitleDisplayItem]:
        """Visible items, oldest utterance first."""
        with self._lock:
            return [replace(item) for item in self._ordered(shown_only=True)]

    def pending_count(self) -> int:
        with self._lock:
            return len(self._waiting)

    # -- internals --------------------------------------------------------

    def _ordered(self, *, shown_only: bool) -> List[SubtitleDisplayItem]:
        items = [it for it in self._items.values() if it.shown or not shown_only]
        return sorted(items, key=lambda it: (it.start_ts, it.segment_id))

    def _release_ready(self, now: float) -> None:
        while self._waiting:
            _start, segment_id = self._waiting[0]
            item = self._items.get(segment_id)
            if item is None:
                self._waiting.pop(0)
                continue
            if item.state == SubtitleState.ABSENT:
                break
            self._waiting.pop(0)
            item.shown = True
            if item.state == SubtitleState.PARTIAL:
                self._emit(DisplayEventKind.SHOW_PARTIAL, item, now)
            else:
                self._show_final(item, now)
                if item.translation is not None:
                    self._apply_translation(item, now)
            self._enforce_max_visible(now)

    def _show_final(self, item: SubtitleDisplayItem, now: float) -> None:
        item.final_at = now
        item.expires_at = now + self.display_duration
        self._emit(DisplayEventKind.SHOW_FINAL, item, now)

    def _apply_translation(self, item: SubtitleDisplayItem, now: float) -> None:
        outcome = item.translation
        if outcome is None:
            return
        if outcome.untranslated:
            item.displayed_text = f"{self.untranslated_marker}{outcome.text}"
        else:
            item.displayed_text = outcome.text
        if item.state == SubtitleState.FINAL and item.expires_at is not None:
            item.expires_at = max(item.expires_at, now + self.display_duration)
        self._emit(DisplayEventKind.UPDATE_TRANSLATION, item, now, untranslated=outcome.untranslated)

    def _start_fade(self, item: SubtitleDisplayItem, now: float) -> None:
        item.state = SubtitleState.FADING_OUT
        item.fade_ends_at = now + self.fade_duration
        self._emit(DisplayEventKind.FADE, item, now)

    def _enforce_max_visible(self, now: float) -> None:
        # only finals are pushed out early; a partial still waits for its final
        visible = [it for it in self._ordered(shown_only=True) if it.state != SubtitleState.FADING_OUT]
        excess = len(visible) - self.max_visible
        for item in visible:
            if excess <= 0:
                break
            if item.state != SubtitleState.FINAL:
                continue
            self._start_fade(item, now)
            if self.fade_duration == 0:
                self._remove(item, now)
            excess -= 1

    def _remove(self, item: SubtitleDisplayItem, now: float) -> None:
        if item.shown:
            self._emit(DisplayEventKind.REMOVE, item, now)
        item.state = SubtitleState.REMOVED
        self._items.pop(item.segment_id, None)
        self._removed[item.segment_id] = None
        while len(self._removed) > _REMOVED_ID_LIMIT:
            self._removed.popitem(last=False)

    def _emit(
        self,
        kind: DisplayEventKind,
        item: SubtitleDisplayItem,
        now: float,
        *,
        untranslated: bool = False,
    ) -> None:
        event = DisplayEvent(
            segment_id=item.segment_id,
            kind=kind,
            text="" if kind == DisplayEventKind.REMOVE else item.displayed_text,
            timestamp=now,
            start_ts=item.start_ts,
            source_text=item.source_text,
            untranslated=untranslated,
        )
        log_event(
            self.logger,
            logging.DEBUG,
            "display_event",
            segment_id=item.segment_id,
            kind=kind.value,
        )
        self._emit_fn(event)
