from __future__ import annotations

import logging
import re
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from dualsub.app.logging_setup import log_event
from dualsub.asr.base import TranscriptionProvider, TranscriptionRequest
from dualsub.contracts import GameProfile, SpeechSegment, TranscriptionResult
from dualsub.live.supervisor import TaskSupervisor
from dualsub.nlp.dictionary import PATTERN_PREFIX, SubstitutionTable

_RECENT_TEXT_LIMIT = 16


@dataclass
class _SegmentState:
    segment: SpeechSegment
    submitted_at: float
    last_text: str = ""
    partial_published: bool = False
    final_published: bool = False
    dropped: bool = False
    fast_done: bool = False
    accurate_done: bool = False


class TranscriptionDispatcher:
    """
    Send each segment to a fast and an accurate transcription provider.

    The fast result is published as a partial, the accurate one as the final.
    A final always supersedes a partial for the same segment whatever order the
    providers finish in, and at most one final is published per segment.
    Accurate calls run on a pool of `accurate_concurrency` workers; segments
    beyond that wait in the pool's queue and are never dropped for lack of
    capacity. A fast result arriving later than `fast_timeout` after submission
    is discarded. An accurate call that still fails after `accurate_retries`
    retries drops the segment; `degraded_after` consecutive drops raise the
    degraded signal, and the next good final clears it.
    """

    def __init__(
        self,
        *,
        accurate: TranscriptionProvider,
        fast: Optional[TranscriptionProvider],
        on_result: Callable[[TranscriptionResult], None],
        on_drop: Optional[Callable[[int], None]] = None,
        on_degraded: Optional[Callable[[bool], None]] = None,
        profile: Optional[GameProfile] = None,
        language: Optional[str] = "en",
        fast_timeout: float = 1.5,
        fast_workers: int = 2,
        accurate_concurrency: int = 1,
        accurate_retries: int = 2,
        degraded_after: int = 3,
        carry_context: bool = True,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        if fast_timeout <= 0:
            raise ValueError("fast_timeout must be > 0")
        if accurate_retries < 0:
            raise ValueError("accurate_retries must be >= 0")
        if degraded_after <= 0:
            raise ValueError("degraded_after must be > 0")

        self.accurate = accurate
        self.fast = fast
        self.on_result = on_result
        self.on_drop = on_drop
        self.on_degraded = on_degraded
        self.profile = profile or GameProfile()
        self.language = language
        self.fast_timeout = float(fast_timeout)
        self.accurate_retries = int(accurate_retries)
        self.degraded_after = int(degraded_after)
        self.carry_context = bool(carry_context)
        self.clock = clock
        self.logger = logger

        self._corrections = SubstitutionTable(self.profile.asr_corrections, ignore_case=True)
        self._hotword_case = SubstitutionTable(
            {f"{PATTERN_PREFIX}\\b{re.escape(hw)}\\b": hw for hw in self.profile.hotwords},
            ignore_case=True,
        )

        self._lock = threading.Lock()
        self._states: dict[int, _SegmentState] = {}
        self._recent_text: "OrderedDict[int, str]" = OrderedDict()
        self._consecutive_drops = 0
        self._degraded = False
        self._closed = False

        self.supervisor = TaskSupervisor("dispatcher", logger=logger)
        self.supervisor.add_pool("accurate", accurate_concurrency)
        if fast is not None:
            self.supervisor.add_pool("fast", fast_workers)

    @property
    def degraded(self) -> bool:
        with self._lock:
            return self._degraded

    def queue_depth(self) -> int:
        return self.supervisor.pending()

    def submit(self, segment: SpeechSegment) -> None:
        with self._lock:
            if segment.id in self._states:
                raise ValueError(f"segment {segment.id} was already submitted")
            self._states[segment.id] = _SegmentState(segment=segment, submitted_at=self.clock())
            if self.fast is None:
                self._states[segment.id].fast_done = True

        if self.fast is not None:
            self.supervisor.submit("fast", f"fast:{segment.id}", self._run_fast, segment.id)
        self.supervisor.submit("accurate", f"accurate:{segment.id}", self._run_accurate, segment.id)
        log_event(
            self.logger,
            logging.DEBUG,
            "segment_dispatched",
            segment_id=segment.id,
            queue_depth=self.queue_depth(),
        )

    def _request(self, state: _SegmentState) -> TranscriptionRequest:
        prompt = self.profile.initial_prompt.strip()
        prev = state.segment.continues_from
        if self.carry_context and prev is not None:
            with self._lock:
                prev_text = self._recent_text.get(prev, "")
                prev_state = self._states.get(prev)
                if not prev_text and prev_state is not None:
                    prev_text = prev_state.last_text
            if prev_text:
                prompt = f"{prompt} {prev_text}".strip()
        return TranscriptionRequest(
            segment=state.segment,
            hotwords=tuple(self.profile.hotwords),
            initial_prompt=prompt,
            language=self.language,
        )

    def _correct(self, text: str) -> str:
        text = (text or "").strip()
        if not text:
            return ""
        return self._hotword_case.apply(self._corrections.apply(text)).strip()

    def _run_fast(self, segment_id: int) -> None:
        state = self._states[segment_id]
        try:
            try:
                text = self.fast.transcribe(self._request(state))  # type: ignore[union-attr]
            except Exception as e:
                log_event(
                    self.logger,
                    logging.WARNING,
                    "fast_failed",
                    segment_id=segment_id,
                    error=repr(e),
                )
                return

            elapsed = self.clock() - state.submitted_at
            if elapsed > self.fast_timeout:
                log_event(
                    self.logger,
                    logging.INFO,
                    "fast_timeout",
                    segment_id=segment_id,
                    elapsed=round(elapsed, 3),
                )
                return

            text = self._correct(text)
            if not text:
                return
            with self._lock:
                if state.final_published or state.dropped or self._closed:
                    return
                state.partial_published = True
                state.last_text = text
                # published under the lock so a final can never be overtaken
                self.on_result(
                    TranscriptionResult(
                        segment_id=segment_id,
                        text=text,
                        is_final=False,
                        produced_at=self.clock(),
                        start_ts=state.segment.start_ts,
                        provider=self.fast.name,  # type: ignore[union-attr]
                    )
                )
        finally:
            self._finish(segment_id, fast=True)

    def _run_accurate(self, segment_id: int) -> None:
        state = self._states[segment_id]
        try:
            text: Optional[str] = None
            attempts = self.accurate_retries + 1
            for attempt in range(1, attempts + 1):
                try:
                    text = self.accurate.transcribe(self._request(state))
                    break
                except Exception as e:
                    log_event(
                        self.logger,
                        logging.WARNING,
                        "accurate_failed",
                        segment_id=segment_id,
                        attempt=attempt,
                        attempts=attempts,
                        error=repr(e),
                    )

            if text is None:
                self._drop(state, reason="accurate_failed")
                self._note_drop()
                return

            text = self._correct(text)
            if not text:
                self._drop(state, reason="empty")
                return

            with self._lock:
                if self._closed:
                    return
                state.final_published = True
                state.last_text = text
                self._remember(segment_id, text)
                self.on_result(
                    TranscriptionResult(
                        segment_id=segment_id,
                        text=text,
                        is_final=True,
                        produced_at=self.clock(),
                        start_ts=state.segment.start_ts,
                        provider=self.accurate.name,
                    )
                )
            self._note_success()
        finally:
            self._finish(segment_id, accurate=True)

    def _remember(self, segment_id: int, text: str) -> None:
        self._recent_text[segment_id] = text
        while len(self._recent_text) > _RECENT_TEXT_LIMIT:
            self._recent_text.popitem(last=False)

    def _drop(self, state: _SegmentState, *, reason: str) -> None:
        with self._lock:
            state.dropped = True
        log_event(
            self.logger,
            logging.WARNING if reason != "empty" else logging.INFO,
            "segment_dropped",
            segment_id=state.segment.id,
            reason=reason,
            partial_published=state.partial_published,
        )
        if self.on_drop is not None:
            self.on_drop(state.segment.id)

    def _note_drop(self) -> None:
        with self._lock:
            self._consecutive_drops += 1
            became_degraded = not self._degraded and self._consecutive_drops >= self.degraded_after
            if became_degraded:
                self._degraded = True
            drops = self._consecutive_drops
        if became_degraded:
            log_event(self.logger, logging.ERROR, "pipeline_degraded", consecutive_drops=drops)
            if self.on_degraded is not None:
                self.on_degraded(True)

    def _note_success(self) -> None:
        with self._lock:
            self._consecutive_drops = 0
            recovered = self._degraded
            self._degraded = False
        if recovered:
            log_event(self.logger, logging.INFO, "pipeline_recovered")
            if self.on_degraded is not None:
                self.on_degraded(False)

    def _finish(self, segment_id: int, *, fast: bool = False, accurate: bool = False) -> None:
        with self._lock:
            state = self._states.get(segment_id)
            if state is None:
                return
            if fast:
                state.fast_done = True
            if accurate:
                state.accurate_done = True
            if state.fast_done and state.accurate_done:
                del self._states[segment_id]

    def wait_idle(self, timeout: float | None = None) -> bool:
        return self.supervisor.wait_idle(timeout)

    def shutdown(self) -> None:
        """Stop publishing; provider calls still running are abandoned."""
        with self._lock:
            self._closed = True
        self.supervisor.shutdown(wait=False)
