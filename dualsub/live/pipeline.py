from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Optional

from dualsub.app.config import PipelineConfig
from dualsub.app.logging_setup import log_event
from dualsub.asr.base import TranscriptionProvider
from dualsub.audio.frames import FrameAdapter, FrameSource, FrameSourceError
from dualsub.audio.segmenter import FrameClassifier, VoiceActivitySegmenter
from dualsub.contracts import DisplayEvent, SpeechSegment, TranscriptionResult
from dualsub.live.dispatcher import TranscriptionDispatcher
from dualsub.live.lifecycle import SubtitleLifecycleManager, SubtitleSink
from dualsub.live.translation import TranslationStage
from dualsub.nlp.cache import TranslationCache
from dualsub.nlp.translator.base import Translator

_DRAIN_POLL = 0.1


class SegmentPipeline:
    """
    One running instance of the subtitle pipeline.

    frames -> segmenter -> dispatcher (fast + accurate) -> lifecycle -> sink
                                        finals -> translation -> lifecycle

    The capture loop runs on the caller's thread in `run()`; transcription and
    translation run on their stage pools and a ticker thread drives fades.
    A frame source failure is fatal: `run()` shuts everything down and re-raises
    it. Reconfiguring means building a new pipeline from a new config snapshot.
    """

    def __init__(
        self,
        *,
        config: PipelineConfig,
        source: FrameSource,
        vad: FrameClassifier,
        accurate: TranscriptionProvider,
        fast: Optional[TranscriptionProvider],
        translator: Translator,
        sink: SubtitleSink | Callable[[DisplayEvent], None],
        on_degraded: Optional[Callable[[bool], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.source = source
        self.logger = logger
        self.on_degraded = on_degraded
        self.tick_interval = float(config.lifecycle.tick_interval)
        if self.tick_interval <= 0:
            raise ValueError("tick_interval must be > 0")

        self.adapter = FrameAdapter(sample_rate=16000, frame_ms=config.audio.frame_ms)
        self.segmenter = VoiceActivitySegmenter(
            vad=vad,
            min_duration=config.segmenter.min_duration,
            max_duration=config.segmenter.max_duration,
            hangover=config.segmenter.hangover,
            logger=logger,
        )
        self.lifecycle = SubtitleLifecycleManager(
            sink=sink,
            display_duration=config.lifecycle.display_duration,
            fade_duration=config.lifecycle.fade_duration,
            max_visible=config.lifecycle.max_visible,
            untranslated_marker=config.lifecycle.untranslated_marker,
            clock=clock,
            logger=logger,
        )
        self.cache = TranslationCache(config.translation.cache_size, clock=clock)
        self.translation = TranslationStage(
            translator=translator,
            on_translated=self.lifecycle.on_translation,
            cache=self.cache,
            pre_dictionary=config.profile.pre_translation,
            post_dictionary=config.profile.post_translation,
            source_lang=config.translation.source_lang,
            target_lang=config.translation.target_lang,
            workers=config.translation.workers,
            logger=logger,
        )
        d = config.dispatcher
        self.dispatcher = TranscriptionDispatcher(
            accurate=accurate,
            fast=fast,
            on_result=self._on_result,
            on_drop=self.lifecycle.discard,
            on_degraded=self._on_degraded,
            profile=config.profile,
            language=config.asr.language,
            fast_timeout=d.fast_timeout,
            fast_workers=d.fast_workers,
            accurate_concurrency=d.accurate_concurrency,
            accurate_retries=d.accurate_retries,
            degraded_after=d.degraded_after,
            carry_context=d.carry_context,
            clock=clock,
            logger=logger,
        )

        self.segments = 0
        self._stop = threading.Event()
        self._ticker: Optional[threading.Thread] = None
        self._ticker_stop = threading.Event()
        self._shutdown_lock = threading.Lock()
        self._closed = False

    # -- wiring -----------------------------------------------------------

    def _dispatch(self, segment: SpeechSegment) -> None:
        self.segments += 1
        self.lifecycle.register(segment.id, segment.start_ts)
        self.dispatcher.submit(segment)

    def _on_result(self, result: TranscriptionResult) -> None:
        self.lifecycle.on_transcription(result)
        if result.is_final:
            self.translation.submit(result)

    def _on_degraded(self, degraded: bool) -> None:
        if self.on_degraded is not None:
            self.on_degraded(degraded)

    def _tick_loop(self) -> None:
        while not self._ticker_stop.wait(self.tick_interval):
            try:
                self.lifecycle.tick()
            except Exception:
                log_event(self.logger, logging.ERROR, "lifecycle_tick_failed", exc_info=True)

    def _start_ticker(self) -> None:
        if self._ticker is not None:
            return
        self._ticker = threading.Thread(target=self._tick_loop, name="dualsub-lifecycle-ticker", daemon=True)
        self._ticker.start()

    # -- lifetime ---------------------------------------------------------

    def run(self, *, drain: bool = True, drain_timeout: float | None = None) -> None:
        """
        Consume the frame source until it ends or `stop()` is called.

        With `drain`, waits for in-flight transcriptions and translations to
        publish before shutting down.
        """
        log_event(
            self.logger,
            logging.INFO,
            "pipeline_start",
            frame_ms=self.config.audio.frame_ms,
            fast_tier=self.dispatcher.fast is not None,
            translator=self.translation.translator.name,
            profile=self.config.profile.name,
        )
        self._start_ticker()
        try:
            for frame in self.adapter.frames(self.source):
                if self._stop.is_set():
                    break
                for segment in self.segmenter.push(frame):
                    self._dispatch(segment)
            for segment in self.segmenter.flush():
                self._dispatch(segment)
        except FrameSourceError as e:
            log_event(self.logger, logging.ERROR, "frame_source_failed", error=repr(e))
            self.shutdown()
            raise

        if drain and not self._stop.is_set():
            self.drain(drain_timeout)
        self.shutdown()

    def drain(self, timeout: float | None = None) -> bool:
        """
        Wait until both stages are idle; finals may still queue translations.
        Returns False on timeout or when `stop()` cuts the wait short, leaving
        in-flight provider calls to be abandoned by `shutdown()`.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self._stop.is_set():
            step = _DRAIN_POLL
            if deadline is not None:
                step = min(step, deadline - time.monotonic())
                if step <= 0:
                    return False
            if not self.dispatcher.wait_idle(step) or not self.translation.wait_idle(step):
                continue
            if self.dispatcher.queue_depth() == 0 and self.translation.supervisor.pending() == 0:
                return True
        return False

    def stop(self) -> None:
        self._stop.set()
        stop_source = getattr(self.source, "stop", None)
        if callable(stop_source):
            stop_source()

    def shutdown(self) -> None:
        with self._shutdown_lock:
            if self._closed:
                return
            self._closed = True
        self._stop.set()
        self._ticker_stop.set()
        self.dispatcher.shutdown()
        self.translation.shutdown()
        if self._ticker is not None:
            self._ticker.join(timeout=max(1.0, self.tick_interval * 5))
        log_event(self.logger, logging.INFO, "pipeline_stop", **self.stats())

    def stats(self) -> dict[str, Any]:
        cache = self.cache.stats
        return {
            "segments": self.segments,
            "queue_depth": self.dispatcher.queue_depth(),
            "degraded": self.dispatcher.degraded,
            "cache_hits": cache.hits,
            "cache_misses": cache.misses,
            "cache_evictions": cache.evictions,
            "task_failures": self.dispatcher.supervisor.failures + self.translation.supervisor.failures,
        }
