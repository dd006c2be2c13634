from __future__ import annotations

import logging
from typing import List, Optional, Protocol

import numpy as np

from dualsub.app.logging_setup import log_event
from dualsub.contracts import AudioFrame, SpeechSegment


class FrameClassifier(Protocol):
    def is_speech(self, samples: np.ndarray) -> bool:
        ...


class VoiceActivitySegmenter:
    """
    Turn a sequential stream of AudioFrames into SpeechSegments.

    An utterance opens on the first speech frame and closes once `hangover`
    seconds of trailing silence have been seen; the trailing silence is not part
    of the segment. Utterances that reach `max_duration` are split: the segment
    is emitted immediately and the following frames accumulate under a new id
    whose `continues_from` points at the split segment. Utterances shorter than
    `min_duration` are dropped as noise, except the continuation fragment of a
    forced split.
    """

    def __init__(
        self,
        *,
        vad: FrameClassifier,
        min_duration: float = 0.5,
        max_duration: float = 6.0,
        hangover: float = 0.3,
        first_id: int = 1,
        logger: logging.Logger | None = None,
    ) -> None:
        if min_duration < 0:
            raise ValueError("min_duration must be >= 0")
        if max_duration <= 0:
            raise ValueError("max_duration must be > 0")
        if max_duration <= min_duration:
            raise ValueError("max_duration must be > min_duration")
        if hangover <= 0:
            raise ValueError("hangover must be > 0")

        self.vad = vad
        self.min_duration = float(min_duration)
        self.max_duration = float(max_duration)
        self.hangover = float(hangover)
        self.logger = logger
        self._next_id = int(first_id)

        self._frame_duration: Optional[float] = None
        self._sample_rate = 0
        self._min_frames = 0
        self._max_frames = 0
        self._hangover_frames = 0

        self._reset_utterance()

    def _reset_utterance(self) -> None:
        self._in_utterance = False
        self._parts: list[np.ndarray] = []
        self._t0 = 0.0
        self._speech_frames = 0
        self._last_speech_index = 0  # frames up to and including the last speech frame
        self._silence_run = 0
        self._continues_from: Optional[int] = None

    def _configure_timing(self, frame: AudioFrame) -> None:
        fd = frame.duration
        if fd <= 0:
            raise ValueError("frames must not be empty")
        self._frame_duration = fd
        self._sample_rate = int(frame.sample_rate)
        self._min_frames = int(round(self.min_duration / fd))
        self._max_frames = max(1, int(round(self.max_duration / fd)))
        self._hangover_frames = max(1, int(round(self.hangover / fd)))

    def _open(self, t0: float, continues_from: Optional[int] = None) -> None:
        self._reset_utterance()
        self._in_utterance = True
        self._t0 = float(t0)
        self._continues_from = continues_from

    def push(self, frame: AudioFrame) -> List[SpeechSegment]:
        if self._frame_duration is None:
            self._configure_timing(frame)
        fd = self._frame_duration or frame.duration

        out: List[SpeechSegment] = []
        is_speech = self.vad.is_speech(frame.samples)

        if is_speech:
            if not self._in_utterance:
                self._open(frame.timestamp)
            self._parts.append(frame.samples)
            self._speech_frames += 1
            self._last_speech_index = len(self._parts)
            self._silence_run = 0
            if len(self._parts) >= self._max_frames:
                seg = self._close(reason="max_duration")
                if seg is not None:
                    out.append(seg)
                    self._open(frame.timestamp + fd, continues_from=seg.id)
            return out

        if self._in_utterance:
            self._parts.append(frame.samples)
            self._silence_run += 1
            if self._silence_run >= self._hangover_frames:
                seg = self._close(reason="hangover")
                if seg is not None:
                    out.append(seg)
            elif len(self._parts) >= self._max_frames:
                # max length reached inside a pause; speech may still resume
                silence_run = self._silence_run
                seg = self._close(reason="max_duration")
                if seg is not None:
                    out.append(seg)
                    self._open(frame.timestamp + fd, continues_from=seg.id)
                    self._silence_run = silence_run
        return out

    def flush(self) -> List[SpeechSegment]:
        """Close any open utterance at end-of-stream."""
        if not self._in_utterance:
            return []
        seg = self._close(reason="stream_end")
        return [seg] if seg is not None else []

    def _close(self, reason: str) -> Optional[SpeechSegment]:
        keep = self._last_speech_index
        continues_from = self._continues_from
        parts = self._parts[:keep]
        t0 = self._t0
        speech_frames = self._speech_frames
        self._reset_utterance()

        fd = self._frame_duration or 0.0
        if speech_frames == 0 or keep == 0:
            return None
        if keep < self._min_frames and continues_from is None:
            log_event(
                self.logger,
                logging.DEBUG,
                "segment_discarded_short",
                reason=reason,
                start_ts=round(t0, 3),
                duration=round(keep * fd, 3),
            )
            return None

        seg = SpeechSegment(
            id=self._next_id,
            start_ts=t0,
            end_ts=t0 + keep * fd,
            samples=np.concatenate(parts).astype(np.float32),
            sample_rate=self._sample_rate,
            continues_from=continues_from,
        )
        self._next_id += 1
        log_event(
            self.logger,
            logging.INFO,
            "segment_emitted",
            segment_id=seg.id,
            reason=reason,
            start_ts=round(seg.start_ts, 3),
            duration=round(seg.duration, 3),
            continues_from=continues_from,
        )
        return seg
